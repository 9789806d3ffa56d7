# app/db/helpers.py
"""
Query helpers shared by the repositories.

Every helper accepts an optional connection so repository calls can join a
transaction opened by the caller (the local booking provider does this for
its lock-then-insert sequence).
"""

import asyncio
import functools
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg

from app.db.pool import get_db_connection
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """Raised for any failure reading or writing scheduling rows."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@asynccontextmanager
async def _cursor(
    connection: psycopg.AsyncConnection | None,
) -> AsyncGenerator[psycopg.AsyncCursor, None]:
    if connection is not None:
        async with connection.cursor() as cur:
            yield cur
        return

    async with await get_db_connection() as conn:
        async with conn.cursor() as cur:
            yield cur


async def fetch_one(
    query: Any, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """
    Execute query and return the first row as a dict, or None.

    Args:
        query: SQL string or psycopg.sql.Composed with %s placeholders
        params: Query parameters
        connection: Existing connection (joins its transaction)
    """
    try:
        async with _cursor(connection) as cur:
            await cur.execute(query, params)
            return await cur.fetchone() or None

    except psycopg.Error as e:
        logger.error("Database fetch_one error", query=str(query)[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="fetch_one") from e


async def fetch_all(
    query: Any, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    """Execute query and return every row as a dict."""
    try:
        async with _cursor(connection) as cur:
            await cur.execute(query, params)
            return await cur.fetchall()

    except psycopg.Error as e:
        logger.error("Database fetch_all error", query=str(query)[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="fetch_all") from e


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Retry a read on transient failures with exponential backoff.

    Only reads are decorated. Writes run inside the booking transaction and
    are never replayed.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)

                except psycopg.OperationalError as e:
                    if attempt == max_retries:
                        logger.error(
                            "Database read failed after all retries",
                            operation=func.__name__,
                            attempts=attempt + 1,
                            error=str(e),
                        )
                        raise DatabaseError(
                            f"Operation failed after {max_retries} retries: {e}",
                            operation=func.__name__,
                            recoverable=False,
                        ) from e
                    error = e

                except DatabaseError as e:
                    # Already classified by fetch_*; retry only recoverable ones
                    if not e.recoverable or attempt == max_retries:
                        raise
                    error = e

                delay = base_delay * (2**attempt)
                logger.warning(
                    "Database read failed, retrying",
                    operation=func.__name__,
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    delay=delay,
                    error=str(error),
                )
                await asyncio.sleep(delay)

        return wrapper

    return decorator
