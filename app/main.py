# app/main.py
"""
Booking scheduling service with database pool lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.routes import health, scheduling
from app.services.booking.registry import create_default_registry
from app.services.calendar.conflict_oracle import GoogleCalendarConflictOracle
from app.services.calendar.google_client import GoogleCalendarClient
from app.services.redis_client import RedisClient

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        if settings.ASSIGNMENT_LOCK_ENABLED:
            logger.info("Initializing Redis connection")
            redis_client = RedisClient()
            await redis_client.initialize()
            app.state.redis_client = redis_client
            startup_tasks.append("redis")

        calendar_client = GoogleCalendarClient()
        app.state.calendar_oracle = GoogleCalendarConflictOracle(calendar_client)
        startup_tasks.append("calendar_oracle")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        if "redis" in startup_tasks:
            await app.state.redis_client.close()
            app.state.redis_client = None
        if "database_pool" in startup_tasks:
            await db_pool.close()
        raise

    yield

    # Shutdown sequence (reverse order)
    logger.info("Application shutting down")

    shutdown_errors = []

    oracle = app.state.calendar_oracle
    if oracle is not None:
        try:
            await oracle.client.close()
        except Exception as e:
            logger.error("Error closing calendar client", error=str(e))
            shutdown_errors.append(f"Calendar client: {e}")

    try:
        await app.state.provider_registry.close()
    except Exception as e:
        logger.error("Error closing booking provider clients", error=str(e))
        shutdown_errors.append(f"Booking providers: {e}")

    if app.state.redis_client is not None:
        await app.state.redis_client.close()
        app.state.redis_client = None

    try:
        logger.info("Closing database pool")
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Booking Scheduler",
    description="Recurring availability, conflict detection and round robin assignment",
    version="0.1.0",
    lifespan=lifespan,
)

# Provider factories are cheap; instances are created on first use
app.state.provider_registry = create_default_registry()
app.state.calendar_oracle = None
app.state.redis_client = None

app.include_router(health.router)
app.include_router(scheduling.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
