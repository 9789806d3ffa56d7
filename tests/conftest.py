from contextlib import asynccontextmanager

import pytest

from fakes import FakeConnection


@pytest.fixture
def fake_transaction():
    """Stand-in for db_pool.transaction that records begin/commit/rollback."""
    events = []

    @asynccontextmanager
    async def _transaction():
        events.append("begin")
        try:
            yield FakeConnection()
        except Exception:
            events.append("rollback")
            raise
        events.append("commit")

    _transaction.events = events
    return _transaction
