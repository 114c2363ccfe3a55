"""Tests for PostgresStorage query handling, without a server."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

import asyncpg
import pytest

from agent_sync.errors import TransientStoreError
from agent_sync.models import DeliveryState
from agent_sync.storage.postgres import PostgresStorage


def delivery_row(status="received"):
    return {
        "chat_id": 7,
        "agent": "bob",
        "status": status,
        "received_at": datetime(2026, 1, 5, tzinfo=timezone.utc),
        "routed_at": None,
        "responded_at": None,
        "error_message": None,
    }


class ScriptedConnection:
    """Returns queued fetchrow results and records the statements."""

    def __init__(self, *results):
        self.results = list(results)
        self.queries = []

    async def fetchrow(self, query, *args):
        self.queries.append(query)
        return self.results.pop(0)


class ScriptedPool:
    def __init__(self, conn=None, error=None):
        self.conn = conn
        self.error = error

    @asynccontextmanager
    async def acquire(self):
        if self.error is not None:
            raise self.error
        yield self.conn


def make_storage(pool):
    storage = PostgresStorage("postgresql://localhost/agents")
    storage._pool = pool
    return storage


class TestInsertDelivery:
    """Tests for insert_delivery()."""

    async def test_new_record_returned(self):
        """Test the inserted row is returned without a second query."""
        conn = ScriptedConnection(delivery_row())
        record = await make_storage(ScriptedPool(conn)).insert_delivery(7, "bob")
        assert record.state == DeliveryState.RECEIVED
        assert len(conn.queries) == 1

    async def test_conflict_reads_existing_row(self):
        """Test a concurrent insert that won the race is read back."""
        conn = ScriptedConnection(None, delivery_row("routed"))
        record = await make_storage(ScriptedPool(conn)).insert_delivery(7, "bob")
        assert record.state == DeliveryState.ROUTED
        assert "SELECT" in conn.queries[1]

    async def test_missing_row_raises(self):
        """Test a record deleted between the statements is reported."""
        conn = ScriptedConnection(None, None)
        with pytest.raises(RuntimeError, match="vanished"):
            await make_storage(ScriptedPool(conn)).insert_delivery(7, "bob")


class TestConnectionErrors:
    """Tests for transient error mapping."""

    @pytest.mark.parametrize(
        "error",
        [
            OSError("connection refused"),
            asyncpg.CannotConnectNowError("the database system is starting up"),
            asyncpg.TooManyConnectionsError("too many clients"),
        ],
    )
    async def test_unavailable_server_is_transient(self, error):
        """Test server-side refusals surface as TransientStoreError."""
        storage = make_storage(ScriptedPool(error=error))
        with pytest.raises(TransientStoreError):
            await storage.get_delivery(7, "bob")

    async def test_uninitialized(self):
        """Test queries before init raise."""
        with pytest.raises(RuntimeError, match="not initialized"):
            await PostgresStorage("postgresql://localhost/agents").get_job(1)
