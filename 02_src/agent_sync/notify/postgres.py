"""PostgreSQL LISTEN/NOTIFY listener.

Each listener owns a dedicated connection opened with ``asyncpg.connect``;
a connection in listen mode is never taken from (or returned to) the query
pool. The NOTIFY payloads are produced by the triggers in
``storage/schema_postgres.sql``.
"""

import asyncio
import json
from typing import Sequence

import asyncpg

from ..errors import TransientStoreError
from ..logging_config import get_logger
from ..models import ChangeEvent, Channel
from .listener import QueuedListener

logger = get_logger(__name__)

CONNECTION_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    asyncpg.CannotConnectNowError,
    asyncpg.TooManyConnectionsError,
)


class PostgresChangeListener(QueuedListener):
    """Subscribes to NOTIFY channels on its own connection."""

    def __init__(self, dsn: str, connect_timeout: float = 10.0):
        super().__init__()
        self._dsn = dsn
        self._connect_timeout = connect_timeout
        self._conn: asyncpg.Connection | None = None

    async def connect(self, channels: Sequence[Channel]) -> None:
        try:
            self._conn = await asyncpg.connect(self._dsn, timeout=self._connect_timeout)
            self._conn.add_termination_listener(self._on_terminated)
            for channel in channels:
                await self._conn.add_listener(channel.value, self._on_notify)
        except CONNECTION_ERRORS as e:
            await self.close()
            raise TransientStoreError(f"LISTEN connection failed: {e}") from e

        logger.info("Listening on %s", ", ".join(c.value for c in channels))

    def _on_notify(
        self,
        connection: asyncpg.Connection,
        pid: int,
        channel: str,
        payload: str,
    ) -> None:
        try:
            data = json.loads(payload) if payload else {}
        except json.JSONDecodeError:
            logger.warning("Ignoring non-JSON payload on %s: %r", channel, payload[:200])
            data = {}
        if not isinstance(data, dict):
            data = {"value": data}

        try:
            event_channel = Channel(channel)
        except ValueError:
            logger.warning("Notification on unexpected channel %s", channel)
            return

        self._enqueue(ChangeEvent(channel=event_channel, payload=data))

    def _on_terminated(self, connection: asyncpg.Connection) -> None:
        logger.warning("LISTEN connection terminated by server")
        self._mark_lost("LISTEN connection terminated")

    async def ping(self) -> None:
        if self._conn is None or self._conn.is_closed():
            raise TransientStoreError("LISTEN connection is closed")
        try:
            await self._conn.fetchval("SELECT 1")
        except CONNECTION_ERRORS as e:
            raise TransientStoreError(f"keep-alive failed: {e}") from e

    async def close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None or conn.is_closed():
            return
        try:
            await asyncio.wait_for(conn.close(), timeout=self._connect_timeout)
        except (*CONNECTION_ERRORS, asyncpg.PostgresError) as e:
            logger.debug("Error closing LISTEN connection: %s", e)
            conn.terminate()
