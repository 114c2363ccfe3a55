"""PostgreSQL storage implementation (asyncpg).

Change notifications are emitted by database triggers (see
``schema_postgres.sql``), so this class never publishes events itself.
Connection and timeout failures surface as ``TransientStoreError``.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Iterable, Sequence

import asyncpg

from ..errors import TransientStoreError
from ..logging_config import get_logger
from ..models import (
    DEFAULT_CHANNEL,
    PUBLISHED_INSTANCE_TYPES,
    AgentConfigRow,
    DeliveryRecord,
    DeliveryState,
    Job,
    JobStatus,
    Message,
    MessageDraft,
    ResponseStats,
    SystemDefaultKey,
    SystemDefaultRow,
)
from .storage import DELIVERY_TIMESTAMP_COLUMNS, JOB_TIMESTAMP_COLUMNS

logger = get_logger(__name__)

TRANSIENT_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    asyncpg.QueryCanceledError,
    asyncpg.CannotConnectNowError,
    asyncpg.TooManyConnectionsError,
)


class PostgresStorage:
    """IStorage over an asyncpg pool, used for queries and writes only."""

    def __init__(
        self,
        dsn: str,
        min_size: int = 1,
        max_size: int = 5,
        command_timeout: float = 10.0,
    ):
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._command_timeout = command_timeout
        self._pool: asyncpg.Pool | None = None

    async def init(self) -> None:
        """Create the pool and apply the schema."""
        try:
            self._pool = await asyncpg.create_pool(
                self._dsn,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
            )
        except TRANSIENT_ERRORS as e:
            raise TransientStoreError(f"Failed to create PostgreSQL pool: {e}") from e

        schema_path = Path(__file__).parent / "schema_postgres.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        async with self._acquire() as conn:
            await conn.execute(schema_sql)
        logger.info("PostgreSQL schema applied")

    async def close(self) -> None:
        """Close the pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def _acquire(self) -> AsyncIterator[asyncpg.Connection]:
        if not self._pool:
            raise RuntimeError("Storage not initialized")
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except TRANSIENT_ERRORS as e:
            raise TransientStoreError(f"PostgreSQL unavailable: {e}") from e

    # Messages
    async def insert_message(
        self,
        sender: str,
        body: str,
        recipients: Sequence[str],
        reply_to: int | None = None,
        channel: str = DEFAULT_CHANNEL,
    ) -> Message:
        """Append a message; the AFTER INSERT trigger sends the NOTIFY."""
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO agent_chat (channel, sender, message, mentions, reply_to)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING *
                """,
                channel,
                sender,
                body,
                list(recipients),
                reply_to,
            )
        return self._row_to_message(row)

    async def get_message(self, message_id: int) -> Message | None:
        async with self._acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM agent_chat WHERE id = $1", message_id)
        return self._row_to_message(row) if row else None

    async def list_messages_for(
        self, recipient: str, since_id: int = 0, limit: int | None = None
    ) -> list[Message]:
        async with self._acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM agent_chat
                WHERE id > $1 AND $2 = ANY(mentions)
                ORDER BY id ASC
                LIMIT $3
                """,
                since_id,
                recipient,
                limit,
            )
        return [self._row_to_message(row) for row in rows]

    # Delivery records
    async def insert_delivery(self, message_id: int, recipient: str) -> DeliveryRecord:
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO agent_chat_processed (chat_id, agent, status)
                VALUES ($1, $2, 'received')
                ON CONFLICT (chat_id, agent) DO NOTHING
                RETURNING *
                """,
                message_id,
                recipient,
            )
            if row is None:
                # Lost the insert race; the winner's row is visible to a new statement
                row = await conn.fetchrow(
                    "SELECT * FROM agent_chat_processed WHERE chat_id = $1 AND agent = $2",
                    message_id,
                    recipient,
                )
        if row is None:
            raise RuntimeError(f"Delivery record ({message_id}, {recipient}) vanished")
        return self._row_to_delivery(row)

    async def get_delivery(
        self, message_id: int, recipient: str
    ) -> DeliveryRecord | None:
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM agent_chat_processed WHERE chat_id = $1 AND agent = $2",
                message_id,
                recipient,
            )
        return self._row_to_delivery(row) if row else None

    async def update_delivery_state(
        self,
        message_id: int,
        recipient: str,
        from_states: Iterable[DeliveryState],
        to_state: DeliveryState,
        error_message: str | None = None,
    ) -> DeliveryRecord | None:
        assignments = ["status = $4::agent_chat_status"]
        column = DELIVERY_TIMESTAMP_COLUMNS.get(to_state)
        if column:
            assignments.append(f"{column} = NOW()")
        assignments.append("error_message = COALESCE($5, error_message)")

        async with self._acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE agent_chat_processed
                SET {", ".join(assignments)}
                WHERE chat_id = $1 AND agent = $2
                  AND status = ANY($3::agent_chat_status[])
                RETURNING *
                """,
                message_id,
                recipient,
                [s.value for s in from_states],
                to_state.value,
                error_message,
            )
        return self._row_to_delivery(row) if row else None

    async def list_deliveries(self, message_id: int) -> list[DeliveryRecord]:
        async with self._acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM agent_chat_processed WHERE chat_id = $1 ORDER BY agent",
                message_id,
            )
        return [self._row_to_delivery(row) for row in rows]

    async def list_deliveries_in_state(
        self, state: DeliveryState, entered_before: datetime
    ) -> list[DeliveryRecord]:
        column = DELIVERY_TIMESTAMP_COLUMNS.get(state, "received_at")
        async with self._acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT * FROM agent_chat_processed
                WHERE status = $1::agent_chat_status AND {column} < $2
                ORDER BY {column} ASC
                """,
                state.value,
                entered_before,
            )
        return [self._row_to_delivery(row) for row in rows]

    async def delivery_response_stats(self) -> list[ResponseStats]:
        async with self._acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT agent,
                       COUNT(*) AS responses,
                       AVG(EXTRACT(EPOCH FROM (responded_at - received_at))) AS avg_seconds,
                       MIN(EXTRACT(EPOCH FROM (responded_at - received_at))) AS min_seconds,
                       MAX(EXTRACT(EPOCH FROM (responded_at - received_at))) AS max_seconds
                FROM agent_chat_processed
                WHERE status = 'responded' AND responded_at IS NOT NULL
                GROUP BY agent
                ORDER BY agent
                """
            )
        return [
            ResponseStats(
                agent=row["agent"],
                responses=row["responses"],
                avg_seconds=float(row["avg_seconds"]),
                min_seconds=float(row["min_seconds"]),
                max_seconds=float(row["max_seconds"]),
            )
            for row in rows
        ]

    # Jobs
    async def insert_job(self, job: Job) -> Job:
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO agent_jobs
                (message_id, agent_name, requester, parent_job_id, status, priority, notify_agents)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING *
                """,
                job.message_id,
                job.owner,
                job.requester,
                job.parent_job_id,
                job.status.value,
                job.priority,
                list(job.notify_list),
            )
        return self._row_to_job(row)

    async def get_job(self, job_id: int) -> Job | None:
        async with self._acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM agent_jobs WHERE id = $1", job_id)
        return self._row_to_job(row) if row else None

    async def update_job_status(
        self,
        job_id: int,
        from_statuses: Iterable[JobStatus],
        to_status: JobStatus,
        deliverable_path: str | None = None,
        deliverable_summary: str | None = None,
        error_message: str | None = None,
        notice: MessageDraft | None = None,
    ) -> Job | None:
        assignments = [
            "status = $3",
            "updated_at = NOW()",
            "deliverable_path = COALESCE($4, deliverable_path)",
            "deliverable_summary = COALESCE($5, deliverable_summary)",
            "error_message = COALESCE($6, error_message)",
        ]
        column = JOB_TIMESTAMP_COLUMNS.get(to_status)
        if column:
            assignments.append(f"{column} = NOW()")

        async with self._acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"""
                    UPDATE agent_jobs
                    SET {", ".join(assignments)}
                    WHERE id = $1 AND status = ANY($2::text[])
                    RETURNING *
                    """,
                    job_id,
                    [s.value for s in from_statuses],
                    to_status.value,
                    deliverable_path,
                    deliverable_summary,
                    error_message,
                )
                if row is not None and notice is not None:
                    await conn.execute(
                        """
                        INSERT INTO agent_chat (channel, sender, message, mentions, reply_to)
                        VALUES ($1, $2, $3, $4, $5)
                        """,
                        notice.channel,
                        notice.sender,
                        notice.body,
                        list(notice.recipients),
                        notice.reply_to,
                    )
        return self._row_to_job(row) if row else None

    async def list_open_jobs(self, owner: str) -> list[Job]:
        async with self._acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM agent_jobs
                WHERE agent_name = $1 AND status IN ('pending', 'in_progress')
                ORDER BY priority DESC, created_at ASC, id ASC
                """,
                owner,
            )
        return [self._row_to_job(row) for row in rows]

    async def list_jobs_for_message(
        self, message_id: int, owner: str, statuses: Iterable[JobStatus]
    ) -> list[Job]:
        async with self._acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM agent_jobs
                WHERE message_id = $1 AND agent_name = $2 AND status = ANY($3::text[])
                ORDER BY id ASC
                """,
                message_id,
                owner,
                [s.value for s in statuses],
            )
        return [self._row_to_job(row) for row in rows]

    async def list_child_jobs(self, parent_job_id: int) -> list[Job]:
        async with self._acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM agent_jobs WHERE parent_job_id = $1 ORDER BY id ASC",
                parent_job_id,
            )
        return [self._row_to_job(row) for row in rows]

    # Agent configuration
    async def list_agent_configs(self) -> list[AgentConfigRow]:
        async with self._acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT name, model, fallback_models, thinking, instance_type, allowed_subagents
                FROM agents
                WHERE instance_type = ANY($1::text[]) AND model IS NOT NULL
                ORDER BY name
                """,
                list(PUBLISHED_INSTANCE_TYPES),
            )
        return [self._row_to_agent(row) for row in rows]

    async def get_agent_config(self, name: str) -> AgentConfigRow | None:
        async with self._acquire() as conn:
            # Statement timeout keeps spawn-time lookups from hanging
            async with conn.transaction():
                await conn.execute("SET LOCAL statement_timeout = '3000'")
                row = await conn.fetchrow(
                    """
                    SELECT name, model, fallback_models, thinking, instance_type, allowed_subagents
                    FROM agents
                    WHERE lower(name) = lower($1)
                    LIMIT 1
                    """,
                    name,
                )
        return self._row_to_agent(row) if row else None

    async def upsert_agent_config(self, row: AgentConfigRow) -> None:
        async with self._acquire() as conn:
            await conn.execute(
                """
                INSERT INTO agents
                (name, model, fallback_models, thinking, instance_type, allowed_subagents)
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT ((lower(name))) DO UPDATE
                SET name = EXCLUDED.name,
                    model = EXCLUDED.model,
                    fallback_models = EXCLUDED.fallback_models,
                    thinking = EXCLUDED.thinking,
                    instance_type = EXCLUDED.instance_type,
                    allowed_subagents = EXCLUDED.allowed_subagents,
                    updated_at = NOW()
                """,
                row.name,
                row.model,
                row.fallback_models,
                row.thinking,
                row.instance_type,
                row.allowed_subagents,
            )

    async def delete_agent_config(self, name: str) -> bool:
        async with self._acquire() as conn:
            result = await conn.execute(
                "DELETE FROM agents WHERE lower(name) = lower($1)", name
            )
        # asyncpg returns the command tag, e.g. "DELETE 1"
        return not result.endswith(" 0")

    async def list_system_defaults(self) -> list[SystemDefaultRow]:
        async with self._acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT key, value, value_type FROM agent_system_config
                WHERE key = ANY($1::text[])
                ORDER BY key
                """,
                [k.value for k in SystemDefaultKey],
            )
        return [
            SystemDefaultRow(key=row["key"], value=row["value"], value_type=row["value_type"])
            for row in rows
        ]

    async def set_system_default(self, row: SystemDefaultRow) -> None:
        async with self._acquire() as conn:
            await conn.execute(
                """
                INSERT INTO agent_system_config (key, value, value_type)
                VALUES ($1, $2, $3)
                ON CONFLICT (key) DO UPDATE
                SET value = EXCLUDED.value,
                    value_type = EXCLUDED.value_type,
                    updated_at = NOW()
                """,
                row.key,
                row.value,
                row.value_type,
            )

    # Lifecycle
    async def clear(self) -> None:
        async with self._acquire() as conn:
            await conn.execute(
                """
                TRUNCATE agent_jobs, agent_chat_processed, agent_chat,
                         agents, agent_system_config
                RESTART IDENTITY CASCADE
                """
            )

    # Row mapping
    @staticmethod
    def _row_to_message(row: asyncpg.Record) -> Message:
        return Message(
            id=row["id"],
            sender=row["sender"],
            body=row["message"],
            recipients=list(row["mentions"] or []),
            reply_to=row["reply_to"],
            channel=row["channel"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_delivery(row: asyncpg.Record) -> DeliveryRecord:
        return DeliveryRecord(
            message_id=row["chat_id"],
            recipient=row["agent"],
            state=DeliveryState(row["status"]),
            received_at=row["received_at"],
            routed_at=row["routed_at"],
            responded_at=row["responded_at"],
            error_message=row["error_message"],
        )

    @staticmethod
    def _row_to_job(row: asyncpg.Record) -> Job:
        return Job(
            id=row["id"],
            owner=row["agent_name"],
            status=JobStatus(row["status"]),
            priority=row["priority"],
            message_id=row["message_id"],
            requester=row["requester"],
            parent_job_id=row["parent_job_id"],
            notify_list=list(row["notify_agents"] or []),
            deliverable_path=row["deliverable_path"],
            deliverable_summary=row["deliverable_summary"],
            error_message=row["error_message"],
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_agent(row: asyncpg.Record) -> AgentConfigRow:
        return AgentConfigRow(
            name=row["name"],
            model=row["model"],
            fallback_models=(
                list(row["fallback_models"]) if row["fallback_models"] is not None else None
            ),
            thinking=row["thinking"],
            instance_type=row["instance_type"],
            allowed_subagents=(
                list(row["allowed_subagents"])
                if row["allowed_subagents"] is not None
                else None
            ),
        )
