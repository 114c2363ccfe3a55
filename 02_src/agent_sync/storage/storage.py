"""Storage protocol and SQLite implementation."""

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Iterable, Protocol, Sequence

import aiosqlite

from ..config import resolve_db_path
from ..models import (
    DEFAULT_CHANNEL,
    PUBLISHED_INSTANCE_TYPES,
    AgentConfigRow,
    ChangeEvent,
    Channel,
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
from ..notify import INotificationHub

# Column set for each delivery state transition
DELIVERY_TIMESTAMP_COLUMNS = {
    DeliveryState.ROUTED: "routed_at",
    DeliveryState.RESPONDED: "responded_at",
}

JOB_TIMESTAMP_COLUMNS = {
    JobStatus.IN_PROGRESS: "started_at",
    JobStatus.COMPLETED: "completed_at",
    JobStatus.FAILED: "completed_at",
    JobStatus.CANCELLED: "completed_at",
}


class IStorage(Protocol):
    """Persistent storage for messages, deliveries, jobs and agent config."""

    async def init(self) -> None:
        """Connect and create tables."""
        ...

    async def close(self) -> None:
        """Close connections."""
        ...

    # Messages
    async def insert_message(
        self,
        sender: str,
        body: str,
        recipients: Sequence[str],
        reply_to: int | None = None,
        channel: str = DEFAULT_CHANNEL,
    ) -> Message:
        """Append a message and emit an agent_chat notification."""
        ...

    async def get_message(self, message_id: int) -> Message | None:
        """Get a message by id."""
        ...

    async def list_messages_for(
        self, recipient: str, since_id: int = 0, limit: int | None = None
    ) -> list[Message]:
        """Messages addressed to recipient with id > since_id, ascending."""
        ...

    # Delivery records
    async def insert_delivery(self, message_id: int, recipient: str) -> DeliveryRecord:
        """Create a received record if absent; return the current record."""
        ...

    async def get_delivery(
        self, message_id: int, recipient: str
    ) -> DeliveryRecord | None:
        """Get one delivery record."""
        ...

    async def update_delivery_state(
        self,
        message_id: int,
        recipient: str,
        from_states: Iterable[DeliveryState],
        to_state: DeliveryState,
        error_message: str | None = None,
    ) -> DeliveryRecord | None:
        """Compare-and-set the state. None when no row was in from_states."""
        ...

    async def list_deliveries(self, message_id: int) -> list[DeliveryRecord]:
        """All delivery records of a message, by recipient."""
        ...

    async def list_deliveries_in_state(
        self, state: DeliveryState, entered_before: datetime
    ) -> list[DeliveryRecord]:
        """Records sitting in state since before the given time."""
        ...

    async def delivery_response_stats(self) -> list[ResponseStats]:
        """Per-agent received-to-responded times over responded records."""
        ...

    # Jobs
    async def insert_job(self, job: Job) -> Job:
        """Store a new job; returns it with id and timestamps set."""
        ...

    async def get_job(self, job_id: int) -> Job | None:
        """Get a job by id."""
        ...

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
        """Compare-and-set the status. None when no row was in from_statuses.

        A notice is stored in the same transaction as the status change,
        so either both are committed or neither is.
        """
        ...

    async def list_open_jobs(self, owner: str) -> list[Job]:
        """Pending/in-progress jobs, priority desc then oldest first."""
        ...

    async def list_jobs_for_message(
        self, message_id: int, owner: str, statuses: Iterable[JobStatus]
    ) -> list[Job]:
        """Jobs of owner originating from message_id in the given statuses."""
        ...

    async def list_child_jobs(self, parent_job_id: int) -> list[Job]:
        """Direct children of a job."""
        ...

    # Agent configuration
    async def list_agent_configs(self) -> list[AgentConfigRow]:
        """Publishable agent rows, ordered by name."""
        ...

    async def get_agent_config(self, name: str) -> AgentConfigRow | None:
        """Case-insensitive lookup of one agent row."""
        ...

    async def upsert_agent_config(self, row: AgentConfigRow) -> None:
        """Create or replace an agent row (matched case-insensitively)."""
        ...

    async def delete_agent_config(self, name: str) -> bool:
        """Delete an agent row. Returns False if it did not exist."""
        ...

    async def list_system_defaults(self) -> list[SystemDefaultRow]:
        """Rows for the recognized system default keys only."""
        ...

    async def set_system_default(self, row: SystemDefaultRow) -> None:
        """Create or replace a system default."""
        ...

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _from_db(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _load_list(value: str | None) -> list[str] | None:
    if value is None:
        return None
    return list(json.loads(value))


class Storage:
    """SQLite storage implementation (aiosqlite)."""

    def __init__(
        self,
        db_path: str | Path | None = None,
        notifier: INotificationHub | None = None,
    ):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._notifier = notifier
        self._conn: aiosqlite.Connection | None = None
        # One connection is shared by all tasks; writes take turns on it
        self._write_lock = asyncio.Lock()

    async def init(self) -> None:
        """Initialize database and create tables."""
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA foreign_keys=ON")

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _db(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Storage not initialized")
        return self._conn

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Commit on success, roll back on any error."""
        db = self._db()
        async with self._write_lock:
            try:
                yield db
            except BaseException:
                await db.rollback()
                raise
            await db.commit()

    async def _notify(self, channel: Channel, payload: dict) -> None:
        if self._notifier is not None:
            await self._notifier.publish(ChangeEvent(channel=channel, payload=payload))

    # Messages
    async def insert_message(
        self,
        sender: str,
        body: str,
        recipients: Sequence[str],
        reply_to: int | None = None,
        channel: str = DEFAULT_CHANNEL,
    ) -> Message:
        """Append a message and emit an agent_chat notification."""
        draft = MessageDraft(
            sender=sender,
            body=body,
            recipients=list(recipients),
            reply_to=reply_to,
            channel=channel,
        )
        created_at = _utcnow()
        async with self._transaction() as db:
            message_id = await self._insert_message_row(db, draft, created_at)

        await self._notify_message(message_id, draft)

        return Message(
            id=message_id,
            sender=draft.sender,
            body=draft.body,
            recipients=draft.recipients,
            reply_to=draft.reply_to,
            channel=draft.channel,
            created_at=created_at,
        )

    async def _insert_message_row(
        self, db: aiosqlite.Connection, draft: MessageDraft, created_at: datetime
    ) -> int:
        cursor = await db.execute(
            """
            INSERT INTO agent_chat (channel, sender, message, mentions, reply_to, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                draft.channel,
                draft.sender,
                draft.body,
                json.dumps(draft.recipients),
                draft.reply_to,
                _to_db(created_at),
            ),
        )
        return cursor.lastrowid

    async def _notify_message(self, message_id: int, draft: MessageDraft) -> None:
        await self._notify(
            Channel.AGENT_CHAT,
            {
                "id": message_id,
                "channel": draft.channel,
                "sender": draft.sender,
                "mentions": draft.recipients,
            },
        )

    async def get_message(self, message_id: int) -> Message | None:
        """Get a message by id."""
        cursor = await self._db().execute(
            "SELECT * FROM agent_chat WHERE id = ?", (message_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_message(row) if row else None

    async def list_messages_for(
        self, recipient: str, since_id: int = 0, limit: int | None = None
    ) -> list[Message]:
        """Messages addressed to recipient with id > since_id, ascending."""
        query = """
            SELECT * FROM agent_chat
            WHERE id > ?
              AND EXISTS (SELECT 1 FROM json_each(agent_chat.mentions) WHERE value = ?)
            ORDER BY id ASC
        """
        params: list = [since_id, recipient]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        cursor = await self._db().execute(query, params)
        rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    # Delivery records
    async def insert_delivery(self, message_id: int, recipient: str) -> DeliveryRecord:
        """Create a received record if absent; return the current record."""
        async with self._transaction() as db:
            await db.execute(
                """
                INSERT OR IGNORE INTO agent_chat_processed (chat_id, agent, status, received_at)
                VALUES (?, ?, ?, ?)
                """,
                (message_id, recipient, DeliveryState.RECEIVED.value, _to_db(_utcnow())),
            )

        record = await self.get_delivery(message_id, recipient)
        if record is None:
            raise RuntimeError(f"Delivery record ({message_id}, {recipient}) vanished")
        return record

    async def get_delivery(
        self, message_id: int, recipient: str
    ) -> DeliveryRecord | None:
        """Get one delivery record."""
        cursor = await self._db().execute(
            "SELECT * FROM agent_chat_processed WHERE chat_id = ? AND agent = ?",
            (message_id, recipient),
        )
        row = await cursor.fetchone()
        return self._row_to_delivery(row) if row else None

    async def update_delivery_state(
        self,
        message_id: int,
        recipient: str,
        from_states: Iterable[DeliveryState],
        to_state: DeliveryState,
        error_message: str | None = None,
    ) -> DeliveryRecord | None:
        """Compare-and-set the state. None when no row was in from_states."""
        allowed = [s.value for s in from_states]
        placeholders = ",".join("?" * len(allowed))

        assignments = ["status = ?"]
        params: list = [to_state.value]
        column = DELIVERY_TIMESTAMP_COLUMNS.get(to_state)
        if column:
            assignments.append(f"{column} = ?")
            params.append(_to_db(_utcnow()))
        if error_message is not None:
            assignments.append("error_message = ?")
            params.append(error_message)

        async with self._transaction() as db:
            cursor = await db.execute(
                f"""
                UPDATE agent_chat_processed
                SET {", ".join(assignments)}
                WHERE chat_id = ? AND agent = ? AND status IN ({placeholders})
                """,
                (*params, message_id, recipient, *allowed),
            )
            updated = cursor.rowcount

        if updated == 0:
            return None
        return await self.get_delivery(message_id, recipient)

    async def list_deliveries(self, message_id: int) -> list[DeliveryRecord]:
        """All delivery records of a message, by recipient."""
        cursor = await self._db().execute(
            "SELECT * FROM agent_chat_processed WHERE chat_id = ? ORDER BY agent",
            (message_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_delivery(row) for row in rows]

    async def list_deliveries_in_state(
        self, state: DeliveryState, entered_before: datetime
    ) -> list[DeliveryRecord]:
        """Records sitting in state since before the given time."""
        column = DELIVERY_TIMESTAMP_COLUMNS.get(state, "received_at")
        cursor = await self._db().execute(
            f"""
            SELECT * FROM agent_chat_processed
            WHERE status = ? AND {column} < ?
            ORDER BY {column} ASC
            """,
            (state.value, _to_db(entered_before)),
        )
        rows = await cursor.fetchall()
        return [self._row_to_delivery(row) for row in rows]

    async def delivery_response_stats(self) -> list[ResponseStats]:
        """Per-agent received-to-responded times over responded records."""
        cursor = await self._db().execute(
            """
            SELECT agent,
                   COUNT(*) AS responses,
                   AVG(seconds) AS avg_seconds,
                   MIN(seconds) AS min_seconds,
                   MAX(seconds) AS max_seconds
            FROM (
                SELECT agent,
                       (julianday(responded_at) - julianday(received_at)) * 86400.0
                           AS seconds
                FROM agent_chat_processed
                WHERE status = ? AND responded_at IS NOT NULL
            )
            GROUP BY agent
            ORDER BY agent
            """,
            (DeliveryState.RESPONDED.value,),
        )
        rows = await cursor.fetchall()
        return [
            ResponseStats(
                agent=row["agent"],
                responses=row["responses"],
                avg_seconds=row["avg_seconds"],
                min_seconds=row["min_seconds"],
                max_seconds=row["max_seconds"],
            )
            for row in rows
        ]

    # Jobs
    async def insert_job(self, job: Job) -> Job:
        """Store a new job; returns it with id and timestamps set."""
        now = _utcnow()
        async with self._transaction() as db:
            cursor = await db.execute(
                """
                INSERT INTO agent_jobs
                (message_id, agent_name, requester, parent_job_id, status, priority,
                 notify_agents, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.message_id,
                    job.owner,
                    job.requester,
                    job.parent_job_id,
                    job.status.value,
                    job.priority,
                    json.dumps(job.notify_list),
                    _to_db(now),
                    _to_db(now),
                ),
            )
            job_id = cursor.lastrowid

        stored = await self.get_job(job_id)
        if stored is None:
            raise RuntimeError(f"Job {job_id} vanished after insert")
        return stored

    async def get_job(self, job_id: int) -> Job | None:
        """Get a job by id."""
        cursor = await self._db().execute(
            "SELECT * FROM agent_jobs WHERE id = ?", (job_id,)
        )
        row = await cursor.fetchone()
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
        """Compare-and-set the status. None when no row was in from_statuses.

        The notice, if any, is only written when the status changed.
        """
        changed_at = _utcnow()
        now = _to_db(changed_at)
        allowed = [s.value for s in from_statuses]
        placeholders = ",".join("?" * len(allowed))

        assignments = ["status = ?", "updated_at = ?"]
        params: list = [to_status.value, now]
        column = JOB_TIMESTAMP_COLUMNS.get(to_status)
        if column:
            assignments.append(f"{column} = ?")
            params.append(now)
        for name, value in (
            ("deliverable_path", deliverable_path),
            ("deliverable_summary", deliverable_summary),
            ("error_message", error_message),
        ):
            if value is not None:
                assignments.append(f"{name} = ?")
                params.append(value)

        notice_id: int | None = None
        async with self._transaction() as db:
            cursor = await db.execute(
                f"""
                UPDATE agent_jobs
                SET {", ".join(assignments)}
                WHERE id = ? AND status IN ({placeholders})
                """,
                (*params, job_id, *allowed),
            )
            updated = cursor.rowcount
            if updated and notice is not None:
                notice_id = await self._insert_message_row(db, notice, changed_at)

        if updated == 0:
            return None
        if notice_id is not None:
            await self._notify_message(notice_id, notice)
        return await self.get_job(job_id)

    async def list_open_jobs(self, owner: str) -> list[Job]:
        """Pending/in-progress jobs, priority desc then oldest first."""
        cursor = await self._db().execute(
            """
            SELECT * FROM agent_jobs
            WHERE agent_name = ? AND status IN (?, ?)
            ORDER BY priority DESC, created_at ASC, id ASC
            """,
            (owner, JobStatus.PENDING.value, JobStatus.IN_PROGRESS.value),
        )
        rows = await cursor.fetchall()
        return [self._row_to_job(row) for row in rows]

    async def list_jobs_for_message(
        self, message_id: int, owner: str, statuses: Iterable[JobStatus]
    ) -> list[Job]:
        """Jobs of owner originating from message_id in the given statuses."""
        wanted = [s.value for s in statuses]
        placeholders = ",".join("?" * len(wanted))
        cursor = await self._db().execute(
            f"""
            SELECT * FROM agent_jobs
            WHERE message_id = ? AND agent_name = ? AND status IN ({placeholders})
            ORDER BY id ASC
            """,
            (message_id, owner, *wanted),
        )
        rows = await cursor.fetchall()
        return [self._row_to_job(row) for row in rows]

    async def list_child_jobs(self, parent_job_id: int) -> list[Job]:
        """Direct children of a job."""
        cursor = await self._db().execute(
            "SELECT * FROM agent_jobs WHERE parent_job_id = ? ORDER BY id ASC",
            (parent_job_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_job(row) for row in rows]

    # Agent configuration
    async def list_agent_configs(self) -> list[AgentConfigRow]:
        """Publishable agent rows, ordered by name."""
        placeholders = ",".join("?" * len(PUBLISHED_INSTANCE_TYPES))
        cursor = await self._db().execute(
            f"""
            SELECT name, model, fallback_models, thinking, instance_type, allowed_subagents
            FROM agents
            WHERE instance_type IN ({placeholders}) AND model IS NOT NULL
            ORDER BY name
            """,
            PUBLISHED_INSTANCE_TYPES,
        )
        rows = await cursor.fetchall()
        return [self._row_to_agent(row) for row in rows]

    async def get_agent_config(self, name: str) -> AgentConfigRow | None:
        """Case-insensitive lookup of one agent row."""
        cursor = await self._db().execute(
            """
            SELECT name, model, fallback_models, thinking, instance_type, allowed_subagents
            FROM agents
            WHERE lower(name) = lower(?)
            LIMIT 1
            """,
            (name,),
        )
        row = await cursor.fetchone()
        return self._row_to_agent(row) if row else None

    async def upsert_agent_config(self, row: AgentConfigRow) -> None:
        """Create or replace an agent row (matched case-insensitively)."""
        values = (
            row.name,
            row.model,
            json.dumps(row.fallback_models) if row.fallback_models is not None else None,
            row.thinking,
            row.instance_type,
            (
                json.dumps(row.allowed_subagents)
                if row.allowed_subagents is not None
                else None
            ),
            _to_db(_utcnow()),
        )

        async with self._transaction() as db:
            cursor = await db.execute(
                """
                UPDATE agents
                SET name = ?, model = ?, fallback_models = ?, thinking = ?,
                    instance_type = ?, allowed_subagents = ?, updated_at = ?
                WHERE lower(name) = lower(?)
                """,
                (*values, row.name),
            )
            op = "update"
            if cursor.rowcount == 0:
                await db.execute(
                    """
                    INSERT INTO agents
                    (name, model, fallback_models, thinking, instance_type,
                     allowed_subagents, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    values,
                )
                op = "insert"

        await self._notify(Channel.AGENT_CONFIG, {"table": "agents", "op": op, "key": row.name})

    async def delete_agent_config(self, name: str) -> bool:
        """Delete an agent row. Returns False if it did not exist."""
        async with self._transaction() as db:
            cursor = await db.execute(
                "DELETE FROM agents WHERE lower(name) = lower(?)", (name,)
            )
            deleted = cursor.rowcount

        if deleted:
            await self._notify(
                Channel.AGENT_CONFIG, {"table": "agents", "op": "delete", "key": name}
            )
        return deleted > 0

    async def list_system_defaults(self) -> list[SystemDefaultRow]:
        """Rows for the recognized system default keys only."""
        keys = [k.value for k in SystemDefaultKey]
        placeholders = ",".join("?" * len(keys))
        cursor = await self._db().execute(
            f"""
            SELECT key, value, value_type FROM agent_system_config
            WHERE key IN ({placeholders})
            ORDER BY key
            """,
            keys,
        )
        rows = await cursor.fetchall()
        return [
            SystemDefaultRow(key=row["key"], value=row["value"], value_type=row["value_type"])
            for row in rows
        ]

    async def set_system_default(self, row: SystemDefaultRow) -> None:
        """Create or replace a system default."""
        async with self._transaction() as db:
            await db.execute(
                """
                INSERT OR REPLACE INTO agent_system_config (key, value, value_type, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (row.key, row.value, row.value_type, _to_db(_utcnow())),
            )

        await self._notify(
            Channel.AGENT_CONFIG,
            {"table": "agent_system_config", "op": "upsert", "key": row.key},
        )

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        tables = [
            "agent_jobs",
            "agent_chat_processed",
            "agent_chat",
            "agents",
            "agent_system_config",
        ]

        async with self._transaction() as db:
            for table in tables:
                await db.execute(f"DELETE FROM {table}")

    # Row mapping
    @staticmethod
    def _row_to_message(row: aiosqlite.Row) -> Message:
        return Message(
            id=row["id"],
            sender=row["sender"],
            body=row["message"],
            recipients=_load_list(row["mentions"]) or [],
            reply_to=row["reply_to"],
            channel=row["channel"],
            created_at=_from_db(row["created_at"]),
        )

    @staticmethod
    def _row_to_delivery(row: aiosqlite.Row) -> DeliveryRecord:
        return DeliveryRecord(
            message_id=row["chat_id"],
            recipient=row["agent"],
            state=DeliveryState(row["status"]),
            received_at=_from_db(row["received_at"]),
            routed_at=_from_db(row["routed_at"]),
            responded_at=_from_db(row["responded_at"]),
            error_message=row["error_message"],
        )

    @staticmethod
    def _row_to_job(row: aiosqlite.Row) -> Job:
        return Job(
            id=row["id"],
            owner=row["agent_name"],
            status=JobStatus(row["status"]),
            priority=row["priority"],
            message_id=row["message_id"],
            requester=row["requester"],
            parent_job_id=row["parent_job_id"],
            notify_list=_load_list(row["notify_agents"]) or [],
            deliverable_path=row["deliverable_path"],
            deliverable_summary=row["deliverable_summary"],
            error_message=row["error_message"],
            created_at=_from_db(row["created_at"]),
            started_at=_from_db(row["started_at"]),
            completed_at=_from_db(row["completed_at"]),
            updated_at=_from_db(row["updated_at"]),
        )

    @staticmethod
    def _row_to_agent(row: aiosqlite.Row) -> AgentConfigRow:
        return AgentConfigRow(
            name=row["name"],
            model=row["model"],
            fallback_models=_load_list(row["fallback_models"]),
            thinking=row["thinking"],
            instance_type=row["instance_type"],
            allowed_subagents=_load_list(row["allowed_subagents"]),
        )
