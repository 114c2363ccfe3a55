"""Per-(message, recipient) delivery state machine."""

from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from ..errors import InvalidStateTransition, TransientStoreError, ValidationError
from ..logging_config import get_logger
from ..models import DeliveryRecord, DeliveryState, JobStatus, ResponseStats
from ..storage import IStorage

if TYPE_CHECKING:
    from ..jobs import IJobTracker

logger = get_logger(__name__)

# Allowed source states for each target state
ALLOWED_SOURCES: dict[DeliveryState, tuple[DeliveryState, ...]] = {
    DeliveryState.ROUTED: (DeliveryState.RECEIVED,),
    DeliveryState.RESPONDED: (DeliveryState.ROUTED,),
    DeliveryState.FAILED: (DeliveryState.RECEIVED, DeliveryState.ROUTED),
}


class IDeliveryTracker(Protocol):
    """Tracks each recipient's progress through each message."""

    async def mark_received(self, message_id: int, recipient: str) -> DeliveryRecord:
        """Create the record if absent and return the current one."""
        ...

    async def mark_routed(self, message_id: int, recipient: str) -> DeliveryRecord:
        """received -> routed."""
        ...

    async def mark_responded(self, message_id: int, recipient: str) -> DeliveryRecord:
        """routed -> responded."""
        ...

    async def mark_failed(
        self, message_id: int, recipient: str, error: str
    ) -> DeliveryRecord:
        """received|routed -> failed."""
        ...

    async def get(self, message_id: int, recipient: str) -> DeliveryRecord | None:
        """Get one record."""
        ...

    async def list_for_message(self, message_id: int) -> list[DeliveryRecord]:
        """All records of a message."""
        ...

    async def list_stalled(
        self, older_than: datetime, state: DeliveryState = DeliveryState.ROUTED
    ) -> list[DeliveryRecord]:
        """Records stuck in state since before older_than."""
        ...

    async def response_stats(self) -> list[ResponseStats]:
        """Per-agent count and avg/min/max seconds from received to responded."""
        ...


class DeliveryTracker:
    """Delivery records with compare-and-set transitions.

    Records never move backward and terminal states are never overwritten.
    When a job tracker is attached, jobs created from message M for owner R
    follow the (M, R) record: routed starts them, responded completes them.
    """

    def __init__(self, storage: IStorage, jobs: "IJobTracker | None" = None):
        self._storage = storage
        self._jobs = jobs

    def attach_jobs(self, jobs: "IJobTracker") -> None:
        """Link job lifecycle to delivery transitions."""
        self._jobs = jobs

    async def mark_received(self, message_id: int, recipient: str) -> DeliveryRecord:
        """Idempotent: a repeated call returns the existing record unchanged."""
        if await self._storage.get_message(message_id) is None:
            raise ValidationError(f"message {message_id} does not exist")
        return await self._storage.insert_delivery(message_id, recipient)

    async def mark_routed(self, message_id: int, recipient: str) -> DeliveryRecord:
        record = await self._transition(message_id, recipient, DeliveryState.ROUTED)
        if self._jobs is not None:
            await self._advance_jobs(
                message_id, recipient, JobStatus.PENDING, JobStatus.IN_PROGRESS
            )
        return record

    async def mark_responded(self, message_id: int, recipient: str) -> DeliveryRecord:
        record = await self._transition(message_id, recipient, DeliveryState.RESPONDED)
        if self._jobs is not None:
            await self._advance_jobs(
                message_id, recipient, JobStatus.IN_PROGRESS, JobStatus.COMPLETED
            )
        return record

    async def mark_failed(
        self, message_id: int, recipient: str, error: str
    ) -> DeliveryRecord:
        return await self._transition(
            message_id, recipient, DeliveryState.FAILED, error_message=error
        )

    async def get(self, message_id: int, recipient: str) -> DeliveryRecord | None:
        return await self._storage.get_delivery(message_id, recipient)

    async def list_for_message(self, message_id: int) -> list[DeliveryRecord]:
        return await self._storage.list_deliveries(message_id)

    async def list_stalled(
        self, older_than: datetime, state: DeliveryState = DeliveryState.ROUTED
    ) -> list[DeliveryRecord]:
        return await self._storage.list_deliveries_in_state(state, older_than)

    async def response_stats(self) -> list[ResponseStats]:
        return await self._storage.delivery_response_stats()

    async def _transition(
        self,
        message_id: int,
        recipient: str,
        target: DeliveryState,
        error_message: str | None = None,
    ) -> DeliveryRecord:
        updated = await self._storage.update_delivery_state(
            message_id,
            recipient,
            from_states=ALLOWED_SOURCES[target],
            to_state=target,
            error_message=error_message,
        )
        if updated is None:
            # Lost the race or the record is absent/terminal
            current = await self._storage.get_delivery(message_id, recipient)
            raise InvalidStateTransition(
                f"delivery ({message_id}, {recipient})",
                current.state.value if current else None,
                target.value,
            )

        logger.info(
            "Delivery %s",
            target.value,
            extra={
                "context": {
                    "message_id": message_id,
                    "recipient": recipient,
                    "state": target.value,
                    "error": error_message,
                }
            },
        )
        return updated

    async def _advance_jobs(
        self,
        message_id: int,
        recipient: str,
        source: JobStatus,
        target: JobStatus,
    ) -> None:
        try:
            jobs = await self._storage.list_jobs_for_message(message_id, recipient, [source])
        except TransientStoreError as e:
            logger.error(
                "Linked jobs of message %s for %s not advanced: %s", message_id, recipient, e
            )
            return
        for job in jobs:
            try:
                if target == JobStatus.COMPLETED:
                    await self._jobs.complete_job(job.id, actor=recipient)
                else:
                    await self._jobs.transition(job.id, target, actor=recipient)
            except InvalidStateTransition as e:
                # Someone else moved the job first
                logger.info("Linked job %s not advanced: %s", job.id, e)
            except TransientStoreError as e:
                # The delivery is already committed; the job keeps its status
                logger.error(
                    "Linked job %s left %s: %s",
                    job.id,
                    source.value,
                    e,
                    extra={"context": {"job_id": job.id, "target": target.value}},
                )
