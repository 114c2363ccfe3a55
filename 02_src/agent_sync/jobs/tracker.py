"""Job tree tracking with completion notifications."""

from typing import Protocol, Sequence

from ..errors import AuthorizationError, InvalidStateTransition, ValidationError
from ..logging_config import get_logger
from ..models import (
    DEFAULT_PRIORITY,
    JOB_STATUS_CHANNEL,
    MAX_PRIORITY,
    MIN_PRIORITY,
    Job,
    JobStatus,
    MessageDraft,
)
from ..storage import IStorage

logger = get_logger(__name__)

# Allowed source statuses for each target status
ALLOWED_SOURCES: dict[JobStatus, tuple[JobStatus, ...]] = {
    JobStatus.IN_PROGRESS: (JobStatus.PENDING,),
    JobStatus.COMPLETED: (JobStatus.IN_PROGRESS,),
    JobStatus.FAILED: (JobStatus.IN_PROGRESS,),
    JobStatus.CANCELLED: (JobStatus.PENDING,),
}


class IJobTracker(Protocol):
    """Creation and lifecycle of delegated jobs."""

    async def create_job(
        self,
        owner: str,
        requester: str | None = None,
        parent_job_id: int | None = None,
        notify_list: Sequence[str] = (),
        message_id: int | None = None,
        priority: int = DEFAULT_PRIORITY,
    ) -> int:
        """Create a pending job and return its id."""
        ...

    async def transition(
        self,
        job_id: int,
        new_status: JobStatus,
        actor: str,
        error_message: str | None = None,
    ) -> Job:
        """Move a job to new_status on behalf of actor."""
        ...

    async def complete_job(
        self,
        job_id: int,
        deliverable_path: str | None = None,
        deliverable_summary: str | None = None,
        actor: str | None = None,
    ) -> Job:
        """Complete an in-progress job, recording its deliverable."""
        ...

    async def list_pending(self, owner: str) -> list[Job]:
        """Open jobs of owner, most urgent first."""
        ...

    async def get_job(self, job_id: int) -> Job | None:
        """Get a job by id."""
        ...

    async def list_children(self, job_id: int) -> list[Job]:
        """Direct child jobs."""
        ...

    async def list_for_message(self, message_id: int, owner: str) -> list[Job]:
        """Jobs of owner created from a message."""
        ...


class JobTracker:
    """Jobs form a tree through parent_job_id.

    Cancelling or failing a job does not touch its children. Completion
    sends one message from the owner to the notify list, written in the
    same transaction as the status change; only the caller whose
    conditional update succeeded sends it.
    """

    def __init__(self, storage: IStorage):
        self._storage = storage

    async def create_job(
        self,
        owner: str,
        requester: str | None = None,
        parent_job_id: int | None = None,
        notify_list: Sequence[str] = (),
        message_id: int | None = None,
        priority: int = DEFAULT_PRIORITY,
    ) -> int:
        if not owner or not owner.strip():
            raise ValidationError("job owner must not be empty")
        if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
            raise ValidationError(
                f"priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}, got {priority}"
            )
        if parent_job_id is not None and await self._storage.get_job(parent_job_id) is None:
            raise ValidationError(f"parent job {parent_job_id} does not exist")
        if message_id is not None and await self._storage.get_message(message_id) is None:
            raise ValidationError(f"message {message_id} does not exist")

        job = await self._storage.insert_job(
            Job(
                id=0,
                owner=owner,
                status=JobStatus.PENDING,
                priority=priority,
                message_id=message_id,
                requester=requester,
                parent_job_id=parent_job_id,
                notify_list=list(notify_list),
            )
        )
        logger.info(
            "Job created",
            extra={
                "context": {
                    "job_id": job.id,
                    "owner": owner,
                    "requester": requester,
                    "parent_job_id": parent_job_id,
                    "message_id": message_id,
                    "priority": priority,
                }
            },
        )
        return job.id

    async def transition(
        self,
        job_id: int,
        new_status: JobStatus,
        actor: str,
        error_message: str | None = None,
    ) -> Job:
        return await self._transition(
            job_id, new_status, actor, error_message=error_message
        )

    async def complete_job(
        self,
        job_id: int,
        deliverable_path: str | None = None,
        deliverable_summary: str | None = None,
        actor: str | None = None,
    ) -> Job:
        """Complete an in-progress job.

        actor=None acts as the owner. A second call raises
        InvalidStateTransition, so the notify list is messaged at most once.
        """
        return await self._transition(
            job_id,
            JobStatus.COMPLETED,
            actor,
            deliverable_path=deliverable_path,
            deliverable_summary=deliverable_summary,
        )

    async def list_pending(self, owner: str) -> list[Job]:
        return await self._storage.list_open_jobs(owner)

    async def get_job(self, job_id: int) -> Job | None:
        return await self._storage.get_job(job_id)

    async def list_children(self, job_id: int) -> list[Job]:
        return await self._storage.list_child_jobs(job_id)

    async def list_for_message(self, message_id: int, owner: str) -> list[Job]:
        """All jobs of owner that originate from message_id."""
        return await self._storage.list_jobs_for_message(message_id, owner, list(JobStatus))

    async def _transition(
        self,
        job_id: int,
        new_status: JobStatus,
        actor: str | None,
        error_message: str | None = None,
        deliverable_path: str | None = None,
        deliverable_summary: str | None = None,
    ) -> Job:
        job = await self._storage.get_job(job_id)
        if job is None:
            raise ValidationError(f"job {job_id} does not exist")
        if actor is not None and actor != job.owner:
            raise AuthorizationError(actor, f"job {job_id}")

        sources = ALLOWED_SOURCES.get(new_status)
        if not sources or job.status not in sources:
            raise InvalidStateTransition(f"job {job_id}", job.status.value, new_status.value)

        notice = None
        if new_status == JobStatus.COMPLETED:
            notice = self._completion_notice(
                job,
                deliverable_path or job.deliverable_path,
                deliverable_summary or job.deliverable_summary,
            )

        updated = await self._storage.update_job_status(
            job_id,
            from_statuses=sources,
            to_status=new_status,
            deliverable_path=deliverable_path,
            deliverable_summary=deliverable_summary,
            error_message=error_message,
            notice=notice,
        )
        if updated is None:
            # Lost the race to a concurrent transition
            current = await self._storage.get_job(job_id)
            raise InvalidStateTransition(
                f"job {job_id}",
                current.status.value if current else None,
                new_status.value,
            )

        logger.info(
            "Job %s",
            new_status.value,
            extra={
                "context": {
                    "job_id": job_id,
                    "owner": updated.owner,
                    "actor": actor or updated.owner,
                    "status": new_status.value,
                }
            },
        )
        if notice is not None:
            logger.info(
                "Job completion announced",
                extra={"context": {"job_id": job_id, "notify_list": notice.recipients}},
            )
        return updated

    @staticmethod
    def _completion_notice(
        job: Job, deliverable_path: str | None, deliverable_summary: str | None
    ) -> MessageDraft | None:
        if not job.notify_list:
            return None

        lines = [f"Job {job.id} completed by {job.owner}."]
        if deliverable_summary:
            lines.append(deliverable_summary)
        if deliverable_path:
            lines.append(f"Deliverable: {deliverable_path}")

        return MessageDraft(
            sender=job.owner,
            body="\n".join(lines),
            recipients=list(job.notify_list),
            reply_to=job.message_id,
            channel=JOB_STATUS_CHANNEL,
        )
