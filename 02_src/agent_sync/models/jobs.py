"""Job tracking data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

MIN_PRIORITY = 1
MAX_PRIORITY = 10
DEFAULT_PRIORITY = 5


class JobStatus(str, Enum):
    """Lifecycle of a delegated job."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_open(self) -> bool:
        return self in (JobStatus.PENDING, JobStatus.IN_PROGRESS)


@dataclass
class Job:
    """A unit of delegated work, optionally derived from a message."""

    id: int
    owner: str
    status: JobStatus = JobStatus.PENDING
    priority: int = DEFAULT_PRIORITY
    message_id: int | None = None
    requester: str | None = None
    parent_job_id: int | None = None
    notify_list: list[str] = field(default_factory=list)
    deliverable_path: str | None = None
    deliverable_summary: str | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None
