"""Message-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

DEFAULT_CHANNEL = "default"
JOB_STATUS_CHANNEL = "job_status"


class DeliveryState(str, Enum):
    """Processing state of one (message, recipient) pair."""

    RECEIVED = "received"
    ROUTED = "routed"
    RESPONDED = "responded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryState.RESPONDED, DeliveryState.FAILED)


@dataclass
class Message:
    """A single inter-agent message. Immutable once stored."""

    id: int
    sender: str
    body: str
    recipients: list[str] = field(default_factory=list)
    reply_to: int | None = None
    channel: str = DEFAULT_CHANNEL
    created_at: datetime | None = None


@dataclass
class DeliveryRecord:
    """Progress of one recipient through one message."""

    message_id: int
    recipient: str
    state: DeliveryState
    received_at: datetime | None = None
    routed_at: datetime | None = None
    responded_at: datetime | None = None
    error_message: str | None = None


@dataclass
class MessageDraft:
    """A message not yet stored; written alongside another change."""

    sender: str
    body: str
    recipients: list[str] = field(default_factory=list)
    reply_to: int | None = None
    channel: str = DEFAULT_CHANNEL


@dataclass
class ResponseStats:
    """Response times of one agent, in seconds from received to responded."""

    agent: str
    responses: int
    avg_seconds: float
    min_seconds: float
    max_seconds: float
