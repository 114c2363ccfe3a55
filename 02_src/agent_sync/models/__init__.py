"""Core data models for agent-sync."""

from .agents import (
    PUBLISHED_INSTANCE_TYPES,
    AgentConfigRow,
    SystemDefaultKey,
    SystemDefaultRow,
)
from .jobs import DEFAULT_PRIORITY, MAX_PRIORITY, MIN_PRIORITY, Job, JobStatus
from .messages import (
    DEFAULT_CHANNEL,
    JOB_STATUS_CHANNEL,
    DeliveryRecord,
    DeliveryState,
    Message,
    MessageDraft,
    ResponseStats,
)
from .notifications import ChangeEvent, Channel

__all__ = [
    # Messages
    "DEFAULT_CHANNEL",
    "JOB_STATUS_CHANNEL",
    "Message",
    "MessageDraft",
    "ResponseStats",
    "DeliveryRecord",
    "DeliveryState",
    # Jobs
    "Job",
    "JobStatus",
    "MIN_PRIORITY",
    "MAX_PRIORITY",
    "DEFAULT_PRIORITY",
    # Agents
    "AgentConfigRow",
    "SystemDefaultRow",
    "SystemDefaultKey",
    "PUBLISHED_INSTANCE_TYPES",
    # Notifications
    "Channel",
    "ChangeEvent",
]
