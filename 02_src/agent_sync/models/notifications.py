"""Change notification data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class Channel(str, Enum):
    """Notification channels (PostgreSQL LISTEN channel names)."""

    AGENT_CHAT = "agent_chat"
    AGENT_CONFIG = "agent_config_changed"


@dataclass
class ChangeEvent:
    """A lightweight, non-durable signal that a watched table changed."""

    channel: Channel
    payload: dict
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
