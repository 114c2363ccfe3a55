"""Agent configuration data models."""

from dataclasses import dataclass
from enum import Enum

# Instance types that appear in the published configuration
PUBLISHED_INSTANCE_TYPES = ("primary", "subagent")


class SystemDefaultKey(str, Enum):
    """Recognized agent_system_config keys. Anything else is ignored."""

    MAX_SPAWN_DEPTH = "max_spawn_depth"
    MAX_CONCURRENT_SUBAGENTS = "max_concurrent_subagents"


@dataclass
class AgentConfigRow:
    """Deployment parameters of one agent."""

    name: str
    model: str | None
    fallback_models: list[str] | None = None
    thinking: str | None = None  # applied at spawn time, never published
    instance_type: str = "primary"
    allowed_subagents: list[str] | None = None


@dataclass
class SystemDefaultRow:
    """Typed key/value default applying to every agent."""

    key: str
    value: str
    value_type: str = "integer"
