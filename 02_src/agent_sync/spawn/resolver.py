"""Spawn-time lookup of per-agent overrides."""

from dataclasses import dataclass, field

from ..errors import TransientStoreError
from ..logging_config import get_logger
from ..storage import IStorage

logger = get_logger(__name__)

MISSING_AGENT_ID_REASON = (
    "agentId is required when spawn config lookup is active; pass an explicit agentId"
)


@dataclass
class SpawnDecision:
    """Outcome of a pre-spawn lookup."""

    blocked: bool = False
    reason: str | None = None
    overrides: dict = field(default_factory=dict)


def _is_empty(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


class SpawnConfigResolver:
    """Applies database values as authoritative spawn parameters.

    A missing agent id blocks the spawn. Unknown agents and store failures
    leave the caller's own parameters untouched.
    """

    def __init__(self, storage: IStorage):
        self._storage = storage

    async def resolve(self, agent_id: str | None) -> SpawnDecision:
        if agent_id is None or not agent_id.strip():
            logger.error("Spawn blocked: no agent id given")
            return SpawnDecision(blocked=True, reason=MISSING_AGENT_ID_REASON)

        name = agent_id.strip()
        try:
            row = await self._storage.get_agent_config(name)
        except TransientStoreError as e:
            logger.error("Agent config lookup failed for %s, spawning unchanged: %s", name, e)
            return SpawnDecision()

        if row is None:
            logger.info("Agent not found in config store: %s", name)
            return SpawnDecision()

        overrides = {}
        for key, value in (
            ("model", row.model),
            ("fallback_models", row.fallback_models),
            ("thinking", row.thinking),
        ):
            if not _is_empty(value):
                overrides[key] = value

        if overrides:
            logger.info(
                "Applied spawn config for %s",
                name,
                extra={"context": {"agent": row.name, "overrides": overrides}},
            )
        else:
            logger.info("Agent %s found but has no spawn overrides", name)
        return SpawnDecision(overrides=overrides)
