"""Pure construction of the published agents.json document.

The builder never talks to storage and never raises on bad system
defaults: invalid values are logged and skipped so one bad row cannot
block publishing the rest of the configuration.
"""

import json
import re
from dataclasses import dataclass
from typing import Iterable

from ..errors import ConfigParseError
from ..logging_config import get_logger
from ..models import AgentConfigRow, SystemDefaultKey, SystemDefaultRow

logger = get_logger(__name__)

# Optional sign and ASCII digits only
INTEGER_PATTERN = re.compile(r"[+-]?[0-9]+")


@dataclass(frozen=True)
class DefaultSpec:
    """How one system default key maps into the document."""

    field: str
    value_type: str
    minimum: int | None = None
    maximum: int | None = None


DEFAULT_SPECS: dict[SystemDefaultKey, DefaultSpec] = {
    SystemDefaultKey.MAX_SPAWN_DEPTH: DefaultSpec(
        field="maxSpawnDepth", value_type="integer", minimum=1, maximum=5
    ),
    SystemDefaultKey.MAX_CONCURRENT_SUBAGENTS: DefaultSpec(
        field="maxConcurrent", value_type="integer"
    ),
}


@dataclass
class SystemDefaults:
    """Parsed, validated system defaults. None means not set."""

    max_spawn_depth: int | None = None
    max_concurrent: int | None = None

    def as_subagents_block(self) -> dict:
        block = {}
        if self.max_spawn_depth is not None:
            block[DEFAULT_SPECS[SystemDefaultKey.MAX_SPAWN_DEPTH].field] = self.max_spawn_depth
        if self.max_concurrent is not None:
            block[DEFAULT_SPECS[SystemDefaultKey.MAX_CONCURRENT_SUBAGENTS].field] = (
                self.max_concurrent
            )
        return block


def _parse_value(key: SystemDefaultKey, spec: DefaultSpec, row: SystemDefaultRow) -> int:
    if row.value_type != spec.value_type:
        raise ConfigParseError(
            f"unexpected value_type {row.value_type!r} for {key.value} "
            f"(expected {spec.value_type!r})"
        )
    text = str(row.value).strip()
    if not INTEGER_PATTERN.fullmatch(text):
        raise ConfigParseError(f"invalid integer value {row.value!r} for {key.value}")
    parsed = int(text)

    clamped = parsed
    if spec.minimum is not None:
        clamped = max(spec.minimum, clamped)
    if spec.maximum is not None:
        clamped = min(spec.maximum, clamped)
    if clamped != parsed:
        logger.warning(
            "%s value %s clamped to %s (valid range: %s-%s)",
            key.value,
            parsed,
            clamped,
            spec.minimum,
            spec.maximum,
        )
    return clamped


def build_system_defaults(rows: Iterable[SystemDefaultRow]) -> SystemDefaults:
    """Parse recognized system default rows. Unknown keys are ignored."""
    defaults = SystemDefaults()
    for row in rows:
        try:
            key = SystemDefaultKey(row.key)
        except ValueError:
            continue

        try:
            value = _parse_value(key, DEFAULT_SPECS[key], row)
        except ConfigParseError as e:
            logger.warning("Skipping system default %s: %s", row.key, e)
            continue

        if key == SystemDefaultKey.MAX_SPAWN_DEPTH:
            defaults.max_spawn_depth = value
        elif key == SystemDefaultKey.MAX_CONCURRENT_SUBAGENTS:
            defaults.max_concurrent = value
    return defaults


def _agent_entry(row: AgentConfigRow) -> dict:
    fallbacks = list(row.fallback_models or [])
    entry: dict = {
        "id": row.name,
        "model": {"primary": row.model, "fallbacks": fallbacks} if fallbacks else row.model,
    }
    # thinking is applied at spawn time and is not part of the document
    allowed = sorted(row.allowed_subagents or [])
    if allowed:
        entry["subagents"] = {"allowAgents": allowed}
    return entry


def build_document(
    agent_rows: Iterable[AgentConfigRow], defaults: SystemDefaults | None = None
) -> dict:
    """Build the agents.json structure from agent rows and parsed defaults."""
    rows = [row for row in agent_rows if row.model]

    models: set[str] = set()
    for row in rows:
        models.add(row.model)
        models.update(row.fallback_models or [])

    defaults_section: dict = {"models": {model: {} for model in sorted(models)}}
    if defaults is not None:
        block = defaults.as_subagents_block()
        if block:
            defaults_section["subagents"] = block

    entries = sorted((_agent_entry(row) for row in rows), key=lambda e: e["id"])
    return {"agents": {"defaults": defaults_section, "list": entries}}


def build(
    agent_rows: Iterable[AgentConfigRow],
    system_default_rows: Iterable[SystemDefaultRow],
) -> dict:
    """Build the full document from raw rows."""
    return build_document(agent_rows, build_system_defaults(system_default_rows))


def serialize_document(document: dict) -> str:
    """Deterministic text form: same input, same bytes."""
    return json.dumps(document, indent=2, sort_keys=True, ensure_ascii=False) + "\n"
