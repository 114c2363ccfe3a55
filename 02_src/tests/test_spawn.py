"""Tests for spawn-time config lookup and identity resolution."""

import pytest

from agent_sync.errors import TransientStoreError
from agent_sync.identity import AgentDirectoryResolver, ExactIdentityResolver
from agent_sync.models import AgentConfigRow
from agent_sync.spawn import SpawnConfigResolver
from agent_sync.spawn.resolver import MISSING_AGENT_ID_REASON


class UnavailableStorage:
    async def get_agent_config(self, name):
        raise TransientStoreError("statement timeout")


class TestSpawnConfigResolver:
    """Tests for SpawnConfigResolver.resolve()."""

    @pytest.mark.parametrize("agent_id", [None, "", "   "])
    async def test_missing_id_blocks(self, storage, agent_id):
        """Test a spawn without an agent id is blocked."""
        decision = await SpawnConfigResolver(storage).resolve(agent_id)
        assert decision.blocked is True
        assert decision.reason == MISSING_AGENT_ID_REASON
        assert decision.overrides == {}

    async def test_known_agent_overrides(self, storage):
        """Test stored values become overrides."""
        await storage.upsert_agent_config(
            AgentConfigRow("Coder", "m1", fallback_models=["m2", "m3"], thinking="high")
        )
        decision = await SpawnConfigResolver(storage).resolve(" coder ")
        assert decision.blocked is False
        assert decision.overrides == {
            "model": "m1",
            "fallback_models": ["m2", "m3"],
            "thinking": "high",
        }

    async def test_empty_values_not_applied(self, storage):
        """Test null and empty columns leave the caller's values alone."""
        await storage.upsert_agent_config(
            AgentConfigRow("scout", "m1", fallback_models=[], thinking="  ")
        )
        decision = await SpawnConfigResolver(storage).resolve("scout")
        assert decision.overrides == {"model": "m1"}

    async def test_unknown_agent_passes_through(self, storage):
        """Test an unknown agent spawns unchanged."""
        decision = await SpawnConfigResolver(storage).resolve("ghost")
        assert decision.blocked is False
        assert decision.overrides == {}

    async def test_store_failure_passes_through(self):
        """Test a lookup failure does not block the spawn."""
        decision = await SpawnConfigResolver(UnavailableStorage()).resolve("coder")
        assert decision.blocked is False
        assert decision.overrides == {}


class TestIdentityResolvers:
    """Tests for identity resolvers."""

    async def test_exact_only_trims(self):
        """Test the exact resolver keeps case."""
        assert await ExactIdentityResolver().resolve("  Bob ") == "Bob"

    async def test_directory_returns_canonical_name(self, storage):
        """Test the directory resolver maps case variants to the stored name."""
        await storage.upsert_agent_config(AgentConfigRow("Bob", "m1"))
        resolver = AgentDirectoryResolver(storage)
        assert await resolver.resolve("BOB") == "Bob"
        assert await resolver.resolve(" carol ") == "carol"
