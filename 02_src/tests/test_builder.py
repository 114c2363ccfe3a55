"""Tests for the configuration document builder."""

import json
import logging

import pytest

from agent_sync.models import AgentConfigRow, SystemDefaultRow
from agent_sync.sync import (
    build,
    build_document,
    build_system_defaults,
    serialize_document,
)
from agent_sync.sync.builder import SystemDefaults


class TestBuildSystemDefaults:
    """Tests for build_system_defaults()."""

    def test_recognized_keys(self):
        """Test both keys parse into the defaults."""
        defaults = build_system_defaults(
            [
                SystemDefaultRow("max_spawn_depth", "3"),
                SystemDefaultRow("max_concurrent_subagents", "8"),
            ]
        )
        assert defaults.max_spawn_depth == 3
        assert defaults.max_concurrent == 8

    def test_clamps_spawn_depth(self, caplog):
        """Test max_spawn_depth is clamped to 1-5 with a warning."""
        with caplog.at_level(logging.WARNING):
            high = build_system_defaults([SystemDefaultRow("max_spawn_depth", "9")])
            low = build_system_defaults([SystemDefaultRow("max_spawn_depth", "0")])
        assert high.max_spawn_depth == 5
        assert low.max_spawn_depth == 1
        assert "clamped" in caplog.text

    def test_concurrency_not_clamped(self):
        """Test max_concurrent_subagents has no range."""
        defaults = build_system_defaults(
            [SystemDefaultRow("max_concurrent_subagents", "64")]
        )
        assert defaults.max_concurrent == 64

    def test_bad_values_skipped(self, caplog):
        """Test type mismatches and unparsable values are skipped with a warning."""
        with caplog.at_level(logging.WARNING):
            defaults = build_system_defaults(
                [
                    SystemDefaultRow("max_spawn_depth", "three"),
                    SystemDefaultRow("max_concurrent_subagents", "4", "text"),
                ]
            )
        assert defaults == SystemDefaults()
        assert "max_spawn_depth" in caplog.text
        assert "max_concurrent_subagents" in caplog.text

    @pytest.mark.parametrize("value", ["1_000", "٣", "4.0", "", "+", "0x10"])
    def test_only_plain_integers_accepted(self, value):
        """Test digit separators, non-ASCII digits and other forms are skipped."""
        defaults = build_system_defaults(
            [SystemDefaultRow("max_concurrent_subagents", value)]
        )
        assert defaults.max_concurrent is None

    @pytest.mark.parametrize("value,expected", [(" 7 ", 7), ("+3", 3), ("-2", 1)])
    def test_signed_and_padded_integers(self, value, expected):
        """Test surrounding whitespace and a sign are allowed."""
        defaults = build_system_defaults([SystemDefaultRow("max_spawn_depth", value)])
        assert defaults.max_spawn_depth == expected

    def test_unknown_keys_ignored(self):
        """Test keys outside the whitelist are ignored."""
        defaults = build_system_defaults([SystemDefaultRow("theme", "dark", "text")])
        assert defaults == SystemDefaults()


class TestBuildDocument:
    """Tests for build_document()."""

    def test_empty_input(self):
        """Test no rows give an empty but well-formed document."""
        doc = build_document([], SystemDefaults())
        assert doc == {"agents": {"defaults": {"models": {}}, "list": []}}

    def test_model_shapes(self):
        """Test bare string without fallbacks, object with them."""
        doc = build_document(
            [
                AgentConfigRow("scout", "m3"),
                AgentConfigRow("coder", "m1", fallback_models=["m2", "m0"]),
            ]
        )
        entries = {e["id"]: e for e in doc["agents"]["list"]}
        assert entries["scout"]["model"] == "m3"
        assert entries["coder"]["model"] == {"primary": "m1", "fallbacks": ["m2", "m0"]}

    def test_models_allow_list(self):
        """Test the allow-list is the sorted union of primary and fallback models."""
        doc = build_document(
            [
                AgentConfigRow("a", "zeta", fallback_models=["alpha"]),
                AgentConfigRow("b", "alpha"),
            ]
        )
        assert list(doc["agents"]["defaults"]["models"]) == ["alpha", "zeta"]
        assert doc["agents"]["defaults"]["models"]["zeta"] == {}

    def test_list_sorted_by_id(self):
        """Test agent entries are ordered by id."""
        doc = build_document([AgentConfigRow("b", "m"), AgentConfigRow("a", "m")])
        assert [e["id"] for e in doc["agents"]["list"]] == ["a", "b"]

    def test_allow_agents(self):
        """Test allowAgents is sorted and omitted when empty."""
        doc = build_document(
            [
                AgentConfigRow("lead", "m", allowed_subagents=["qa", "coder"]),
                AgentConfigRow("solo", "m", allowed_subagents=[]),
            ]
        )
        entries = {e["id"]: e for e in doc["agents"]["list"]}
        assert entries["lead"]["subagents"] == {"allowAgents": ["coder", "qa"]}
        assert "subagents" not in entries["solo"]

    def test_thinking_never_emitted(self):
        """Test the thinking level stays out of the document."""
        doc = build_document([AgentConfigRow("a", "m", thinking="high")])
        assert "thinking" not in json.dumps(doc)

    def test_subagents_defaults_only_when_set(self):
        """Test defaults.subagents appears only with at least one value."""
        without = build_document([AgentConfigRow("a", "m")], SystemDefaults())
        assert "subagents" not in without["agents"]["defaults"]

        with_depth = build_document(
            [AgentConfigRow("a", "m")], SystemDefaults(max_spawn_depth=2)
        )
        assert with_depth["agents"]["defaults"]["subagents"] == {"maxSpawnDepth": 2}


class TestBuild:
    """Tests for build() and serialize_document()."""

    def test_full_example(self):
        """Test the composed build matches the expected document."""
        doc = build(
            [
                AgentConfigRow("scout", "m3", allowed_subagents=["b", "a"]),
                AgentConfigRow("coder", "m1", fallback_models=["m2"], thinking="low"),
            ],
            [
                SystemDefaultRow("max_spawn_depth", "3"),
                SystemDefaultRow("max_concurrent_subagents", "4"),
                SystemDefaultRow("unknown", "1"),
            ],
        )
        assert doc == {
            "agents": {
                "defaults": {
                    "models": {"m1": {}, "m2": {}, "m3": {}},
                    "subagents": {"maxConcurrent": 4, "maxSpawnDepth": 3},
                },
                "list": [
                    {"id": "coder", "model": {"fallbacks": ["m2"], "primary": "m1"}},
                    {"id": "scout", "model": "m3", "subagents": {"allowAgents": ["a", "b"]}},
                ],
            }
        }

    def test_serialization_is_deterministic(self):
        """Test input order does not change the bytes."""
        rows = [AgentConfigRow("b", "m2"), AgentConfigRow("a", "m1")]
        first = serialize_document(build(rows, []))
        second = serialize_document(build(list(reversed(rows)), []))
        assert first == second
        assert first.endswith("\n")
        assert json.loads(first)["agents"]["list"][0]["id"] == "a"
