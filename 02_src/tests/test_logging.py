"""Tests for logging configuration."""

import asyncio
import json
import logging
from pathlib import Path

from agent_sync.logging_config import JSONFormatter, TaskNameFilter


def make_record(**extra):
    record = logging.LogRecord(
        "agent_sync.test", logging.INFO, __file__, 10, "sent %s", ("x",), None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Tests for JSONFormatter."""

    def test_basic_fields(self):
        """Test message interpolation and level."""
        data = json.loads(JSONFormatter().format(make_record()))
        assert data["message"] == "sent x"
        assert data["level"] == "INFO"
        assert data["logger"] == "agent_sync.test"
        assert "context" not in data

    def test_context_included(self):
        """Test extra context is serialized, including non-JSON values."""
        record = make_record(context={"path": Path("out/agents.json"), "ids": (1, 2)})
        data = json.loads(JSONFormatter().format(record))
        assert data["context"] == {"path": "out/agents.json", "ids": [1, 2]}


class TestTaskNameFilter:
    """Tests for TaskNameFilter."""

    def test_outside_event_loop(self):
        """Test records outside a task get a placeholder."""
        record = make_record()
        TaskNameFilter().filter(record)
        assert record.task == "-"

    async def test_inside_named_task(self):
        """Test records carry the emitting task's name."""
        record = make_record()

        async def emit():
            TaskNameFilter().filter(record)

        await asyncio.create_task(emit(), name="agent-config-worker")
        assert record.task == "agent-config-worker"
