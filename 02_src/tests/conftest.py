"""Pytest configuration and fixtures."""

import asyncio
import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest.fixture
def hub():
    """In-process change notifier."""
    from agent_sync.notify import NotificationHub

    return NotificationHub()


@pytest_asyncio.fixture
async def storage(hub):
    """Create in-memory storage wired to the hub."""
    from agent_sync.storage import Storage

    st = Storage(":memory:", notifier=hub)
    await st.init()
    yield st
    await st.close()


@pytest.fixture
def message_log(storage):
    from agent_sync.messaging import MessageLog

    return MessageLog(storage)


@pytest.fixture
def jobs(storage):
    from agent_sync.jobs import JobTracker

    return JobTracker(storage)


@pytest.fixture
def delivery(storage, jobs):
    """Delivery tracker with job linkage attached."""
    from agent_sync.messaging import DeliveryTracker

    return DeliveryTracker(storage, jobs=jobs)


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at in-memory storage and a temp output file."""
    from agent_sync.config import Settings

    return Settings(
        database_url=":memory:",
        output_path=tmp_path / "out" / "agents.json",
        keepalive_interval=0.5,
        keepalive_timeout=0.2,
        backoff_initial=0.01,
        backoff_max=0.05,
    )


async def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll until predicate() is truthy or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met in time")
        await asyncio.sleep(interval)
