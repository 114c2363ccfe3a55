"""One rebuild cycle for the published agent configuration."""

import asyncio
from pathlib import Path

from ..logging_config import get_logger
from ..storage import IStorage
from .builder import build
from .publisher import AtomicPublisher, IPublisher
from .reload import IReloader, NoopReloader

logger = get_logger(__name__)


class ConfigSync:
    """Query current rows, build the document, publish, signal on change."""

    def __init__(
        self,
        storage: IStorage,
        target_path: Path,
        publisher: IPublisher | None = None,
        reloader: IReloader | None = None,
    ):
        self._storage = storage
        self._target_path = Path(target_path)
        self._publisher = publisher or AtomicPublisher()
        self._reloader = reloader or NoopReloader()

    @property
    def target_path(self) -> Path:
        return self._target_path

    async def build_current(self) -> dict:
        """Document for the current database state, without publishing."""
        agent_rows = await self._storage.list_agent_configs()
        default_rows = await self._storage.list_system_defaults()
        return build(agent_rows, default_rows)

    async def run_cycle(self) -> bool:
        """Returns True if the published content changed."""
        document = await self.build_current()
        changed = await asyncio.to_thread(
            self._publisher.publish, document, self._target_path
        )

        agents = len(document["agents"]["list"])
        if changed:
            logger.info(
                "Configuration updated",
                extra={"context": {"path": str(self._target_path), "agents": agents}},
            )
            self._reloader.signal_reload()
        else:
            logger.debug("Configuration unchanged (%s agents)", agents)
        return changed
