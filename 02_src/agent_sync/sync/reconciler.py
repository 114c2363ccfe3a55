"""Notification-driven reconciler with coalesced rebuilds.

A Reconciler keeps one subscription to the change notifier alive and runs
a rebuild cycle whenever a relevant event arrives. Notifications are only
hints: every (re)connect is followed by a full catch-up rebuild, so events
lost while disconnected never leave the derived state stale.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Sequence

from ..errors import TransientStoreError
from ..logging_config import get_logger
from ..models import ChangeEvent, Channel
from ..notify import IChangeListener

logger = get_logger(__name__)


Cycle = Callable[[], Awaitable[object]]
ListenerFactory = Callable[[], IChangeListener]
EventFilter = Callable[[ChangeEvent], bool]


class ReconcilerState(str, Enum):
    DISCONNECTED = "disconnected"
    LISTENING = "listening"
    SHUTDOWN = "shutdown"


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential reconnect delay, reset after a successful connect."""

    initial: float = 1.0
    maximum: float = 60.0
    multiplier: float = 2.0

    def next_delay(self, previous: float | None) -> float:
        if previous is None:
            return min(self.initial, self.maximum)
        return min(previous * self.multiplier, self.maximum)


@dataclass
class ReconcilerStatus:
    name: str
    state: ReconcilerState
    cycles: int = 0
    failures: int = 0
    reconnects: int = 0
    last_error: str | None = None
    last_cycle_at: datetime | None = None


class Reconciler:
    """Listens for change events and runs one rebuild cycle at a time.

    Requests arriving while a cycle runs are coalesced into exactly one
    follow-up cycle. Cycle failures are logged and counted; they never stop
    the reconciler.
    """

    def __init__(
        self,
        name: str,
        cycle: Cycle,
        listener_factory: ListenerFactory,
        channels: Sequence[Channel],
        event_filter: EventFilter | None = None,
        backoff: BackoffPolicy | None = None,
        keepalive_interval: float = 30.0,
        keepalive_timeout: float = 5.0,
    ):
        self._name = name
        self._cycle = cycle
        self._listener_factory = listener_factory
        self._channels = list(channels)
        self._event_filter = event_filter
        self._backoff = backoff or BackoffPolicy()
        self._keepalive_interval = keepalive_interval
        self._keepalive_timeout = keepalive_timeout

        self._state = ReconcilerState.DISCONNECTED
        self._cycles = 0
        self._failures = 0
        self._reconnects = 0
        self._last_error: str | None = None
        self._last_cycle_at: datetime | None = None

        # Set = a rebuild is pending; cleared by the worker before each cycle
        self._pending = asyncio.Event()
        self._stopping = asyncio.Event()
        self._connection_task: asyncio.Task | None = None
        self._worker_task: asyncio.Task | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> ReconcilerState:
        return self._state

    def status(self) -> ReconcilerStatus:
        return ReconcilerStatus(
            name=self._name,
            state=self._state,
            cycles=self._cycles,
            failures=self._failures,
            reconnects=self._reconnects,
            last_error=self._last_error,
            last_cycle_at=self._last_cycle_at,
        )

    async def start(self) -> None:
        """Schedule the initial rebuild and start listening."""
        if self._worker_task is not None:
            raise RuntimeError(f"Reconciler {self._name} already started")
        if self._state == ReconcilerState.SHUTDOWN:
            raise RuntimeError(f"Reconciler {self._name} was stopped")

        self.request_rebuild()
        self._worker_task = asyncio.create_task(
            self._rebuild_worker(), name=f"{self._name}-worker"
        )
        self._connection_task = asyncio.create_task(
            self._connection_loop(), name=f"{self._name}-listener"
        )
        logger.info("Reconciler %s started", self._name)

    async def stop(self) -> None:
        """Stop listening; an in-flight cycle is allowed to finish."""
        if self._state == ReconcilerState.SHUTDOWN:
            return
        self._stopping.set()

        if self._connection_task is not None:
            self._connection_task.cancel()
            await asyncio.gather(self._connection_task, return_exceptions=True)
            self._connection_task = None

        # Wake the worker so it can observe the stop request
        self._pending.set()
        if self._worker_task is not None:
            await asyncio.gather(self._worker_task, return_exceptions=True)
            self._worker_task = None

        self._state = ReconcilerState.SHUTDOWN
        logger.info("Reconciler %s stopped", self._name)

    def request_rebuild(self) -> None:
        """Ask for a rebuild. Never blocks; duplicates collapse into one."""
        if self._stopping.is_set():
            return
        self._pending.set()

    # Rebuild worker
    async def _rebuild_worker(self) -> None:
        while True:
            await self._pending.wait()
            if self._stopping.is_set():
                return
            self._pending.clear()
            await self._run_cycle()

    async def _run_cycle(self) -> None:
        try:
            await self._cycle()
        except Exception as e:
            self._failures += 1
            self._last_error = str(e) or type(e).__name__
            logger.exception(
                "Reconciler %s cycle failed: %s",
                self._name,
                e,
                extra={"context": {"reconciler": self._name, "failures": self._failures}},
            )
        finally:
            self._cycles += 1
            self._last_cycle_at = datetime.now(timezone.utc)

    # Connection loop
    async def _connection_loop(self) -> None:
        delay: float | None = None
        while not self._stopping.is_set():
            listener: IChangeListener | None = None
            try:
                listener = self._listener_factory()
                await listener.connect(self._channels)
            except Exception as e:
                if listener is not None:
                    await self._close_listener(listener)
                delay = self._backoff.next_delay(delay)
                self._last_error = str(e) or type(e).__name__
                if isinstance(e, TransientStoreError):
                    logger.warning(
                        "Reconciler %s could not connect, retrying in %.1fs: %s",
                        self._name,
                        delay,
                        e,
                    )
                else:
                    # Auth or config errors may be fixed while we wait
                    logger.exception(
                        "Reconciler %s connect failed, retrying in %.1fs: %s",
                        self._name,
                        delay,
                        e,
                    )
                if await self._wait_for_stop(delay):
                    return
                continue

            delay = None
            self._state = ReconcilerState.LISTENING
            logger.info("Reconciler %s listening", self._name)
            # Catch up on anything missed while disconnected
            self.request_rebuild()

            try:
                await self._listen(listener)
            except TransientStoreError as e:
                self._last_error = str(e)
                logger.warning("Reconciler %s lost its connection: %s", self._name, e)
            except Exception as e:
                self._last_error = str(e) or type(e).__name__
                logger.exception("Reconciler %s listener error: %s", self._name, e)
            finally:
                if not self._stopping.is_set():
                    self._state = ReconcilerState.DISCONNECTED
                await self._close_listener(listener)

            self._reconnects += 1
            delay = self._backoff.next_delay(None)
            if await self._wait_for_stop(delay):
                return

    async def _listen(self, listener: IChangeListener) -> None:
        loop = asyncio.get_running_loop()
        last_activity = loop.time()
        while True:
            remaining = self._keepalive_interval - (loop.time() - last_activity)
            if remaining <= 0:
                try:
                    await asyncio.wait_for(listener.ping(), timeout=self._keepalive_timeout)
                except asyncio.TimeoutError as e:
                    raise TransientStoreError("keep-alive ping timed out") from e
                last_activity = loop.time()
                continue

            event = await listener.next_event(timeout=remaining)
            if event is None:
                continue
            last_activity = loop.time()

            if self._event_filter is None or self._event_filter(event):
                logger.debug(
                    "Reconciler %s: %s event %s",
                    self._name,
                    event.channel.value,
                    event.payload,
                )
                self.request_rebuild()

    async def _wait_for_stop(self, delay: float) -> bool:
        """Sleep for delay; returns True early if stop() was called."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    async def _close_listener(self, listener: IChangeListener) -> None:
        try:
            await listener.close()
        except Exception as e:
            logger.warning("Reconciler %s: error closing listener: %s", self._name, e)
