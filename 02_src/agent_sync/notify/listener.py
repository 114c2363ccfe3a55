"""Subscriptions to change notifications, as seen by a Reconciler."""

import asyncio
from typing import Protocol, Sequence

from ..errors import TransientStoreError
from ..logging_config import get_logger
from ..models import ChangeEvent, Channel
from .hub import INotificationHub

logger = get_logger(__name__)


class IChangeListener(Protocol):
    """One live subscription. Instances are single-use: connect, listen, close."""

    async def connect(self, channels: Sequence[Channel]) -> None:
        """Open the subscription. Raises TransientStoreError on failure."""
        ...

    async def next_event(self, timeout: float) -> ChangeEvent | None:
        """Wait for the next event; None on timeout.

        Raises TransientStoreError once the connection is known to be lost.
        """
        ...

    async def ping(self) -> None:
        """Keep-alive probe. Raises TransientStoreError if the link is dead."""
        ...

    async def close(self) -> None:
        """Release the subscription. Safe to call more than once."""
        ...


class _ConnectionLost:
    def __init__(self, reason: str):
        self.reason = reason


class QueuedListener:
    """Buffers incoming notifications until the reconciler asks for them."""

    def __init__(self):
        self._queue: asyncio.Queue[ChangeEvent | _ConnectionLost] = asyncio.Queue()

    def _enqueue(self, event: ChangeEvent) -> None:
        self._queue.put_nowait(event)

    def _mark_lost(self, reason: str) -> None:
        self._queue.put_nowait(_ConnectionLost(reason))

    async def next_event(self, timeout: float) -> ChangeEvent | None:
        try:
            item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        if isinstance(item, _ConnectionLost):
            raise TransientStoreError(item.reason)
        return item


class HubListener(QueuedListener):
    """Listener over the in-process NotificationHub."""

    def __init__(self, hub: INotificationHub):
        super().__init__()
        self._hub = hub
        self._channels: list[Channel] = []

    async def connect(self, channels: Sequence[Channel]) -> None:
        if self._hub.closed:
            raise TransientStoreError("notification hub is closed")
        self._channels = list(channels)
        for channel in self._channels:
            self._hub.subscribe(channel, self._handle)

    async def _handle(self, event: ChangeEvent) -> None:
        self._enqueue(event)

    async def ping(self) -> None:
        if self._hub.closed:
            raise TransientStoreError("notification hub is closed")

    async def close(self) -> None:
        for channel in self._channels:
            self._hub.unsubscribe(channel, self._handle)
        self._channels = []
