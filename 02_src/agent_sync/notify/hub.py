"""In-process change notifier used with the SQLite storage backend."""

import asyncio
from typing import Awaitable, Callable, Protocol

from ..logging_config import get_logger
from ..models import ChangeEvent, Channel

logger = get_logger(__name__)


ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


class INotificationHub(Protocol):
    """Pub/sub for ChangeEvents. Lossy: nothing is kept for absent subscribers."""

    @property
    def closed(self) -> bool:
        """Whether the hub has been shut down."""
        ...

    def subscribe(self, channel: Channel, handler: ChangeHandler) -> None:
        """Subscribe a handler to a channel."""
        ...

    def unsubscribe(self, channel: Channel, handler: ChangeHandler) -> None:
        """Remove a handler from a channel."""
        ...

    async def publish(self, event: ChangeEvent) -> None:
        """Deliver event to the current subscribers of its channel."""
        ...


class NotificationHub:
    """In-memory equivalent of PostgreSQL LISTEN/NOTIFY."""

    def __init__(self):
        self._subscribers: dict[Channel, list[ChangeHandler]] = {
            channel: [] for channel in Channel
        }
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, channel: Channel, handler: ChangeHandler) -> None:
        """Subscribe a handler to a channel."""
        self._subscribers[channel].append(handler)

    def unsubscribe(self, channel: Channel, handler: ChangeHandler) -> None:
        """Remove a handler from a channel (no-op if absent)."""
        handlers = self._subscribers[channel]
        if handler in handlers:
            handlers.remove(handler)

    async def publish(self, event: ChangeEvent) -> None:
        """Call subscriber callbacks for the event's channel."""
        if self._closed:
            logger.debug("Hub closed, dropping %s event", event.channel.value)
            return

        handlers = list(self._subscribers.get(event.channel, []))
        if not handlers:
            return

        results = await asyncio.gather(
            *[handler(event) for handler in handlers],
            return_exceptions=True,
        )

        for i, result in enumerate(results):
            if isinstance(result, Exception):
                logger.error("Error in %s handler %s: %s", event.channel.value, i, result)

    def close(self) -> None:
        """Drop all subscribers. Listeners notice on their next probe."""
        self._closed = True
        for handlers in self._subscribers.values():
            handlers.clear()
