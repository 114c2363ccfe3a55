"""Change notification module."""

from .hub import ChangeHandler, INotificationHub, NotificationHub
from .listener import HubListener, IChangeListener, QueuedListener

__all__ = [
    "ChangeHandler",
    "INotificationHub",
    "NotificationHub",
    "IChangeListener",
    "QueuedListener",
    "HubListener",
]
