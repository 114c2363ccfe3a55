"""Messaging module: message log, delivery tracking and inbox listeners."""

from .delivery import DeliveryTracker, IDeliveryTracker
from .inbox import InboxListener, MessageHandler
from .log import IMessageLog, MessageLog

__all__ = [
    "IMessageLog",
    "MessageLog",
    "IDeliveryTracker",
    "DeliveryTracker",
    "InboxListener",
    "MessageHandler",
]
