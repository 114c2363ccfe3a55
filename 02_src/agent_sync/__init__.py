"""Agent sync core: messaging, job tracking and live configuration sync."""

from .app import Application, IApplication
from .errors import (
    AuthorizationError,
    ConfigParseError,
    InvalidStateTransition,
    NotFoundError,
    SyncError,
    TransientStoreError,
    ValidationError,
)
from .jobs import IJobTracker, JobTracker
from .messaging import (
    DeliveryTracker,
    IDeliveryTracker,
    IMessageLog,
    InboxListener,
    MessageLog,
)
from .models import (
    AgentConfigRow,
    ChangeEvent,
    Channel,
    DeliveryRecord,
    DeliveryState,
    Job,
    JobStatus,
    Message,
    SystemDefaultKey,
    SystemDefaultRow,
)
from .notify import HubListener, IChangeListener, INotificationHub, NotificationHub
from .storage import IStorage, PostgresStorage, Storage
from .sync import AtomicPublisher, ConfigSync, Reconciler, ReconcilerState

__all__ = [
    # Application
    "Application",
    "IApplication",
    # Errors
    "SyncError",
    "ValidationError",
    "NotFoundError",
    "InvalidStateTransition",
    "AuthorizationError",
    "TransientStoreError",
    "ConfigParseError",
    # Models
    "Message",
    "DeliveryRecord",
    "DeliveryState",
    "Job",
    "JobStatus",
    "AgentConfigRow",
    "SystemDefaultRow",
    "SystemDefaultKey",
    "Channel",
    "ChangeEvent",
    # Components
    "IStorage",
    "Storage",
    "PostgresStorage",
    "INotificationHub",
    "NotificationHub",
    "IChangeListener",
    "HubListener",
    "IMessageLog",
    "MessageLog",
    "IDeliveryTracker",
    "DeliveryTracker",
    "InboxListener",
    "IJobTracker",
    "JobTracker",
    "AtomicPublisher",
    "ConfigSync",
    "Reconciler",
    "ReconcilerState",
]
