"""Configuration sync: document builder, publisher and reconciler."""

from .builder import (
    SystemDefaults,
    build,
    build_document,
    build_system_defaults,
    serialize_document,
)
from .config_sync import ConfigSync
from .publisher import AtomicPublisher, IPublisher
from .reconciler import BackoffPolicy, Reconciler, ReconcilerState, ReconcilerStatus
from .reload import IReloader, NoopReloader, ProcessSignalReloader

__all__ = [
    "SystemDefaults",
    "build",
    "build_document",
    "build_system_defaults",
    "serialize_document",
    "IPublisher",
    "AtomicPublisher",
    "IReloader",
    "NoopReloader",
    "ProcessSignalReloader",
    "ConfigSync",
    "BackoffPolicy",
    "Reconciler",
    "ReconcilerState",
    "ReconcilerStatus",
]
