"""Storage module."""

from .postgres import PostgresStorage
from .storage import IStorage, Storage

__all__ = ["IStorage", "Storage", "PostgresStorage"]
