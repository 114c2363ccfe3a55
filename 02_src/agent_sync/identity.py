"""Agent identity normalization, applied at the HTTP boundary.

The messaging core compares names exactly; callers that accept
free-form names resolve them here first.
"""

from typing import Protocol

from .storage import IStorage


class IIdentityResolver(Protocol):
    """Maps a user-supplied agent name to its canonical form."""

    async def resolve(self, name: str) -> str:
        """Return the canonical name, or the input when unknown."""
        ...


class ExactIdentityResolver:
    """No normalization beyond trimming whitespace."""

    async def resolve(self, name: str) -> str:
        return name.strip()


class AgentDirectoryResolver:
    """Case-insensitive lookup in the agents table."""

    def __init__(self, storage: IStorage):
        self._storage = storage

    async def resolve(self, name: str) -> str:
        cleaned = name.strip()
        row = await self._storage.get_agent_config(cleaned)
        return row.name if row else cleaned
