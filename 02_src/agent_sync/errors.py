"""Error taxonomy shared by the messaging, job and sync components."""


class SyncError(Exception):
    """Base class for all agent-sync errors."""


class ValidationError(SyncError):
    """Malformed input to a core operation. Never retried."""


class NotFoundError(ValidationError):
    """A referenced message or job does not exist."""


class InvalidStateTransition(SyncError):
    """A disallowed state change was attempted.

    Callers must re-read the current state before deciding to retry.
    """

    def __init__(self, entity: str, current: str | None, target: str) -> None:
        self.entity = entity
        self.current = current
        self.target = target
        state = current if current is not None else "absent"
        super().__init__(f"{entity}: cannot move from {state} to {target}")


class AuthorizationError(SyncError):
    """The actor may not mutate the given entity."""

    def __init__(self, actor: str, entity: str) -> None:
        self.actor = actor
        self.entity = entity
        super().__init__(f"{actor!r} is not allowed to modify {entity}")


class TransientStoreError(SyncError):
    """Connectivity or timeout problem talking to the data store."""


class ConfigParseError(SyncError):
    """A system default value does not match its declared type."""
