"""Durable message log."""

from typing import Protocol, Sequence

from ..errors import ValidationError
from ..logging_config import get_logger
from ..models import DEFAULT_CHANNEL, Message
from ..storage import IStorage

logger = get_logger(__name__)


class IMessageLog(Protocol):
    """Append-only log of inter-agent messages."""

    async def submit_message(
        self,
        sender: str,
        body: str,
        recipients: Sequence[str],
        reply_to: int | None = None,
        channel: str = DEFAULT_CHANNEL,
    ) -> int:
        """Store a message and return its id."""
        ...

    async def get_message(self, message_id: int) -> Message | None:
        """Get a message by id."""
        ...

    async def list_pending(
        self, recipient: str, since_id: int = 0, limit: int | None = None
    ) -> list[Message]:
        """Messages for recipient after since_id, oldest first."""
        ...


class MessageLog:
    """Validates and appends messages; change notification comes from storage."""

    def __init__(self, storage: IStorage):
        self._storage = storage

    async def submit_message(
        self,
        sender: str,
        body: str,
        recipients: Sequence[str],
        reply_to: int | None = None,
        channel: str = DEFAULT_CHANNEL,
    ) -> int:
        """Store a message and return its id.

        Recipients are matched exactly; duplicates are kept as given.
        Identical submissions produce distinct messages.
        """
        if not sender or not sender.strip():
            raise ValidationError("sender must not be empty")
        if not body or not body.strip():
            raise ValidationError("message body must not be empty")
        if not recipients:
            raise ValidationError("message needs at least one recipient")
        if any(not r for r in recipients):
            raise ValidationError("recipient names must not be empty")
        if reply_to is not None and await self._storage.get_message(reply_to) is None:
            raise ValidationError(f"reply_to message {reply_to} does not exist")

        message = await self._storage.insert_message(
            sender=sender,
            body=body,
            recipients=list(recipients),
            reply_to=reply_to,
            channel=channel or DEFAULT_CHANNEL,
        )
        logger.info(
            "Message stored",
            extra={
                "context": {
                    "message_id": message.id,
                    "sender": sender,
                    "recipients": message.recipients,
                    "channel": message.channel,
                }
            },
        )
        return message.id

    async def get_message(self, message_id: int) -> Message | None:
        return await self._storage.get_message(message_id)

    async def list_pending(
        self, recipient: str, since_id: int = 0, limit: int | None = None
    ) -> list[Message]:
        return await self._storage.list_messages_for(recipient, since_id, limit)
