"""Per-recipient inbox processing."""

from typing import TYPE_CHECKING, Awaitable, Callable

from ..errors import InvalidStateTransition
from ..logging_config import get_logger
from ..models import JOB_STATUS_CHANNEL, ChangeEvent, DeliveryState, Message
from .delivery import IDeliveryTracker
from .log import IMessageLog

if TYPE_CHECKING:
    from ..jobs import IJobTracker

logger = get_logger(__name__)

MessageHandler = Callable[[Message], Awaitable[None]]

DEFAULT_BATCH_SIZE = 100


class InboxListener:
    """Drains one recipient's pending messages through the delivery states.

    Polling after the cursor is the source of truth; push events only
    decide when to drain. A record already past received is skipped, so
    each message is handled at most once even across restarts.
    """

    def __init__(
        self,
        recipient: str,
        message_log: IMessageLog,
        delivery: IDeliveryTracker,
        handler: MessageHandler,
        jobs: "IJobTracker | None" = None,
        cursor: int = 0,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self._recipient = recipient
        self._messages = message_log
        self._delivery = delivery
        self._handler = handler
        self._jobs = jobs
        self._cursor = cursor
        self._batch_size = batch_size

    @property
    def recipient(self) -> str:
        return self._recipient

    @property
    def cursor(self) -> int:
        """Id of the last message this listener has dealt with."""
        return self._cursor

    def wants(self, event: ChangeEvent) -> bool:
        """Event filter: only messages that mention this recipient."""
        mentions = event.payload.get("mentions") or []
        return self._recipient in mentions

    async def drain(self) -> bool:
        """Process everything after the cursor. Returns True if anything was handled."""
        handled = False
        while True:
            batch = await self._messages.list_pending(
                self._recipient, since_id=self._cursor, limit=self._batch_size
            )
            if not batch:
                return handled
            for message in batch:
                if await self._process(message):
                    handled = True
                self._cursor = message.id

    async def _process(self, message: Message) -> bool:
        if message.sender == self._recipient:
            return False

        record = await self._delivery.mark_received(message.id, self._recipient)
        if record.state != DeliveryState.RECEIVED:
            logger.debug(
                "Skipping message %s for %s: already %s",
                message.id,
                self._recipient,
                record.state.value,
            )
            return False

        if self._jobs is not None and message.channel != JOB_STATUS_CHANNEL:
            await self._ensure_job(message)

        try:
            await self._delivery.mark_routed(message.id, self._recipient)
        except InvalidStateTransition as e:
            # Another worker for the same recipient got there first
            logger.info("Message %s not routed: %s", message.id, e)
            return False

        try:
            await self._handler(message)
        except Exception as e:
            logger.error(
                "Handler failed for message %s: %s",
                message.id,
                e,
                extra={"context": {"recipient": self._recipient, "message_id": message.id}},
            )
            await self._delivery.mark_failed(message.id, self._recipient, str(e))
            return True

        await self._delivery.mark_responded(message.id, self._recipient)
        return True

    async def _ensure_job(self, message: Message) -> None:
        existing = await self._jobs.list_for_message(message.id, self._recipient)
        if existing:
            return
        await self._jobs.create_job(
            owner=self._recipient,
            requester=message.sender,
            notify_list=[message.sender],
            message_id=message.id,
        )
