"""Messaging API routes."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field
from fastapi import APIRouter, HTTPException, Query

from ...app import Application
from ...errors import NotFoundError, ValidationError
from ...models import DEFAULT_CHANNEL, DeliveryRecord, Message


class MessageRequest(BaseModel):
    """Request model for submitting a message."""

    sender: str
    body: str
    recipients: list[str]
    reply_to: int | None = None
    channel: str = DEFAULT_CHANNEL


class MessageIdResponse(BaseModel):
    id: int


class MessageResponse(BaseModel):
    """Response model for a stored message."""

    id: int
    sender: str
    body: str
    recipients: list[str]
    reply_to: int | None
    channel: str
    created_at: datetime | None

    @classmethod
    def from_message(cls, message: Message) -> "MessageResponse":
        return cls(
            id=message.id,
            sender=message.sender,
            body=message.body,
            recipients=message.recipients,
            reply_to=message.reply_to,
            channel=message.channel,
            created_at=message.created_at,
        )


class DeliveryResponse(BaseModel):
    """Response model for a delivery record."""

    message_id: int
    recipient: str
    state: str
    received_at: datetime | None
    routed_at: datetime | None
    responded_at: datetime | None
    error_message: str | None

    @classmethod
    def from_record(cls, record: DeliveryRecord) -> "DeliveryResponse":
        return cls(
            message_id=record.message_id,
            recipient=record.recipient,
            state=record.state.value,
            received_at=record.received_at,
            routed_at=record.routed_at,
            responded_at=record.responded_at,
            error_message=record.error_message,
        )


class ResponseStatsResponse(BaseModel):
    """Per-agent response times in seconds."""

    agent: str
    responses: int
    avg_seconds: float
    min_seconds: float
    max_seconds: float


class DeliveryAction(str, Enum):
    RECEIVED = "received"
    ROUTED = "routed"
    RESPONDED = "responded"
    FAILED = "failed"


class DeliveryUpdateRequest(BaseModel):
    error: str | None = Field(None, description="Required for 'failed'")


def create_messaging_router(app: Application) -> APIRouter:
    """Create messaging router."""
    router = APIRouter(prefix="/api", tags=["messaging"])

    @router.post("/messages", response_model=MessageIdResponse, status_code=201)
    async def submit_message(request: MessageRequest) -> dict:
        """Append a message for one or more recipients."""
        sender = await app.identity.resolve(request.sender)
        recipients = [await app.identity.resolve(r) for r in request.recipients]
        message_id = await app.messages.submit_message(
            sender=sender,
            body=request.body,
            recipients=recipients,
            reply_to=request.reply_to,
            channel=request.channel,
        )
        return {"id": message_id}

    @router.get("/messages/pending", response_model=list[MessageResponse])
    async def list_pending(
        recipient: str = Query(..., description="Recipient agent name"),
        since_id: int = Query(0, ge=0),
        limit: int | None = Query(None, ge=1, le=1000),
    ) -> list[MessageResponse]:
        """Messages addressed to recipient after since_id."""
        name = await app.identity.resolve(recipient)
        messages = await app.messages.list_pending(name, since_id=since_id, limit=limit)
        return [MessageResponse.from_message(m) for m in messages]

    @router.get("/deliveries/stats", response_model=list[ResponseStatsResponse])
    async def response_stats() -> list[ResponseStatsResponse]:
        """Received-to-responded times per agent."""
        stats = await app.delivery.response_stats()
        return [
            ResponseStatsResponse(
                agent=s.agent,
                responses=s.responses,
                avg_seconds=s.avg_seconds,
                min_seconds=s.min_seconds,
                max_seconds=s.max_seconds,
            )
            for s in stats
        ]

    @router.get("/messages/{message_id}", response_model=MessageResponse)
    async def get_message(message_id: int) -> MessageResponse:
        message = await app.messages.get_message(message_id)
        if message is None:
            raise NotFoundError(f"message {message_id} does not exist")
        return MessageResponse.from_message(message)

    @router.get(
        "/messages/{message_id}/deliveries", response_model=list[DeliveryResponse]
    )
    async def list_deliveries(message_id: int) -> list[DeliveryResponse]:
        if await app.messages.get_message(message_id) is None:
            raise NotFoundError(f"message {message_id} does not exist")
        records = await app.delivery.list_for_message(message_id)
        return [DeliveryResponse.from_record(r) for r in records]

    @router.post(
        "/messages/{message_id}/deliveries/{recipient}/{action}",
        response_model=DeliveryResponse,
    )
    async def update_delivery(
        message_id: int,
        recipient: str,
        action: DeliveryAction,
        request: DeliveryUpdateRequest | None = None,
    ) -> DeliveryResponse:
        """Advance one recipient's delivery record."""
        name = await app.identity.resolve(recipient)
        if action == DeliveryAction.RECEIVED:
            record = await app.delivery.mark_received(message_id, name)
        elif action == DeliveryAction.ROUTED:
            record = await app.delivery.mark_routed(message_id, name)
        elif action == DeliveryAction.RESPONDED:
            record = await app.delivery.mark_responded(message_id, name)
        elif action == DeliveryAction.FAILED:
            error = request.error if request else None
            if not error:
                raise ValidationError("an error description is required")
            record = await app.delivery.mark_failed(message_id, name, error)
        else:
            raise HTTPException(status_code=400, detail=f"Unknown action {action}")
        return DeliveryResponse.from_record(record)

    return router
