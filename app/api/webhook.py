"""
app/api/webhook.py

Purpose: Linq messaging gateway webhook endpoint

- Acknowledges every event immediately with {"received": true}
- Filters: event type, bot numbers, own messages, allow/deny lists, empty messages
- Normalizes message.received events and hands them to the dispatcher
  as a background task
- Messages from the same chat are processed one at a time, in arrival order
"""

import asyncio
from typing import Dict, Optional

from fastapi import APIRouter, BackgroundTasks
from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.core.logging import get_logger
from app.flow.dispatcher import dispatch_message
from app.schemas.response import WebhookAck
from app.schemas.webhook import InboundMessage, MessageReceivedData, WebhookEvent
from utils.message_utils import redact_phone

logger = get_logger(__name__)
router = APIRouter()

RECEIVED = WebhookAck().model_dump()


class ChatSerializer:
    """
    Per-chat FIFO: one lock per chat id, dropped once nobody is waiting.

    asyncio.Lock wakes waiters in the order they started waiting, which
    keeps history appends in arrival order within a process.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiting: Dict[str, int] = {}

    async def run(self, chat_id: str, coro_factory):
        lock = self._locks.setdefault(chat_id, asyncio.Lock())
        self._waiting[chat_id] = self._waiting.get(chat_id, 0) + 1
        try:
            async with lock:
                return await coro_factory()
        finally:
            self._waiting[chat_id] -= 1
            if not self._waiting[chat_id]:
                del self._waiting[chat_id]
                del self._locks[chat_id]


chat_serializer = ChatSerializer()


def skip_reason(data: MessageReceivedData, message: InboundMessage) -> Optional[str]:
    """Returns why an inbound message should be skipped, or None to process it."""
    bot_numbers = settings.bot_numbers
    if bot_numbers and data.recipient_phone not in bot_numbers:
        return f"message to {redact_phone(data.recipient_phone)} is not for this bot"
    if data.is_from_me:
        return "own message"

    allowed = settings.allowed_senders
    if allowed and data.sender not in allowed:
        return f"{redact_phone(data.sender)} not in allowed senders"
    if data.sender in settings.ignored_senders:
        return f"{redact_phone(data.sender)} is an ignored sender"

    if message.is_empty:
        return "empty message"
    return None


async def process_message(message: InboundMessage) -> None:
    """Background entry point. Failures are logged; the event was already acknowledged."""
    try:
        await chat_serializer.run(message.chat_id, lambda: dispatch_message(message))
    except Exception:
        logger.error(f"❌ Failed to process message {message.message_id}", exc_info=True)


@router.post("/linq-webhook", response_model=WebhookAck)
async def linq_webhook(event: WebhookEvent, background_tasks: BackgroundTasks):
    """
    Receives Linq webhook events (v3).

    Always answers quickly; processing happens after the response.
    """
    logger.info(f"📥 Webhook {event.event_type} ({event.event_id})")

    if not event.is_message_received:
        return RECEIVED

    try:
        data = event.message_data()
    except PydanticValidationError as e:
        logger.warning(f"⚠️ Malformed message.received payload: {e.error_count()} error(s)")
        return RECEIVED

    message = InboundMessage.from_event_data(data)
    reason = skip_reason(data, message)
    if reason:
        logger.info(f"Skipping: {reason}")
        return RECEIVED

    background_tasks.add_task(process_message, message)
    logger.info(f"Queued message from {redact_phone(data.sender)} for processing")
    return RECEIVED
