"""
app/services/linq_service.py

Purpose: Linq messaging gateway (iMessage / RCS / SMS)

- Sends text (with optional effect and reply-to), reactions, chat renames
- Contact card sharing, read receipts, typing indicators
- Chat info lookup, cached per process with a TTL and a size bound
- Multi-part replies sent as separate bubbles with natural pacing
"""

import asyncio
import random
import time
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.core.exceptions import MessagingGatewayError
from app.core.logging import get_logger
from app.schemas.webhook import ChatInfo, MessageEffect, Reaction, ReplyTo
from utils.message_utils import split_parts

logger = get_logger(__name__)

PART_DELAY_MIN_SECONDS = 0.4
PART_DELAY_MAX_SECONDS = 0.8

# Participants change rarely; a short TTL still picks up joins and renames
CHAT_INFO_TTL_SECONDS = 300
CHAT_INFO_CACHE_SIZE = 1000


def _truncate_error(text: str, max_len: int = 100) -> str:
    """HTML error pages are useless in logs."""
    if "<!DOCTYPE" in text or "<html" in text:
        return "[HTML error page, likely Linq backend issue]"
    return text if len(text) <= max_len else text[:max_len] + "..."


class LinqService:
    """Service for the Linq partner API (v3)."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.LINQ_API_BASE_URL.rstrip("/")
        self.api_token = settings.LINQ_API_TOKEN
        self._timeout = settings.LINQ_TIMEOUT_SECONDS
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._chat_cache: "OrderedDict[str, Tuple[float, ChatInfo]]" = OrderedDict()
        self._clock = time.monotonic

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    def is_configured(self) -> bool:
        """Check if Linq is properly configured"""
        return bool(self.api_token)

    async def _request(self, method: str, path: str, json_body: Optional[Dict[str, Any]] = None) -> Any:
        if not self.api_token:
            raise MessagingGatewayError("LINQ_API_TOKEN not configured")

        headers = {"Authorization": f"Bearer {self.api_token}"}
        try:
            response = await self.client.request(method, path, json=json_body, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"Linq {method} {path} timed out")
            raise MessagingGatewayError("Linq API timeout") from e
        except httpx.RequestError as e:
            logger.error(f"Network error calling Linq {method} {path}: {e}")
            raise MessagingGatewayError("Unable to reach Linq") from e

        if not response.is_success:
            error_text = _truncate_error(response.text)
            logger.error(f"❌ Linq API error {response.status_code}: {error_text}")
            raise MessagingGatewayError(f"Linq API error: {response.status_code} {error_text}")

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    async def get_chat(self, chat_id: str) -> ChatInfo:
        """
        Chat participants and name, cached for CHAT_INFO_TTL_SECONDS.

        Raises:
            MessagingGatewayError: Linq failed or returned an unreadable chat
        """
        now = self._clock()
        cached = self._chat_cache.get(chat_id)
        if cached and cached[0] > now:
            self._chat_cache.move_to_end(chat_id)
            return cached[1]

        data = await self._request("GET", f"/chats/{chat_id}")
        try:
            info = ChatInfo.model_validate(data)
        except PydanticValidationError as e:
            logger.error(f"❌ Unreadable chat info for {chat_id}: {e.error_count()} error(s)")
            raise MessagingGatewayError("Linq returned unreadable chat info") from e

        self._chat_cache[chat_id] = (now + CHAT_INFO_TTL_SECONDS, info)
        self._chat_cache.move_to_end(chat_id)
        while len(self._chat_cache) > CHAT_INFO_CACHE_SIZE:
            self._chat_cache.popitem(last=False)
        logger.debug(f"Chat info cached: {len(info.handles)} participants, is_group={info.is_group}")
        return info

    async def send_message(
        self,
        chat_id: str,
        text: str,
        effect: Optional[MessageEffect] = None,
        reply_to: Optional[ReplyTo] = None,
    ) -> Dict[str, Any]:
        message: Dict[str, Any] = {"parts": [{"type": "text", "value": text}] if text else []}
        if effect:
            message["effect"] = effect.model_dump()
        if reply_to:
            message["reply_to"] = reply_to.model_dump(exclude_none=True)

        extras = [name for name, present in (("effect", effect), ("reply", reply_to)) if present]
        logger.info(f"📤 Sending message to chat {chat_id}{' with ' + ', '.join(extras) if extras else ''}")

        data = await self._request("POST", f"/chats/{chat_id}/messages", {"message": message})
        logger.debug(f"Message sent: {(data.get('message') or {}).get('id')}")
        return data

    async def send_parts(
        self,
        chat_id: str,
        text: str,
        effect: Optional[MessageEffect] = None,
        reply_to: Optional[ReplyTo] = None,
    ) -> int:
        """
        Sends a reply split on the part delimiter as separate bubbles.

        The effect rides on the last bubble and reply-to on the first.
        Returns the number of bubbles sent.
        """
        parts = split_parts(text)
        for index, part in enumerate(parts):
            is_last = index == len(parts) - 1
            await self.send_message(
                chat_id,
                part,
                effect=effect if is_last else None,
                reply_to=reply_to if index == 0 else None,
            )
            if not is_last:
                await asyncio.sleep(random.uniform(PART_DELAY_MIN_SECONDS, PART_DELAY_MAX_SECONDS))
        return len(parts)

    async def send_reaction(self, message_id: str, reaction: Reaction, operation: str = "add") -> Dict[str, Any]:
        body = {"operation": operation, "type": reaction.type}
        if reaction.type == "custom" and reaction.emoji:
            body["custom_emoji"] = reaction.emoji

        logger.info(f"Sending {reaction.display} reaction")
        return await self._request("POST", f"/messages/{message_id}/reactions", body)

    async def rename_chat(self, chat_id: str, display_name: str) -> None:
        logger.info(f"Renaming chat {chat_id} to {display_name!r}")
        await self._request("PUT", f"/chats/{chat_id}", {"display_name": display_name})
        cached = self._chat_cache.get(chat_id)
        if cached:
            cached[1].display_name = display_name

    async def share_contact_card(self, chat_id: str) -> None:
        logger.info(f"Sharing contact card with chat {chat_id}")
        await self._request("POST", f"/chats/{chat_id}/share_contact_card")

    async def mark_as_read(self, chat_id: str) -> None:
        await self._request("POST", f"/chats/{chat_id}/read")

    async def start_typing(self, chat_id: str) -> None:
        await self._request("POST", f"/chats/{chat_id}/typing")

    async def send_texts(self, chat_id: str, texts: List[str], delay_seconds: float) -> None:
        """Sends fixed system messages in order with a pause between them."""
        for index, text in enumerate(texts):
            if index:
                await asyncio.sleep(delay_seconds)
            await self.send_message(chat_id, text)

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# Global Linq service instance
_linq_service: Optional[LinqService] = None


def get_linq_service() -> LinqService:
    """Get or create the global Linq service instance."""
    global _linq_service
    if _linq_service is None:
        _linq_service = LinqService()
    return _linq_service


def set_linq_service(service: Optional[LinqService]) -> None:
    """Replaces the global instance (used by tests)."""
    global _linq_service
    _linq_service = service


async def close_linq_service():
    global _linq_service
    if _linq_service:
        await _linq_service.close()
        _linq_service = None
