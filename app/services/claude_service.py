"""
app/services/claude_service.py

Purpose: Anthropic Messages API client

- Main model for the tool-use conversation loop
- Fast model for cheap side calls (group classifier, effect captions)
- Errors are NOT swallowed here: a failed model call fails the message
"""

from typing import Any, Dict, List, Optional

import anthropic

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

EFFECT_TEXT_PROMPT = (
    "Write a very short, fun message (under 10 words) to send with a {effect} "
    "iMessage effect. Just the message, nothing else."
)


def first_text(response: Any) -> Optional[str]:
    """Returns the first text block of a response, if any."""
    for block in getattr(response, "content", None) or []:
        if getattr(block, "type", None) == "text":
            return block.text
    return None


class ClaudeService:
    """Thin async wrapper around anthropic.AsyncAnthropic."""

    def __init__(self, client: Optional[anthropic.AsyncAnthropic] = None):
        self.model = settings.CLAUDE_MODEL
        self.fast_model = settings.CLAUDE_FAST_MODEL
        self.max_tokens = settings.CLAUDE_MAX_TOKENS
        self._client = client

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)
            logger.info("✅ Anthropic client initialized")
        return self._client

    async def create_message(
        self,
        messages: List[Dict[str, Any]],
        system: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> Any:
        kwargs: Dict[str, Any] = {
            "model": model or self.model,
            "max_tokens": max_tokens or self.max_tokens,
            "messages": messages,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = tools

        response = await self.client.messages.create(**kwargs)
        logger.debug(f"🤖 {kwargs['model']} stop_reason={response.stop_reason}")
        return response

    async def generate_effect_text(self, effect_name: str) -> str:
        """Short caption for an effect the model sent without any text."""
        response = await self.create_message(
            messages=[{"role": "user", "content": EFFECT_TEXT_PROMPT.format(effect=effect_name)}],
            model=self.fast_model,
            max_tokens=100,
        )
        text = first_text(response)
        return text.strip() if text and text.strip() else f"{effect_name}!"

    async def close(self):
        if self._client is not None:
            await self._client.close()
            self._client = None


# Global Claude service instance
_claude_service: Optional[ClaudeService] = None


def get_claude_service() -> ClaudeService:
    """Get or create the global Claude service instance."""
    global _claude_service
    if _claude_service is None:
        _claude_service = ClaudeService()
    return _claude_service


def set_claude_service(service: Optional[ClaudeService]) -> None:
    """Replaces the global instance (used by tests)."""
    global _claude_service
    _claude_service = service


async def close_claude_service():
    global _claude_service
    if _claude_service:
        await _claude_service.close()
        _claude_service = None
