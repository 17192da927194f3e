"""
app/flow/handlers/inline_token.py

Handles: a pasted Resy auth token, from any state

The token is stored verbatim and replaces whatever auth attempt was
pending. No OTP is requested.
"""

from typing import Any, Dict

from app.core.logging import get_logger
from app.flow.handlers.welcome import handle_authenticated
from app.services.linq_service import LinqService
from utils.message_utils import redact_phone

logger = get_logger(__name__)


async def handle_inline_token(phone_number: str, chat_id: str, token: str, linq: LinqService) -> Dict[str, Any]:
    logger.info(f"🔑 {redact_phone(phone_number)} sent an auth token directly")
    await handle_authenticated(phone_number, chat_id, token, linq)
    return {"status": "authenticated"}
