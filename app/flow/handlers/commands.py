"""
app/flow/handlers/commands.py

Handles: text commands that change auth state

- "sign out": AUTHENTICATED -> UNAUTHENTICATED
"""

from typing import Any, Dict

from app.core.logging import get_logger
from app.services import credential_service, session_service
from app.services.linq_service import LinqService
from utils.constants import SIGN_OUT_COMMANDS, SIGNED_OUT_MESSAGE
from utils.message_utils import redact_phone

logger = get_logger(__name__)


def is_sign_out_command(text: str) -> bool:
    return text.strip().lower() in SIGN_OUT_COMMANDS


async def handle_sign_out(phone_number: str, chat_id: str, linq: LinqService) -> Dict[str, Any]:
    await credential_service.clear_credentials(phone_number)
    await session_service.clear_auth_session(phone_number)
    await linq.send_message(chat_id, SIGNED_OUT_MESSAGE)

    logger.info(f"🚪 {redact_phone(phone_number)} signed out")
    return {"status": "signed_out"}
