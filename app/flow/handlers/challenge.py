"""
app/flow/handlers/challenge.py

Handles: input while CHALLENGE_PENDING

Flow:
- New user (silent claim exchange already failed during OTP verify):
  email -> registration chain; if that fails too, give up and send
  manual token instructions
- Existing user: email -> challenge completion; a mismatch keeps the
  pending challenge so the user can try another address
"""

from typing import Any, Dict

from app.core.logging import get_logger
from app.flow.handlers.welcome import handle_authenticated
from app.models.auth import PendingChallenge
from app.models.reservation import Challenge
from app.services import session_service
from app.services.linq_service import LinqService
from app.services.resy_service import ResyService
from utils.constants import (
    CHALLENGE_ASK_EMAIL_EXISTING_USER,
    CHALLENGE_ASK_EMAIL_NEW_USER,
    CHALLENGE_EMAIL_MISMATCH,
    MANUAL_TOKEN_INSTRUCTIONS,
    MESSAGE_PART_DELAY_SECONDS,
    REGISTRATION_FAILED_MESSAGE,
)
from utils.message_utils import redact_phone
from utils.validation_utils import extract_email, looks_like_email

logger = get_logger(__name__)


async def handle_new_user_challenge(
    phone_number: str,
    chat_id: str,
    text: str,
    pending: PendingChallenge,
    linq: LinqService,
    resy: ResyService,
) -> Dict[str, Any]:
    email = extract_email(text)
    if email is None:
        await linq.send_message(chat_id, CHALLENGE_ASK_EMAIL_NEW_USER)
        return {"status": "awaiting_email"}

    logger.info(f"Registering new Resy user {redact_phone(phone_number)}")
    auth_token = await resy.register_user(
        pending.claim_token,
        pending.mobile_number,
        pending.first_name or "",
        "",
        email,
    )

    if auth_token:
        await handle_authenticated(phone_number, chat_id, auth_token, linq)
        return {"status": "authenticated"}

    await session_service.clear_auth_session(phone_number)
    await linq.send_texts(
        chat_id,
        [REGISTRATION_FAILED_MESSAGE, MANUAL_TOKEN_INSTRUCTIONS],
        MESSAGE_PART_DELAY_SECONDS,
    )
    return {"status": "registration_failed"}


async def handle_existing_user_challenge(
    phone_number: str,
    chat_id: str,
    text: str,
    pending: PendingChallenge,
    linq: LinqService,
    resy: ResyService,
) -> Dict[str, Any]:
    email = text.strip().lower()
    if not looks_like_email(email):
        await linq.send_message(chat_id, CHALLENGE_ASK_EMAIL_EXISTING_USER)
        return {"status": "awaiting_email"}

    field_values = {field.name: email for field in pending.required_fields if field.is_email}
    challenge = Challenge(
        claim_token=pending.claim_token,
        challenge_id=pending.challenge_id,
        mobile_number=pending.mobile_number,
        first_name=pending.first_name,
        is_new_user=False,
        required_fields=pending.required_fields,
    )

    auth_token = await resy.complete_challenge(challenge, field_values)
    if auth_token:
        await handle_authenticated(phone_number, chat_id, auth_token, linq)
        return {"status": "authenticated"}

    # No attempt cap: the pending challenge stays until its TTL runs out
    await linq.send_message(chat_id, CHALLENGE_EMAIL_MISMATCH)
    return {"status": "email_mismatch"}


async def handle_challenge_input(
    phone_number: str,
    chat_id: str,
    text: str,
    pending: PendingChallenge,
    linq: LinqService,
    resy: ResyService,
) -> Dict[str, Any]:
    handler = handle_new_user_challenge if pending.is_new_user else handle_existing_user_challenge
    return await handler(phone_number, chat_id, text, pending, linq, resy)
