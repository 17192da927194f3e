"""
app/flow/handlers/otp.py

Handles: UNAUTHENTICATED -> OTP_SENT and input while OTP_SENT

Flow:
1. Unauthenticated sender: ask Resy to text a code
   - delivered: OTP_SENT
   - rate limited / failed: stay UNAUTHENTICATED, offer the inline-token
     fallback (failed also gets a magic link)
2. OTP_SENT: a 4-6 digit code is verified, anything else re-prompts
   - token: AUTHENTICATED
   - challenge: CHALLENGE_PENDING
   - server error: one automatic resend
   - rejected: ask again
"""

import asyncio
from typing import Any, Dict

from app.core.logging import get_logger
from app.flow.handlers.welcome import handle_authenticated
from app.models.reservation import OTPSendResult, OTPVerificationOutcome
from app.services import magic_link_service, session_service
from app.services.linq_service import LinqService
from app.services.resy_service import ResyService
from utils.constants import (
    CHALLENGE_EXISTING_USER_PROMPT,
    CHALLENGE_NEW_USER_PROMPT,
    MESSAGE_PART_DELAY_SECONDS,
    OTP_REJECTED_MESSAGE,
    OTP_RESEND_FAILED_MESSAGE,
    OTP_RESENT_MESSAGE,
    OTP_RETRY_DELAY_SECONDS,
    OTP_RATE_LIMITED_FALLBACK,
    OTP_RATE_LIMITED_MESSAGE,
    OTP_SEND_FAILED_FALLBACK,
    OTP_SEND_FAILED_MESSAGE,
    OTP_SENT_FOLLOWUP,
    OTP_SENT_MESSAGE,
    OTP_SERVER_ERROR_MESSAGE,
    OTP_WAITING_MESSAGE,
)
from utils.message_utils import redact_phone
from utils.validation_utils import parse_otp_code

logger = get_logger(__name__)


async def start_otp_flow(
    phone_number: str,
    chat_id: str,
    linq: LinqService,
    resy: ResyService,
) -> Dict[str, Any]:
    """
    Requests an OTP for a sender with no usable credentials.

    Returns:
        {"status": <OTPSendResult value>}
    """
    result = await resy.send_otp(phone_number)
    logger.info(f"📲 OTP request for {redact_phone(phone_number)}: {result.value}")

    if result == OTPSendResult.SENT:
        await session_service.start_otp(phone_number, chat_id)
        await linq.send_texts(chat_id, [OTP_SENT_MESSAGE, OTP_SENT_FOLLOWUP], MESSAGE_PART_DELAY_SECONDS)

    elif result == OTPSendResult.RATE_LIMITED:
        await linq.send_texts(
            chat_id,
            [OTP_RATE_LIMITED_MESSAGE, OTP_RATE_LIMITED_FALLBACK],
            MESSAGE_PART_DELAY_SECONDS,
        )

    else:
        magic_link = await magic_link_service.generate_magic_link(phone_number, chat_id)
        await linq.send_texts(
            chat_id,
            [
                OTP_SEND_FAILED_MESSAGE,
                OTP_SEND_FAILED_FALLBACK,
                magic_link_service.build_onboarding_message(magic_link),
            ],
            MESSAGE_PART_DELAY_SECONDS,
        )

    return {"status": result.value}


async def handle_otp_input(
    phone_number: str,
    chat_id: str,
    text: str,
    linq: LinqService,
    resy: ResyService,
) -> Dict[str, Any]:
    """Processes a message while a code is outstanding."""
    code = parse_otp_code(text)
    if code is None:
        await linq.send_message(chat_id, OTP_WAITING_MESSAGE)
        return {"status": "waiting"}

    verification = await resy.verify_otp(phone_number, code)
    outcome = verification.outcome
    logger.info(f"OTP verification for {redact_phone(phone_number)}: {outcome.value}")

    if outcome == OTPVerificationOutcome.REJECTED:
        await linq.send_message(chat_id, OTP_REJECTED_MESSAGE)
        return {"status": outcome.value}

    if outcome == OTPVerificationOutcome.SERVER_ERROR:
        await linq.send_message(chat_id, OTP_SERVER_ERROR_MESSAGE)
        await asyncio.sleep(OTP_RETRY_DELAY_SECONDS)

        # Exactly one automatic resend per server error
        retry = await resy.send_otp(phone_number)
        if retry == OTPSendResult.SENT:
            await session_service.start_otp(phone_number, chat_id)
            await linq.send_message(chat_id, OTP_RESENT_MESSAGE)
            return {"status": "resent"}

        await linq.send_message(chat_id, OTP_RESEND_FAILED_MESSAGE)
        return {"status": "resend_failed"}

    if outcome == OTPVerificationOutcome.TOKEN:
        await handle_authenticated(phone_number, chat_id, verification.token, linq)
        return {"status": outcome.value}

    challenge = verification.challenge
    await session_service.start_challenge(phone_number, chat_id, challenge)

    if challenge.is_new_user:
        await linq.send_message(chat_id, CHALLENGE_NEW_USER_PROMPT)
    else:
        name = f" {challenge.first_name}" if challenge.first_name else ""
        await linq.send_message(chat_id, CHALLENGE_EXISTING_USER_PROMPT.format(name=name))
    return {"status": outcome.value}
