"""
app/flow/handlers/welcome.py

Handles: the AUTHENTICATED transition shared by every auth path
(inline token, OTP, challenge, magic link)

Flow:
1. Make sure the user record exists
2. Store credentials (arms the just-onboarded flag)
3. Clear the signed-out flag and any pending auth session
4. Send the two-part welcome
"""

from app.core.logging import get_logger
from app.models.user import ReservationCredentials
from app.services import credential_service, session_service, user_service
from app.services.linq_service import LinqService
from utils.constants import CAPABILITIES_MESSAGE, CONNECTED_MESSAGE, WELCOME_PART_DELAY_SECONDS
from utils.message_utils import redact_phone

logger = get_logger(__name__)


async def complete_authentication(phone_number: str, auth_token: str) -> None:
    if await user_service.get_user(phone_number) is None:
        await user_service.create_user(phone_number)

    await credential_service.set_credentials(phone_number, ReservationCredentials(resy_auth_token=auth_token))
    await credential_service.clear_signed_out(phone_number)
    await session_service.clear_auth_session(phone_number)

    logger.info(f"✅ {redact_phone(phone_number)} authenticated")


async def send_welcome(chat_id: str, linq: LinqService) -> None:
    await linq.send_texts(chat_id, [CONNECTED_MESSAGE, CAPABILITIES_MESSAGE], WELCOME_PART_DELAY_SECONDS)


async def handle_authenticated(phone_number: str, chat_id: str, auth_token: str, linq: LinqService) -> None:
    await complete_authentication(phone_number, auth_token)
    await send_welcome(chat_id, linq)
