"""
app/services/user_context_service.py

Purpose: Resolve usable credentials for a sender

Resolution order:
1. Per-user credentials from the vault
2. Global RESY_AUTH_TOKEN, unless the user explicitly signed out
3. None -> the auth state machine takes over
"""

from typing import Optional

from app.core.config import settings
from app.core.logging import get_logger
from app.models.user import ReservationCredentials, UserContext
from app.services import credential_service, user_service
from utils.message_utils import redact_phone

logger = get_logger(__name__)


async def load_user_context(phone_number: str) -> Optional[UserContext]:
    user = await user_service.get_user(phone_number)

    if user is not None:
        credentials = await credential_service.get_credentials(phone_number)
        if credentials is not None:
            await user_service.update_last_active(phone_number)
            return UserContext(user=user, credentials=credentials)

    # Signing out must force re-auth even when a fallback token exists
    if settings.RESY_AUTH_TOKEN and not await credential_service.is_signed_out(phone_number):
        if user is None:
            user = await user_service.create_user(phone_number)
        else:
            await user_service.update_last_active(phone_number)
        logger.debug(f"Using fallback credential for {redact_phone(phone_number)}")
        return UserContext(
            user=user,
            credentials=ReservationCredentials(resy_auth_token=settings.RESY_AUTH_TOKEN),
            from_fallback=True,
        )

    return None
