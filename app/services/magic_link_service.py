"""
app/services/magic_link_service.py

Purpose: Magic-link token issuer for web onboarding

- Mints single-use, expiring tokens bound to a phone number and chat
- Tokens live under AUTHTOKEN#{token} with a store TTL of expiry + buffer
- Redemption is a conditional update (used=False -> True) so two
  concurrent submissions can never both succeed
"""

import secrets
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.core.logging import get_logger
from app.db.store import get_store
from app.models.auth import AuthToken, MagicLink
from utils.constants import AUTHTOKEN_PK, MAGIC_LINK_TTL_BUFFER_SECONDS, SK_AUTHTOKEN
from utils.message_utils import redact_phone
from utils.time_utils import expires_in, is_expired, utc_now
from utils.validation_utils import is_valid_magic_token

logger = get_logger(__name__)

ONBOARDING_LINK_MESSAGE = "or set it up in 30 seconds here:\n{url}"


def _token_pk(token: str) -> str:
    return AUTHTOKEN_PK.format(token=token)


async def generate_magic_link(phone_number: str, chat_id: str) -> MagicLink:
    token = secrets.token_urlsafe(32)
    ttl_minutes = settings.MAGIC_LINK_TTL_MINUTES
    auth_token = AuthToken(
        token=token,
        phone_number=phone_number,
        chat_id=chat_id,
        expires_at=expires_in(minutes=ttl_minutes),
    )

    await get_store().put(
        _token_pk(token),
        SK_AUTHTOKEN,
        auth_token.model_dump(mode="json"),
        ttl_seconds=ttl_minutes * 60 + MAGIC_LINK_TTL_BUFFER_SECONDS,
    )

    url = f"{settings.APP_URL.rstrip('/')}/auth/setup?token={token}"
    logger.info(f"🔗 Generated magic link for {redact_phone(phone_number)}")
    return MagicLink(url=url, token=token, expires_at=auth_token.expires_at)


async def _load_token(token: str) -> Optional[AuthToken]:
    if not is_valid_magic_token(token):
        return None

    data = await get_store().get(_token_pk(token), SK_AUTHTOKEN)
    if not data:
        return None

    try:
        return AuthToken.model_validate(data)
    except PydanticValidationError:
        logger.warning("Discarding malformed auth token record")
        return None


async def verify_token(token: str) -> Optional[str]:
    """
    Checks a token without burning it.

    Returns:
        The bound phone number, or None for unknown, used or expired tokens
    """
    auth_token = await _load_token(token)
    if auth_token is None or auth_token.used or is_expired(auth_token.expires_at):
        return None
    return auth_token.phone_number


async def redeem_token(token: str) -> Optional[AuthToken]:
    """
    Verifies and burns a token in one step.

    Returns:
        The token record if this caller redeemed it, otherwise None
    """
    auth_token = await _load_token(token)
    if auth_token is None or auth_token.used or is_expired(auth_token.expires_at):
        return None

    if not await mark_used(token):
        logger.warning("Auth token was redeemed concurrently")
        return None

    auth_token.used = True
    return auth_token


async def mark_used(token: str) -> bool:
    """Flips `used` only if nobody else has; True when this caller won."""
    updated = await get_store().update(
        _token_pk(token),
        SK_AUTHTOKEN,
        {"used": True, "used_at": utc_now().isoformat()},
        condition={"used": False},
    )
    return updated is not None


def build_onboarding_message(magic_link: MagicLink) -> str:
    return ONBOARDING_LINK_MESSAGE.format(url=magic_link.url)
