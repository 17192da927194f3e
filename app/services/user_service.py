"""
app/services/user_service.py

Purpose: User record management

- Create users on first contact
- Bump last_active on every message
- Track onboarding completion (driven by the credential vault)
"""

from typing import Optional

from app.core.logging import get_logger, LogContext
from app.db.store import get_store
from app.models.user import User
from utils.constants import SK_PROFILE, USER_PK
from utils.message_utils import redact_phone
from utils.time_utils import utc_now

logger = get_logger(__name__)


def _user_pk(phone_number: str) -> str:
    return USER_PK.format(phone=phone_number)


async def get_user(phone_number: str) -> Optional[User]:
    """
    Retrieves a user by phone number.

    Returns:
        User or None if not found
    """
    data = await get_store().get(_user_pk(phone_number), SK_PROFILE)
    return User.model_validate(data) if data else None


async def save_user(user: User) -> None:
    await get_store().put(_user_pk(user.phone_number), SK_PROFILE, user.model_dump(mode="json"))


async def create_user(phone_number: str) -> User:
    with LogContext(user=redact_phone(phone_number)):
        user = User(phone_number=phone_number)
        await save_user(user)
        logger.info("👤 New user created")
        return user


async def get_or_create_user(phone_number: str) -> User:
    """
    Retrieves an existing user or creates a new one.

    Existing users get last_active bumped.
    """
    user = await get_user(phone_number)
    if user is None:
        return await create_user(phone_number)

    await update_last_active(phone_number)
    return user


async def update_last_active(phone_number: str) -> None:
    await get_store().update(
        _user_pk(phone_number),
        SK_PROFILE,
        {"last_active": utc_now().isoformat()},
    )


async def set_onboarding_complete(phone_number: str, complete: bool) -> None:
    """Marks onboarding state, creating the user record if it is missing."""
    updated = await get_store().update(
        _user_pk(phone_number),
        SK_PROFILE,
        {"onboarding_complete": complete},
    )
    if updated is None:
        user = User(phone_number=phone_number, onboarding_complete=complete)
        await save_user(user)

    logger.debug(f"Onboarding complete={complete} for {redact_phone(phone_number)}")
