"""
app/services/conversation_service.py

Purpose: Conversation history and sender profiles

- Rolling per-chat history capped at MAX_HISTORY_MESSAGES (oldest dropped)
- History TTL is refreshed on every write (24h of inactivity)
- Durable per-sender profile: name + deduplicated facts
- Per-chat message counter for contact-card sharing
"""

from typing import List, Optional

from app.core.config import settings
from app.core.logging import get_logger
from app.db.store import get_store
from app.models.conversation import StoredMessage, UserProfile
from utils.constants import (
    CHATCOUNT_PK,
    CHATCOUNT_TTL_SECONDS,
    CONVERSATION_PK,
    PROFILE_PK,
    SK_CHATCOUNT,
    SK_MESSAGES,
    SK_PROFILE,
)
from utils.message_utils import redact_phone
from utils.time_utils import utc_now

logger = get_logger(__name__)


# ==============================================
# CONVERSATION HISTORY
# ==============================================


async def get_conversation(chat_id: str) -> List[StoredMessage]:
    data = await get_store().get(CONVERSATION_PK.format(chat_id=chat_id), SK_MESSAGES)
    if not data:
        return []
    return [StoredMessage.model_validate(message) for message in data.get("messages", [])]


async def add_message(chat_id: str, role: str, content: str, handle: Optional[str] = None) -> None:
    """
    Appends a message, keeping only the most recent MAX_HISTORY_MESSAGES.

    Read-modify-write: callers rely on per-chat serialization at ingress.
    """
    messages = await get_conversation(chat_id)
    messages.append(StoredMessage(role=role, content=content, handle=handle))
    messages = messages[-settings.MAX_HISTORY_MESSAGES:]

    await get_store().put(
        CONVERSATION_PK.format(chat_id=chat_id),
        SK_MESSAGES,
        {"messages": [message.model_dump(exclude_none=True) for message in messages]},
        ttl_seconds=settings.CONVERSATION_TTL_SECONDS,
    )


async def clear_conversation(chat_id: str) -> None:
    await get_store().delete(CONVERSATION_PK.format(chat_id=chat_id), SK_MESSAGES)
    logger.info(f"🧹 Cleared conversation {chat_id}")


# ==============================================
# USER PROFILES
# ==============================================


async def get_user_profile(handle: str) -> Optional[UserProfile]:
    data = await get_store().get(PROFILE_PK.format(handle=handle), SK_PROFILE)
    return UserProfile.model_validate(data) if data else None


async def _save_profile(profile: UserProfile) -> None:
    profile.last_seen = utc_now()
    await get_store().put(PROFILE_PK.format(handle=profile.handle), SK_PROFILE, profile.model_dump(mode="json"))


async def set_user_name(handle: str, name: str) -> bool:
    """Returns False when the name is unchanged."""
    profile = await get_user_profile(handle) or UserProfile(handle=handle)
    if profile.name == name:
        return False

    profile.name = name
    await _save_profile(profile)
    logger.info(f"Updated name for {redact_phone(handle)}")
    return True


async def add_user_fact(handle: str, fact: str) -> bool:
    """
    Adds a fact to the sender's profile.

    Returns:
        True if added, False if the exact fact was already known
    """
    profile = await get_user_profile(handle) or UserProfile(handle=handle)
    if fact in profile.facts:
        return False

    profile.facts.append(fact)
    await _save_profile(profile)
    logger.info(f"🧠 Remembered fact for {redact_phone(handle)} ({len(profile.facts)} total)")
    return True


async def clear_user_profile(handle: str) -> bool:
    await get_store().delete(PROFILE_PK.format(handle=handle), SK_PROFILE)
    logger.info(f"Cleared profile for {redact_phone(handle)}")
    return True


# ==============================================
# CHAT COUNTER
# ==============================================


async def increment_chat_count(chat_id: str) -> int:
    return await get_store().increment(
        CHATCOUNT_PK.format(chat_id=chat_id),
        SK_CHATCOUNT,
        "count",
        ttl_seconds=CHATCOUNT_TTL_SECONDS,
    )
