"""
app/services/session_service.py

Purpose: Auth session state management

- One AUTH_SESSION record per user holds the authoritative auth state
  plus at most one pending payload (OTP or challenge)
- Enforces valid state transitions
- Pending records expire through the store TTL; an expired or
  malformed record reads as UNAUTHENTICATED
"""

from pydantic import ValidationError as PydanticValidationError

from app.core.logging import get_logger, LogContext
from app.db.store import get_store
from app.flow.states import get_state_ttl, is_valid_transition
from app.models.auth import AuthSession, AuthState, PendingChallenge, PendingOTP
from app.models.reservation import Challenge
from utils.constants import SK_AUTH_SESSION, USER_PK
from utils.message_utils import redact_phone

logger = get_logger(__name__)

UNAUTHENTICATED_SESSION = AuthSession(state=AuthState.UNAUTHENTICATED)


def _session_pk(phone_number: str) -> str:
    return USER_PK.format(phone=phone_number)


async def get_auth_session(phone_number: str) -> AuthSession:
    """
    Reads the user's auth session.

    Returns:
        The stored session, or an UNAUTHENTICATED one when nothing is
        pending (never stored, expired, or unreadable)
    """
    data = await get_store().get(_session_pk(phone_number), SK_AUTH_SESSION)
    if not data:
        return UNAUTHENTICATED_SESSION

    try:
        return AuthSession.model_validate(data)
    except PydanticValidationError:
        logger.warning(f"Discarding malformed auth session for {redact_phone(phone_number)}")
        await clear_auth_session(phone_number)
        return UNAUTHENTICATED_SESSION


async def update_auth_session(
    phone_number: str,
    session: AuthSession,
    validate_transition: bool = True
) -> AuthSession:
    """
    Persists a new auth session.

    States without a pending payload delete the record instead of storing it.

    Raises:
        ValueError: If the transition is not allowed
    """
    with LogContext(user=redact_phone(phone_number), state=session.state.value):
        if validate_transition:
            current = await get_auth_session(phone_number)
            if not is_valid_transition(current.state, session.state):
                logger.warning(f"Invalid auth transition attempted: {current.state.value} -> {session.state.value}")
                raise ValueError(f"Invalid auth transition: {current.state.value} -> {session.state.value}")

        ttl = get_state_ttl(session.state)
        if ttl is None:
            await get_store().delete(_session_pk(phone_number), SK_AUTH_SESSION)
        else:
            await get_store().put(
                _session_pk(phone_number),
                SK_AUTH_SESSION,
                session.model_dump(mode="json"),
                ttl_seconds=ttl,
            )

        logger.info(f"Auth state -> {session.state.value}")
        return session


async def start_otp(phone_number: str, chat_id: str) -> AuthSession:
    session = AuthSession(state=AuthState.OTP_SENT, pending_otp=PendingOTP(chat_id=chat_id))
    return await update_auth_session(phone_number, session)


async def start_challenge(phone_number: str, chat_id: str, challenge: Challenge) -> AuthSession:
    """
    Replaces the pending OTP with a pending challenge in one write.

    The caller holds an accepted code, so an OTP record that expired
    mid-verification does not block the challenge.
    """
    pending = PendingChallenge(
        chat_id=chat_id,
        claim_token=challenge.claim_token,
        challenge_id=challenge.challenge_id,
        mobile_number=challenge.mobile_number,
        first_name=challenge.first_name,
        is_new_user=challenge.is_new_user,
        required_fields=challenge.required_fields,
    )
    session = AuthSession(state=AuthState.CHALLENGE_PENDING, pending_challenge=pending)
    return await update_auth_session(phone_number, session, validate_transition=False)


async def clear_auth_session(phone_number: str) -> None:
    await get_store().delete(_session_pk(phone_number), SK_AUTH_SESSION)
