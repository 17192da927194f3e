"""
app/services/credential_service.py

Purpose: Credential vault

- Encrypts and persists per-user reservation credentials
- Signed-out flag: set only by clear_credentials, blocks the fallback credential
- Just-onboarded flag: one-shot, TTL-bounded, consumed atomically
- Decryption failures read as "no credentials" and are logged, never raised
"""

from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.core.exceptions import CredentialDecryptionError
from app.core.logging import get_logger, LogContext
from app.db.store import get_store
from app.models.user import ReservationCredentials
from app.services import user_service
from app.services.encryption import decrypt, encrypt
from utils.constants import SK_CREDENTIALS, SK_JUST_ONBOARDED, SK_SIGNED_OUT, USER_PK
from utils.message_utils import redact_phone
from utils.time_utils import utc_now

logger = get_logger(__name__)


def _user_pk(phone_number: str) -> str:
    return USER_PK.format(phone=phone_number)


async def get_credentials(phone_number: str) -> Optional[ReservationCredentials]:
    """
    Loads and decrypts the user's credentials.

    Returns:
        Credentials, or None when missing or unreadable
    """
    record = await get_store().get(_user_pk(phone_number), SK_CREDENTIALS)
    if not record or not record.get("encrypted"):
        return None

    try:
        return ReservationCredentials.model_validate(decrypt(record["encrypted"]))
    except CredentialDecryptionError as e:
        logger.error(f"❌ Failed to decrypt credentials for {redact_phone(phone_number)}: {e.message}")
        return None
    except PydanticValidationError:
        logger.error(f"❌ Stored credentials for {redact_phone(phone_number)} are malformed")
        return None


async def set_credentials(phone_number: str, credentials: ReservationCredentials) -> None:
    """
    Encrypts and stores credentials.

    Side effects: onboarding is marked complete and the just-onboarded
    flag is (re)armed.
    """
    with LogContext(user=redact_phone(phone_number)):
        store = get_store()
        pk = _user_pk(phone_number)

        await store.put(pk, SK_CREDENTIALS, {
            "encrypted": encrypt(credentials.model_dump()),
            "updated_at": utc_now().isoformat(),
        })
        await user_service.set_onboarding_complete(phone_number, True)
        await store.put(
            pk,
            SK_JUST_ONBOARDED,
            {"set_at": utc_now().isoformat()},
            ttl_seconds=settings.JUST_ONBOARDED_TTL_SECONDS,
        )

        logger.info("🔐 Credentials stored")


async def clear_credentials(phone_number: str) -> None:
    """Sign-out: the only path that sets the signed-out flag."""
    with LogContext(user=redact_phone(phone_number)):
        store = get_store()
        pk = _user_pk(phone_number)

        await store.delete(pk, SK_CREDENTIALS)
        await store.put(pk, SK_SIGNED_OUT, {"signed_out_at": utc_now().isoformat()})
        await user_service.set_onboarding_complete(phone_number, False)

        logger.info("🚪 Credentials cleared, user signed out")


async def is_signed_out(phone_number: str) -> bool:
    return await get_store().get(_user_pk(phone_number), SK_SIGNED_OUT) is not None


async def clear_signed_out(phone_number: str) -> None:
    await get_store().delete(_user_pk(phone_number), SK_SIGNED_OUT)


async def consume_just_onboarded(phone_number: str) -> bool:
    """True at most once per set_credentials call."""
    return await get_store().consume(_user_pk(phone_number), SK_JUST_ONBOARDED) is not None
