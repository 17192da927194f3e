from app.models.user import ReservationCredentials
from app.services import credential_service, user_service
from app.services.user_context_service import load_user_context

from conftest import SENDER


async def test_unknown_user_without_fallback_has_no_context():
    assert await load_user_context(SENDER) is None


async def test_per_user_credentials_win_over_fallback(test_settings):
    test_settings.RESY_AUTH_TOKEN = "shared-token"
    await user_service.create_user(SENDER)
    await credential_service.set_credentials(SENDER, ReservationCredentials(resy_auth_token="mine"))

    context = await load_user_context(SENDER)

    assert context.credentials.resy_auth_token == "mine"
    assert context.from_fallback is False


async def test_fallback_credential_creates_user(test_settings):
    test_settings.RESY_AUTH_TOKEN = "shared-token"

    context = await load_user_context(SENDER)

    assert context.from_fallback is True
    assert context.credentials.resy_auth_token == "shared-token"
    assert await user_service.get_user(SENDER) is not None


async def test_signed_out_user_never_gets_fallback(test_settings):
    test_settings.RESY_AUTH_TOKEN = "shared-token"
    await credential_service.set_credentials(SENDER, ReservationCredentials(resy_auth_token="mine"))
    await credential_service.clear_credentials(SENDER)

    assert await load_user_context(SENDER) is None


async def test_existing_user_without_credentials_has_no_context():
    await user_service.create_user(SENDER)

    assert await load_user_context(SENDER) is None
