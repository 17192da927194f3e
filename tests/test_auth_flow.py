from app.flow.dispatcher import dispatch_message
from app.flow.handlers.otp import handle_otp_input
from app.models.auth import AuthState
from app.models.reservation import Challenge, OTPSendResult, OTPVerification
from app.models.user import ReservationCredentials
from app.schemas.webhook import InboundMessage
from app.services import credential_service, session_service, user_service
from utils.constants import (
    CAPABILITIES_MESSAGE,
    CHALLENGE_EMAIL_MISMATCH,
    CONNECTED_MESSAGE,
    MANUAL_TOKEN_INSTRUCTIONS,
    OTP_RATE_LIMITED_MESSAGE,
    OTP_RESENT_MESSAGE,
    OTP_SENT_FOLLOWUP,
    OTP_SENT_MESSAGE,
    OTP_WAITING_MESSAGE,
    SIGNED_OUT_MESSAGE,
)

from conftest import INLINE_TOKEN, SENDER

_counter = {"n": 0}


def inbound(text: str, chat_id: str = "chat_1") -> InboundMessage:
    _counter["n"] += 1
    return InboundMessage(chat_id=chat_id, sender=SENDER, message_id=f"msg_{_counter['n']}", text=text)


async def state() -> AuthState:
    return (await session_service.get_auth_session(SENDER)).state


async def test_first_message_sends_otp(linq, linq_recorder, resy, claude):
    result = await dispatch_message(inbound("hey"), linq=linq, resy=resy, claude=claude)

    assert result == {"status": OTPSendResult.SENT.value}
    assert await state() == AuthState.OTP_SENT
    assert linq_recorder.sent_texts == [OTP_SENT_MESSAGE, OTP_SENT_FOLLOWUP]
    assert await user_service.get_user(SENDER) is not None
    assert linq_recorder.count("/share_contact_card") == 1
    assert claude.requests == []


async def test_non_code_while_waiting_reprompts(linq, linq_recorder, resy, claude):
    await session_service.start_otp(SENDER, "chat_1")

    result = await dispatch_message(inbound("what code?"), linq=linq, resy=resy, claude=claude)

    assert result == {"status": "waiting"}
    assert linq_recorder.sent_texts == [OTP_WAITING_MESSAGE]
    assert resy.called("verify_otp") == []
    assert await state() == AuthState.OTP_SENT


async def test_valid_code_authenticates(linq, linq_recorder, resy, claude):
    await session_service.start_otp(SENDER, "chat_1")
    resy.verification = OTPVerification.with_token("fresh-token")

    result = await dispatch_message(inbound("123 456"), linq=linq, resy=resy, claude=claude)

    assert result == {"status": "token"}
    assert resy.called("verify_otp") == [("verify_otp", SENDER, "123456")]
    assert (await credential_service.get_credentials(SENDER)).resy_auth_token == "fresh-token"
    assert await state() == AuthState.UNAUTHENTICATED
    assert linq_recorder.sent_texts == [CONNECTED_MESSAGE, CAPABILITIES_MESSAGE]


async def test_rate_limited_stays_unauthenticated(linq, linq_recorder, resy, claude):
    resy.send_results = [OTPSendResult.RATE_LIMITED]

    result = await dispatch_message(inbound("hey"), linq=linq, resy=resy, claude=claude)

    assert result == {"status": OTPSendResult.RATE_LIMITED.value}
    assert await state() == AuthState.UNAUTHENTICATED
    assert linq_recorder.sent_texts[0] == OTP_RATE_LIMITED_MESSAGE


async def test_failed_send_offers_magic_link(linq, linq_recorder, resy, claude):
    resy.send_results = [OTPSendResult.FAILED]

    await dispatch_message(inbound("hey"), linq=linq, resy=resy, claude=claude)

    assert await state() == AuthState.UNAUTHENTICATED
    assert "http://testserver/auth/setup?token=" in linq_recorder.sent_texts[-1]


async def test_server_error_resends_once(linq, linq_recorder, resy, claude):
    await session_service.start_otp(SENDER, "chat_1")
    resy.verification = OTPVerification.server_error()

    result = await dispatch_message(inbound("123456"), linq=linq, resy=resy, claude=claude)

    assert result == {"status": "resent"}
    assert len(resy.called("send_otp")) == 1
    assert linq_recorder.sent_texts[-1] == OTP_RESENT_MESSAGE
    assert await state() == AuthState.OTP_SENT


async def test_existing_user_challenge(linq, linq_recorder, resy, claude):
    await session_service.start_otp(SENDER, "chat_1")
    resy.verification = OTPVerification.with_challenge(Challenge(
        claim_token="claim_1",
        challenge_id="ch_1",
        mobile_number=SENDER,
        first_name="Sam",
        required_fields=[{"name": "em_address", "type": "email"}],
    ))

    await dispatch_message(inbound("123456"), linq=linq, resy=resy, claude=claude)
    assert await state() == AuthState.CHALLENGE_PENDING
    assert "Sam" in linq_recorder.sent_texts[-1]

    # Platform refuses the first address; the challenge stays pending
    result = await dispatch_message(inbound("wrong@example.com"), linq=linq, resy=resy, claude=claude)
    assert result == {"status": "email_mismatch"}
    assert linq_recorder.sent_texts[-1] == CHALLENGE_EMAIL_MISMATCH
    assert await state() == AuthState.CHALLENGE_PENDING

    resy.challenge_token = "challenge-token"
    result = await dispatch_message(inbound("Sam@Example.com"), linq=linq, resy=resy, claude=claude)

    assert result == {"status": "authenticated"}
    assert resy.called("complete_challenge")[-1] == ("complete_challenge", "ch_1", {"em_address": "sam@example.com"})
    assert (await credential_service.get_credentials(SENDER)).resy_auth_token == "challenge-token"
    assert await state() == AuthState.UNAUTHENTICATED


async def test_code_accepted_after_otp_record_expired(memory_store, monkeypatch, linq, linq_recorder, resy):
    clock = [0.0]
    monkeypatch.setattr(memory_store, "_clock", lambda: clock[0])
    await session_service.start_otp(SENDER, "chat_1")
    challenge = Challenge(claim_token="claim_1", challenge_id="ch_1", mobile_number=SENDER, first_name="Sam")

    async def slow_verify(mobile_number, code):
        clock[0] = 10_000
        return OTPVerification.with_challenge(challenge)

    monkeypatch.setattr(resy, "verify_otp", slow_verify)

    result = await handle_otp_input(SENDER, "chat_1", "123456", linq, resy)

    assert result == {"status": "challenge"}
    assert await state() == AuthState.CHALLENGE_PENDING
    assert "Sam" in linq_recorder.sent_texts[-1]


async def test_new_user_registration_failure_gives_manual_instructions(linq, linq_recorder, resy, claude):
    await session_service.start_otp(SENDER, "chat_1")
    await session_service.start_challenge(SENDER, "chat_1", Challenge(
        claim_token="claim_1",
        mobile_number=SENDER,
        is_new_user=True,
    ))

    result = await dispatch_message(inbound("it's sam@example.com"), linq=linq, resy=resy, claude=claude)

    assert result == {"status": "registration_failed"}
    assert resy.called("register_user") == [("register_user", "claim_1", "sam@example.com")]
    assert linq_recorder.sent_texts[-1] == MANUAL_TOKEN_INSTRUCTIONS
    assert await state() == AuthState.UNAUTHENTICATED


async def test_inline_token_wins_over_pending_otp(linq, linq_recorder, resy, claude):
    await session_service.start_otp(SENDER, "chat_1")

    result = await dispatch_message(inbound(INLINE_TOKEN), linq=linq, resy=resy, claude=claude)

    assert result == {"status": "authenticated"}
    assert resy.called("verify_otp") == []
    assert (await credential_service.get_credentials(SENDER)).resy_auth_token == INLINE_TOKEN
    assert await state() == AuthState.UNAUTHENTICATED


async def test_sign_out_blocks_fallback_credential(linq, linq_recorder, resy, claude, test_settings):
    test_settings.RESY_AUTH_TOKEN = "shared-token"
    await credential_service.set_credentials(SENDER, ReservationCredentials(resy_auth_token="mine"))

    result = await dispatch_message(inbound("Sign Out"), linq=linq, resy=resy, claude=claude)
    assert result == {"status": "signed_out"}
    assert linq_recorder.sent_texts[-1] == SIGNED_OUT_MESSAGE

    result = await dispatch_message(inbound("book dinner"), linq=linq, resy=resy, claude=claude)

    assert result == {"status": OTPSendResult.SENT.value}
    assert claude.requests == []


async def test_reconnecting_clears_signed_out_flag(linq, resy, claude):
    await credential_service.clear_credentials(SENDER)

    await dispatch_message(inbound(INLINE_TOKEN), linq=linq, resy=resy, claude=claude)

    assert await credential_service.is_signed_out(SENDER) is False
