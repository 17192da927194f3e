import json
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import httpx
import pytest

from app.core.config import settings
from app.db.store import MemoryKeyValueStore, set_store
from app.models.reservation import OTPSendResult, OTPVerification
from app.services import linq_service as linq_module
from app.services.claude_service import set_claude_service
from app.services.linq_service import LinqService, set_linq_service
from app.services.resy_service import set_resy_service

TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
BOT_HANDLE = "+15559990000"
SENDER = "+15551234567"
# Shaped like a JWT: prefix, three segments, long enough
INLINE_TOKEN = "eyJhbGciOiJIUzI1NiJ9." + "a" * 90 + ".sig_abc123"


@pytest.fixture(autouse=True)
def memory_store():
    store = MemoryKeyValueStore()
    set_store(store)
    yield store
    set_store(None)


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    monkeypatch.setattr(settings, "CREDENTIAL_ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
    monkeypatch.setattr(settings, "RESY_AUTH_TOKEN", None)
    monkeypatch.setattr(settings, "LINQ_API_TOKEN", "test-linq-token")
    monkeypatch.setattr(settings, "BOT_NUMBERS", None)
    monkeypatch.setattr(settings, "ALLOWED_SENDERS", None)
    monkeypatch.setattr(settings, "IGNORED_SENDERS", None)
    monkeypatch.setattr(settings, "APP_URL", "http://testserver")
    monkeypatch.setattr(settings, "MAX_TOOL_LOOPS", 5)
    return settings


@pytest.fixture(autouse=True)
def no_message_delays(monkeypatch):
    monkeypatch.setattr(linq_module, "PART_DELAY_MIN_SECONDS", 0)
    monkeypatch.setattr(linq_module, "PART_DELAY_MAX_SECONDS", 0)
    monkeypatch.setattr("app.flow.handlers.otp.OTP_RETRY_DELAY_SECONDS", 0)
    monkeypatch.setattr("app.flow.handlers.otp.MESSAGE_PART_DELAY_SECONDS", 0)
    monkeypatch.setattr("app.flow.handlers.challenge.MESSAGE_PART_DELAY_SECONDS", 0)
    monkeypatch.setattr("app.flow.handlers.welcome.WELCOME_PART_DELAY_SECONDS", 0)


@pytest.fixture(autouse=True)
def reset_services():
    yield
    set_linq_service(None)
    set_resy_service(None)
    set_claude_service(None)


# ==============================================
# LINQ
# ==============================================


class LinqRecorder:
    """MockTransport handler: answers every Linq call with 200 and keeps the request."""

    def __init__(self, handles: Optional[List[str]] = None, display_name: Optional[str] = None):
        self.requests: List[httpx.Request] = []
        self.handles = handles or [SENDER, BOT_HANDLE]
        self.display_name = display_name

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "GET" and "/chats/" in request.url.path:
            chat_id = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={
                "id": chat_id,
                "display_name": self.display_name,
                "handles": [{"handle": handle} for handle in self.handles],
                "is_group": len(self.handles) > 2,
            })
        if request.url.path.endswith("/messages"):
            return httpx.Response(200, json={"message": {"id": f"out_{len(self.requests)}"}})
        return httpx.Response(200, json={})

    def bodies(self, suffix: str) -> List[Dict[str, Any]]:
        return [
            json.loads(request.content)
            for request in self.requests
            if request.method in ("POST", "PUT") and request.url.path.endswith(suffix)
        ]

    @property
    def sent_messages(self) -> List[Dict[str, Any]]:
        return [body["message"] for body in self.bodies("/messages")]

    @property
    def sent_texts(self) -> List[str]:
        return [part["value"] for message in self.sent_messages for part in message["parts"]]

    @property
    def reactions(self) -> List[Dict[str, Any]]:
        return self.bodies("/reactions")

    def count(self, suffix: str) -> int:
        return sum(1 for request in self.requests if request.url.path.endswith(suffix))


@pytest.fixture
def linq_recorder():
    return LinqRecorder()


@pytest.fixture
def linq(linq_recorder):
    return LinqService(transport=httpx.MockTransport(linq_recorder))


# ==============================================
# RESY
# ==============================================


class FakeResy:
    """Scripted stand-in for ResyService's auth and booking calls."""

    def __init__(self):
        self.send_results: List[OTPSendResult] = [OTPSendResult.SENT]
        self.verification: OTPVerification = OTPVerification.rejected()
        self.registration_token: Optional[str] = None
        self.challenge_token: Optional[str] = None
        self.calls: List[tuple] = []
        self.booking = None
        self.booking_error: Optional[Exception] = None

    async def send_otp(self, mobile_number):
        self.calls.append(("send_otp", mobile_number))
        if len(self.send_results) > 1:
            return self.send_results.pop(0)
        return self.send_results[0]

    async def verify_otp(self, mobile_number, code):
        self.calls.append(("verify_otp", mobile_number, code))
        return self.verification

    async def register_user(self, claim_token, mobile_number, first_name, last_name, email):
        self.calls.append(("register_user", claim_token, email))
        return self.registration_token

    async def complete_challenge(self, challenge, field_values):
        self.calls.append(("complete_challenge", challenge.challenge_id, field_values))
        return self.challenge_token

    async def search_restaurants(self, auth_token, query, lat=None, lng=None):
        self.calls.append(("search_restaurants", auth_token, query))
        return []

    async def find_slots(self, auth_token, venue_id, day, party_size, lat=None, lng=None):
        self.calls.append(("find_slots", venue_id, day, party_size))
        return []

    async def book_reservation(self, auth_token, venue_id, day, party_size, desired_time=None, lat=None, lng=None):
        self.calls.append(("book_reservation", venue_id, day, party_size, desired_time))
        if self.booking_error:
            raise self.booking_error
        return self.booking

    def called(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]


@pytest.fixture
def resy():
    return FakeResy()


# ==============================================
# CLAUDE
# ==============================================


def text_block(text: str):
    return SimpleNamespace(type="text", text=text)


def tool_block(name: str, tool_input: Optional[Dict[str, Any]] = None, block_id: str = "toolu_1"):
    return SimpleNamespace(type="tool_use", name=name, input=tool_input or {}, id=block_id)


def model_response(*blocks, stop_reason: Optional[str] = None):
    if stop_reason is None:
        stop_reason = "tool_use" if any(block.type == "tool_use" for block in blocks) else "end_turn"
    return SimpleNamespace(stop_reason=stop_reason, content=list(blocks))


class FakeClaude:
    """
    Replays queued responses. When the queue holds a single callable it is
    called for every request instead.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: List[Dict[str, Any]] = []
        self.fast_model = "fast-model"
        self.model = "main-model"
        self.effect_requests: List[str] = []

    async def create_message(self, messages, system=None, tools=None, model=None, max_tokens=None):
        self.requests.append({
            # Snapshot: the loop keeps appending to the same list
            "messages": list(messages),
            "system": system,
            "tools": tools,
            "model": model,
            "max_tokens": max_tokens,
        })
        if len(self.responses) == 1 and callable(self.responses[0]):
            return self.responses[0]()
        if not self.responses:
            raise AssertionError("FakeClaude ran out of responses")
        return self.responses.pop(0)

    async def generate_effect_text(self, effect_name: str) -> str:
        self.effect_requests.append(effect_name)
        return f"{effect_name}!"


@pytest.fixture
def claude():
    return FakeClaude()
