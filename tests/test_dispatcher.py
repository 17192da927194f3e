import httpx

from app.flow.dispatcher import dispatch_message
from app.models.user import ReservationCredentials
from app.schemas.webhook import InboundMessage, MessageEffect, ReplyTo
from app.services import conversation_service, credential_service
from app.services.linq_service import LinqService

from conftest import BOT_HANDLE, SENDER, FakeClaude, LinqRecorder, model_response, text_block, tool_block

FRIEND = "+15557770000"


def inbound(text: str, message_id: str = "msg_1", **extra) -> InboundMessage:
    return InboundMessage(chat_id="chat_1", sender=SENDER, message_id=message_id, text=text, **extra)


async def connect():
    await credential_service.set_credentials(SENDER, ReservationCredentials(resy_auth_token="user-token"))


def group_linq():
    recorder = LinqRecorder(handles=[SENDER, FRIEND, BOT_HANDLE], display_name="dinner crew")
    return recorder, LinqService(transport=httpx.MockTransport(recorder))


async def test_reply_is_split_into_bubbles(linq, linq_recorder, resy):
    await connect()
    claude = FakeClaude(model_response(text_block("carbone has 7:30 --- want it?")))

    result = await dispatch_message(inbound("dinner tonight?"), linq=linq, resy=resy, claude=claude)

    assert result == {"status": "responded", "parts": 2}
    assert linq_recorder.sent_texts == ["carbone has 7:30", "want it?"]
    assert linq_recorder.count("/read") == 1
    assert linq_recorder.count("/typing") == 1


async def test_first_message_after_onboarding_is_flagged(linq, resy):
    await connect()
    claude = FakeClaude(lambda: model_response(text_block("welcome!")))

    await dispatch_message(inbound("hi", "msg_1"), linq=linq, resy=resy, claude=claude)
    await dispatch_message(inbound("hi again", "msg_2"), linq=linq, resy=resy, claude=claude)

    assert "JUST connected" in claude.requests[0]["system"]
    assert "JUST connected" not in claude.requests[1]["system"]


async def test_effect_rides_on_last_bubble_and_reply_to_on_first(linq, linq_recorder, resy):
    await connect()
    claude = FakeClaude(model_response(
        text_block("booked --- see you there"),
        tool_block("send_effect", {"effect_type": "bubble", "effect": "slam"}),
    ))

    await dispatch_message(
        inbound("book it", reply_to=ReplyTo(message_id="earlier")),
        linq=linq,
        resy=resy,
        claude=claude,
    )

    first, last = linq_recorder.sent_messages
    assert first["reply_to"] == {"message_id": "msg_1"}
    assert "effect" not in first
    assert last["effect"] == {"type": "bubble", "name": "slam"}
    assert "reply_to" not in last


async def test_effect_without_text_gets_a_caption(linq, linq_recorder, resy):
    await connect()
    claude = FakeClaude(model_response(tool_block("send_effect", {"effect_type": "screen", "effect": "confetti"})))

    await dispatch_message(inbound("confetti!"), linq=linq, resy=resy, claude=claude)

    assert claude.effect_requests == ["confetti"]
    assert linq_recorder.sent_texts == ["confetti!"]
    assert linq_recorder.sent_messages[0]["effect"] == {"type": "screen", "name": "confetti"}


async def test_reaction_is_sent_to_inbound_message(linq, linq_recorder, resy):
    await connect()
    claude = FakeClaude(model_response(text_block("yay"), tool_block("send_reaction", {"type": "love"})))

    await dispatch_message(inbound("we're engaged"), linq=linq, resy=resy, claude=claude)

    assert linq_recorder.reactions == [{"operation": "add", "type": "love"}]
    assert any(r.url.path.endswith("/messages/msg_1/reactions") for r in linq_recorder.requests)


async def test_contact_card_on_first_and_every_fifth_message(linq, linq_recorder, resy):
    await connect()
    claude = FakeClaude(lambda: model_response(text_block("ok")))

    for index in range(5):
        await dispatch_message(inbound("hi", f"msg_{index}"), linq=linq, resy=resy, claude=claude)

    assert linq_recorder.count("/share_contact_card") == 2


async def test_group_message_ignored_by_classifier(resy):
    await connect()
    recorder, linq = group_linq()
    claude = FakeClaude(model_response(text_block("ignore")))

    result = await dispatch_message(inbound("lol"), linq=linq, resy=resy, claude=claude)

    assert result == {"status": "ignored"}
    assert recorder.sent_messages == []
    assert len(claude.requests) == 1


async def test_group_message_reacted_to(resy):
    await connect()
    recorder, linq = group_linq()
    claude = FakeClaude(model_response(text_block("react:laugh")))

    result = await dispatch_message(inbound("haha"), linq=linq, resy=resy, claude=claude)

    assert result == {"status": "reacted"}
    assert recorder.reactions == [{"operation": "add", "type": "laugh"}]
    history = await conversation_service.get_conversation("chat_1")
    assert history[-1].content == "[reacted with laugh]"


async def test_group_rename(resy):
    await connect()
    recorder, linq = group_linq()
    claude = FakeClaude(
        model_response(text_block("respond")),
        model_response(tool_block("rename_group_chat", {"name": "pasta people"})),
    )

    await dispatch_message(inbound("rename us"), linq=linq, resy=resy, claude=claude)

    assert recorder.bodies("/chat_1") == [{"display_name": "pasta people"}]
    assert recorder.sent_texts == ['renamed the chat to "pasta people" 😎']
    assert "dinner crew" in claude.requests[1]["system"]


async def test_group_media_skips_classifier(resy):
    await connect()
    recorder, linq = group_linq()
    claude = FakeClaude(model_response(text_block("nice pic")))

    await dispatch_message(
        inbound("", images=[{"url": "https://cdn/x.jpg", "mime_type": "image/jpeg"}]),
        linq=linq,
        resy=resy,
        claude=claude,
    )

    assert len(claude.requests) == 1
    assert recorder.sent_texts == ["nice pic"]


async def test_incoming_effect_reaches_prompt(linq, resy):
    await connect()
    claude = FakeClaude(model_response(text_block("ooh fireworks")))

    await dispatch_message(
        inbound("surprise", effect=MessageEffect(type="screen", name="fireworks")),
        linq=linq,
        resy=resy,
        claude=claude,
    )

    assert 'screen effect: "fireworks"' in claude.requests[0]["system"]
