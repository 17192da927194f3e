import httpx
import pytest

from app.agent.context import AgentContext, AgentInput
from app.agent.loop import CELEBRATION_EFFECT, format_history, run_agent
from app.agent.tools import DATA_TOOLS, FIRE_AND_FORGET_TOOLS, SERVER_TOOLS, ToolName, build_tool_set
from app.core.exceptions import ReservationAuthError
from app.models.conversation import StoredMessage
from app.models.reservation import BookingConfirmation
from app.models.user import ReservationCredentials
from app.schemas.webhook import MediaInput
from app.services import conversation_service
from app.services.resy_service import ResyService
from utils.constants import CLEAR_MESSAGE, HELP_MESSAGE

from conftest import SENDER, FakeClaude, model_response, text_block, tool_block

CREDENTIALS = ReservationCredentials(resy_auth_token="user-token")


def context(**overrides) -> AgentContext:
    values = {"sender_handle": SENDER, "credentials": CREDENTIALS}
    values.update(overrides)
    return AgentContext(**values)


def tool_names(tools):
    return {tool["name"] for tool in tools}


# ==============================================
# TOOL CATALOGUE
# ==============================================


def test_tool_categories_partition_every_tool():
    assert FIRE_AND_FORGET_TOOLS | DATA_TOOLS | SERVER_TOOLS == set(ToolName)
    assert not FIRE_AND_FORGET_TOOLS & DATA_TOOLS


def test_reservation_tools_need_credentials():
    without = tool_names(build_tool_set(has_credentials=False, is_group_chat=False))
    with_credentials = tool_names(build_tool_set(has_credentials=True, is_group_chat=False))

    assert not {name.value for name in DATA_TOOLS} & without
    assert {name.value for name in DATA_TOOLS} <= with_credentials
    assert "web_search" in without


def test_rename_only_offered_in_groups():
    assert "rename_group_chat" not in tool_names(build_tool_set(True, is_group_chat=False))
    assert "rename_group_chat" in tool_names(build_tool_set(True, is_group_chat=True))


# ==============================================
# LOOP
# ==============================================


async def test_plain_text_reply(resy):
    claude = FakeClaude(model_response(text_block("hey! where are we eating?")))

    reply = await run_agent(AgentInput(chat_id="chat_1", text="hi"), context(), claude=claude, resy=resy)

    assert reply.text == "hey! where are we eating?"
    assert reply.tool_rounds == 0
    history = await conversation_service.get_conversation("chat_1")
    assert [(m.role, m.content) for m in history] == [("user", "hi"), ("assistant", "hey! where are we eating?")]


async def test_loop_stops_at_round_bound(resy):
    claude = FakeClaude(lambda: model_response(tool_block("resy_search", {"query": "pizza"})))

    reply = await run_agent(AgentInput(chat_id="chat_1", text="find pizza"), context(), claude=claude, resy=resy)

    # One initial call plus one per round
    assert len(claude.requests) == 6
    assert reply.tool_rounds == 5
    assert len(resy.called("search_restaurants")) == 5


async def test_fire_and_forget_only_turn_ends_loop(resy):
    claude = FakeClaude(model_response(
        text_block("love it"),
        tool_block("send_reaction", {"type": "love"}),
    ))

    reply = await run_agent(AgentInput(chat_id="chat_1", text="we got the table!"), context(), claude=claude, resy=resy)

    assert len(claude.requests) == 1
    assert reply.reaction.type == "love"
    assert reply.text == "love it"


async def test_tool_results_are_fed_back(resy):
    claude = FakeClaude(
        model_response(tool_block("resy_search", {"query": "carbone"}, "toolu_9")),
        model_response(text_block("found it")),
    )

    await run_agent(AgentInput(chat_id="chat_1", text="carbone?"), context(), claude=claude, resy=resy)

    second_call = claude.requests[1]["messages"]
    assert second_call[-2]["role"] == "assistant"
    tool_result = second_call[-1]["content"][0]
    assert tool_result == {"type": "tool_result", "tool_use_id": "toolu_9", "content": "[]"}
    assert resy.called("search_restaurants") == [("search_restaurants", "user-token", "carbone")]


async def test_successful_booking_adds_celebration(resy):
    resy.booking = BookingConfirmation(resy_token="rt", date="2025-01-15", time="19:30", party_size=2)
    claude = FakeClaude(
        model_response(tool_block("resy_book", {"venue_id": 1, "date": "2025-01-15", "party_size": 2, "time": "19:30"})),
        model_response(text_block("booked! 7:30 for 2")),
    )

    reply = await run_agent(AgentInput(chat_id="chat_1", text="book it"), context(), claude=claude, resy=resy)

    assert reply.effect == CELEBRATION_EFFECT
    assert resy.called("book_reservation") == [("book_reservation", 1, "2025-01-15", 2, "19:30")]
    history = await conversation_service.get_conversation("chat_1")
    assert history[-1].content == "[booked a reservation] booked! 7:30 for 2"


async def test_chosen_effect_is_not_replaced(resy):
    resy.booking = BookingConfirmation(resy_token="rt", date="2025-01-15", time="19:30", party_size=2)
    claude = FakeClaude(
        model_response(
            tool_block("resy_book", {"venue_id": 1, "date": "2025-01-15", "party_size": 2}, "toolu_1"),
            tool_block("send_effect", {"effect_type": "screen", "effect": "fireworks"}, "toolu_2"),
        ),
        model_response(text_block("done")),
    )

    reply = await run_agent(AgentInput(chat_id="chat_1", text="book it"), context(), claude=claude, resy=resy)

    assert reply.effect.name == "fireworks"
    ack = claude.requests[1]["messages"][-1]["content"][1]
    assert ack == {"type": "tool_result", "tool_use_id": "toolu_2", "content": "ok"}


async def test_failed_tool_becomes_error_result(resy):
    resy.booking_error = ReservationAuthError("Your Resy session has expired.")
    claude = FakeClaude(
        model_response(tool_block("resy_book", {"venue_id": 1, "date": "2025-01-15", "party_size": 2})),
        model_response(text_block("looks like your session expired")),
    )

    reply = await run_agent(AgentInput(chat_id="chat_1", text="book it"), context(), claude=claude, resy=resy)

    result = claude.requests[1]["messages"][-1]["content"][0]
    assert result["is_error"] is True
    assert result["content"] == "Error booking reservation: Your Resy session has expired."
    assert reply.effect is None


async def test_missing_tool_arguments_become_error_result(resy):
    claude = FakeClaude(
        model_response(tool_block("resy_find_slots", {"venue_id": 1})),
        model_response(text_block("which date?")),
    )

    await run_agent(AgentInput(chat_id="chat_1", text="slots?"), context(), claude=claude, resy=resy)

    result = claude.requests[1]["messages"][-1]["content"][0]
    assert result["is_error"] is True
    assert result["content"].startswith("Error finding slots")
    assert resy.called("find_slots") == []


async def test_unexpected_tool_failure_becomes_error_result(resy, monkeypatch):
    async def broken_search(auth_token, query, lat=None, lng=None):
        raise AttributeError("'list' object has no attribute 'get'")

    monkeypatch.setattr(resy, "search_restaurants", broken_search)
    claude = FakeClaude(
        model_response(tool_block("resy_search", {"query": "carbone"})),
        model_response(text_block("resy is acting up")),
    )

    reply = await run_agent(AgentInput(chat_id="chat_1", text="carbone?"), context(), claude=claude, resy=resy)

    result = claude.requests[1]["messages"][-1]["content"][0]
    assert result["is_error"] is True
    assert result["content"].startswith("Error searching restaurants")
    assert reply.text == "resy is acting up"


async def test_unexpected_platform_body_becomes_error_result():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[])

    resy = ResyService(transport=httpx.MockTransport(handler))
    claude = FakeClaude(
        model_response(tool_block("resy_search", {"query": "carbone"})),
        model_response(text_block("couldn't search right now")),
    )

    await run_agent(AgentInput(chat_id="chat_1", text="carbone?"), context(), claude=claude, resy=resy)

    result = claude.requests[1]["messages"][-1]["content"][0]
    assert result["is_error"] is True
    assert "unexpected response" in result["content"]


async def test_unknown_tool_becomes_error_result(resy):
    claude = FakeClaude(
        model_response(tool_block("resy_search", {"query": "x"}, "t1"), tool_block("teleport", {}, "t2")),
        model_response(text_block("ok")),
    )

    await run_agent(AgentInput(chat_id="chat_1", text="hi"), context(), claude=claude, resy=resy)

    unknown = claude.requests[1]["messages"][-1]["content"][1]
    assert unknown["is_error"] is True


async def test_model_failure_propagates(resy):
    class BrokenClaude(FakeClaude):
        async def create_message(self, *args, **kwargs):
            raise RuntimeError("model unavailable")

    with pytest.raises(RuntimeError):
        await run_agent(AgentInput(chat_id="chat_1", text="hi"), context(), claude=BrokenClaude(), resy=resy)


async def test_unauthenticated_user_gets_no_reservation_tools(resy):
    claude = FakeClaude(model_response(text_block("connect your account first")))

    await run_agent(AgentInput(chat_id="chat_1", text="book"), context(credentials=None), claude=claude, resy=resy)

    assert "resy_book" not in tool_names(claude.requests[0]["tools"])
    assert "Account Status" in claude.requests[0]["system"]


async def test_remember_user_updates_profile(resy):
    claude = FakeClaude(model_response(
        text_block("nice to meet you Sam"),
        tool_block("remember_user", {"name": "Sam", "fact": "vegetarian"}),
    ))

    reply = await run_agent(AgentInput(chat_id="chat_1", text="i'm sam, veggie"), context(), claude=claude, resy=resy)

    profile = await conversation_service.get_user_profile(SENDER)
    assert profile.name == "Sam"
    assert profile.facts == ["vegetarian"]
    assert reply.remembered_user.is_for_sender is True


async def test_image_only_message_gets_default_prompt(resy):
    claude = FakeClaude(model_response(text_block("that's a menu")))
    agent_input = AgentInput(chat_id="chat_1", images=[MediaInput(url="https://cdn/x.jpg", mime_type="image/jpeg")])

    await run_agent(agent_input, context(), claude=claude, resy=resy)

    content = claude.requests[0]["messages"][-1]["content"]
    assert content[0] == {"type": "image", "source": {"type": "url", "url": "https://cdn/x.jpg"}}
    assert content[1] == {"type": "text", "text": "What's in this image?"}


async def test_effect_only_reply_is_recorded(resy):
    claude = FakeClaude(model_response(tool_block("send_effect", {"effect_type": "screen", "effect": "confetti"})))

    reply = await run_agent(AgentInput(chat_id="chat_1", text="confetti pls"), context(), claude=claude, resy=resy)

    assert reply.text is None
    history = await conversation_service.get_conversation("chat_1")
    assert history[-1].content == "[sent confetti effect]"


# ==============================================
# COMMANDS AND HISTORY
# ==============================================


async def test_help_never_reaches_model(resy):
    claude = FakeClaude()

    reply = await run_agent(AgentInput(chat_id="chat_1", text="/help"), context(), claude=claude, resy=resy)

    assert reply.text == HELP_MESSAGE
    assert claude.requests == []


async def test_clear_wipes_history(resy):
    await conversation_service.add_message("chat_1", "user", "old")

    reply = await run_agent(AgentInput(chat_id="chat_1", text="/clear"), context(), claude=FakeClaude(), resy=resy)

    assert reply.text == CLEAR_MESSAGE
    assert await conversation_service.get_conversation("chat_1") == []


def test_group_history_is_attributed():
    messages = [
        StoredMessage(role="user", content="pizza?", handle="+1555"),
        StoredMessage(role="assistant", content="sure"),
    ]

    assert format_history(messages, is_group_chat=True) == [
        {"role": "user", "content": "[+1555]: pizza?"},
        {"role": "assistant", "content": "sure"},
    ]
    assert format_history(messages, is_group_chat=False)[0]["content"] == "pizza?"
