import anthropic
import httpx
import pytest

from app.agent.classifier import GroupAction, classify_group_message, parse_decision
from app.models.conversation import StoredMessage

from conftest import FakeClaude, model_response, text_block


@pytest.mark.parametrize("answer, action", [
    ("respond", GroupAction.RESPOND),
    ("RESPOND.", GroupAction.RESPOND),
    ("ignore", GroupAction.IGNORE),
    ('"Ignore."', GroupAction.IGNORE),
    ("react:love", GroupAction.REACT),
    ("react", GroupAction.REACT),
])
def test_parse_clear_answers(answer, action):
    assert parse_decision(answer).action == action


@pytest.mark.parametrize("answer", [
    "",
    None,
    "maybe",
    "ignore or respond",
    "i would probably ignore this",
    "not sure, could ignore",
])
def test_ambiguous_answers_respond(answer):
    assert parse_decision(answer).action == GroupAction.RESPOND


def test_react_picks_reaction_type():
    assert parse_decision("react:laugh").reaction.type == "laugh"
    assert parse_decision("react:love").reaction.type == "love"
    assert parse_decision("react:thumbs").reaction.type == "like"


async def test_classifier_uses_fast_model_and_recent_history():
    claude = FakeClaude(model_response(text_block("ignore")))
    history = [StoredMessage(role="user", content=f"m{i}", handle="+1555") for i in range(6)]

    decision = await classify_group_message("lol", "+1666", history, claude=claude)

    assert decision.action == GroupAction.IGNORE
    request = claude.requests[0]
    assert request["model"] == "fast-model"
    assert request["max_tokens"] == 20
    prompt = request["messages"][0]["content"]
    assert "m1" not in prompt
    assert "+1555: m5" in prompt
    assert 'New message from +1666: "lol"' in prompt


async def test_classifier_failure_responds():
    class FailingClaude(FakeClaude):
        async def create_message(self, *args, **kwargs):
            raise anthropic.APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com"))

    decision = await classify_group_message("anyone up for dinner?", "+1555", [], claude=FailingClaude())

    assert decision.action == GroupAction.RESPOND
