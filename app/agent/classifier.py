"""
app/agent/classifier.py

Purpose: Group-chat pre-filter

- Decides respond / react / ignore for a group message using the fast model
- Only an explicit "ignore" answer ignores; anything unclear responds
- Classifier call failures also respond
"""

import time
from enum import Enum
from typing import List, Optional

import anthropic
from pydantic import BaseModel

from app.core.logging import get_logger
from app.models.conversation import StoredMessage
from app.schemas.webhook import Reaction
from app.services.claude_service import ClaudeService, first_text, get_claude_service
from utils.constants import GROUP_CLASSIFIER_HISTORY_TURNS

logger = get_logger(__name__)

CLASSIFIER_SYSTEM_PROMPT = """You classify how an AI booking assistant should handle messages in a group chat.

IMPORTANT: BIAS TOWARD "respond". Text responses are almost always better than reactions.

Answer with ONE of these:
- "respond": The assistant should send a text reply. USE THIS BY DEFAULT when:
  * They asked about restaurants, bookings, reservations, or plans
  * They mentioned the bot or assistant
  * They're continuing a conversation
  * You're unsure, default to respond
- "react:love" or "react:like" or "react:laugh": ONLY for brief acknowledgments
- "ignore": Human-to-human conversation clearly not involving the assistant"""


class GroupAction(str, Enum):
    RESPOND = "respond"
    REACT = "react"
    IGNORE = "ignore"


class GroupDecision(BaseModel):
    action: GroupAction
    reaction: Optional[Reaction] = None


RESPOND = GroupDecision(action=GroupAction.RESPOND)


def parse_decision(answer: Optional[str]) -> GroupDecision:
    """
    Maps the model's answer to a decision.

    "respond" wins over everything, "react" needs the word react, and
    "ignore" must be said outright. Anything else responds.
    """
    answer = (answer or "").lower().strip()

    if "respond" in answer:
        return RESPOND

    if "react" in answer:
        for reaction_type in ("love", "laugh", "like"):
            if reaction_type in answer:
                return GroupDecision(action=GroupAction.REACT, reaction=Reaction(type=reaction_type))
        return GroupDecision(action=GroupAction.REACT, reaction=Reaction(type="like"))

    if answer.strip('"\'. ') == "ignore":
        return GroupDecision(action=GroupAction.IGNORE)

    return RESPOND


def _format_recent(history: List[StoredMessage]) -> str:
    recent = history[-GROUP_CLASSIFIER_HISTORY_TURNS:]
    if not recent:
        return ""

    lines = []
    for message in recent:
        if message.role == "assistant":
            lines.append(f"Assistant: {message.content}")
        else:
            lines.append(f"{message.handle or 'Someone'}: {message.content}")
    return "\nRecent conversation:\n" + "\n".join(lines) + "\n"


async def classify_group_message(
    text: str,
    sender: str,
    history: List[StoredMessage],
    claude: Optional[ClaudeService] = None,
) -> GroupDecision:
    claude = claude or get_claude_service()
    started = time.monotonic()

    prompt = f'{_format_recent(history)}New message from {sender}: "{text}"\n\nHow should the assistant handle this?'

    try:
        response = await claude.create_message(
            messages=[{"role": "user", "content": prompt}],
            system=CLASSIFIER_SYSTEM_PROMPT,
            model=claude.fast_model,
            max_tokens=20,
        )
    except anthropic.APIError as e:
        logger.warning(f"⚠️ Group classifier failed, responding anyway: {e}")
        return RESPOND

    decision = parse_decision(first_text(response))
    elapsed_ms = int((time.monotonic() - started) * 1000)
    logger.info(f"Group classifier ({elapsed_ms}ms): {text[:50]!r} -> {decision.action.value}")
    return decision
