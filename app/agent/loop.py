"""
app/agent/loop.py

Purpose: Bounded tool-use conversation loop

- Special commands (/help, /clear, /forget me) never reach the model
- Model is called with history + new turn + the tools this user may use
- Loop continues only while the last turn asked for a data tool and
  fewer than MAX_TOOL_LOOPS rounds have run
- Data-tool failures become is_error tool results for the model to
  explain; model call failures propagate
- Fire-and-forget tools are collected from every assistant turn
- History gets the final text prefixed with bracketed tool summaries
"""

import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from app.agent.context import AgentContext, AgentInput, AgentReply, RememberedUser
from app.agent.prompts import build_system_prompt
from app.agent.tools import DATA_TOOLS, FIRE_AND_FORGET_TOOLS, ToolName, build_tool_set, parse_tool_name
from app.core.config import settings
from app.core.exceptions import TableTextError
from app.core.logging import get_logger, LogContext
from app.services import conversation_service
from app.services.claude_service import ClaudeService, get_claude_service
from app.services.resy_service import ResyService, get_resy_service
from app.schemas.webhook import MessageEffect, Reaction
from utils.constants import (
    CLEAR_COMMANDS,
    CLEAR_MESSAGE,
    DEFAULT_IMAGE_PROMPT,
    FORGET_COMMANDS,
    FORGET_MESSAGE,
    FORGET_UNKNOWN_MESSAGE,
    HELP_COMMANDS,
    HELP_MESSAGE,
)
from utils.message_utils import flatten_for_history

logger = get_logger(__name__)

CELEBRATION_EFFECT = MessageEffect(type="screen", name="celebration")


# ==============================================
# DATA TOOL HANDLERS
# ==============================================

ToolHandler = Callable[[ResyService, str, Dict[str, Any]], Awaitable[Any]]


def _geo(tool_input: Dict[str, Any]) -> Tuple[Optional[float], Optional[float]]:
    lat, lng = tool_input.get("lat"), tool_input.get("lng")
    if lat is None or lng is None:
        return None, None
    return float(lat), float(lng)


async def _search(resy: ResyService, token: str, tool_input: Dict[str, Any]) -> Any:
    lat, lng = _geo(tool_input)
    return await resy.search_restaurants(token, str(tool_input["query"]), lat=lat, lng=lng)


async def _find_slots(resy: ResyService, token: str, tool_input: Dict[str, Any]) -> Any:
    lat, lng = _geo(tool_input)
    return await resy.find_slots(
        token,
        int(tool_input["venue_id"]),
        str(tool_input["date"]),
        int(tool_input["party_size"]),
        lat=lat,
        lng=lng,
    )


async def _book(resy: ResyService, token: str, tool_input: Dict[str, Any]) -> Any:
    # Never trusts a slot token from earlier turns; the service refetches
    return await resy.book_reservation(
        token,
        int(tool_input["venue_id"]),
        str(tool_input["date"]),
        int(tool_input["party_size"]),
        desired_time=tool_input.get("time"),
    )


async def _cancel(resy: ResyService, token: str, tool_input: Dict[str, Any]) -> Any:
    return await resy.cancel_reservation(token, str(tool_input["resy_token"]))


async def _reservations(resy: ResyService, token: str, tool_input: Dict[str, Any]) -> Any:
    return await resy.get_reservations(token)


DATA_TOOL_HANDLERS: Dict[ToolName, ToolHandler] = {
    ToolName.RESY_SEARCH: _search,
    ToolName.RESY_FIND_SLOTS: _find_slots,
    ToolName.RESY_BOOK: _book,
    ToolName.RESY_CANCEL: _cancel,
    ToolName.RESY_RESERVATIONS: _reservations,
}

if set(DATA_TOOL_HANDLERS) != set(DATA_TOOLS):
    raise RuntimeError("Every data tool needs a handler")

ERROR_PREFIXES: Dict[ToolName, str] = {
    ToolName.RESY_SEARCH: "Error searching restaurants",
    ToolName.RESY_FIND_SLOTS: "Error finding slots",
    ToolName.RESY_BOOK: "Error booking reservation",
    ToolName.RESY_CANCEL: "Error cancelling reservation",
    ToolName.RESY_RESERVATIONS: "Error fetching reservations",
}


def _to_json(result: Any) -> str:
    if isinstance(result, BaseModel):
        return result.model_dump_json()
    if isinstance(result, list):
        return json.dumps([item.model_dump(mode="json") if isinstance(item, BaseModel) else item for item in result])
    return json.dumps(result)


# ==============================================
# HELPERS
# ==============================================


def _special_command(text: str) -> Optional[str]:
    command = text.lower().strip()
    if command in HELP_COMMANDS:
        return "help"
    if command in CLEAR_COMMANDS:
        return "clear"
    if command in FORGET_COMMANDS:
        return "forget"
    return None


async def _run_special_command(command: str, chat_id: str, context: AgentContext) -> AgentReply:
    if command == "help":
        return AgentReply(text=HELP_MESSAGE)

    if command == "clear":
        await conversation_service.clear_conversation(chat_id)
        return AgentReply(text=CLEAR_MESSAGE)

    if context.sender_handle:
        await conversation_service.clear_user_profile(context.sender_handle)
        return AgentReply(text=FORGET_MESSAGE)
    return AgentReply(text=FORGET_UNKNOWN_MESSAGE)


def format_history(messages, is_group_chat: bool) -> List[Dict[str, Any]]:
    """Stored history -> Messages API turns, with sender attribution in groups."""
    formatted = []
    for message in messages:
        content = message.content
        if is_group_chat and message.role == "user" and message.handle:
            content = f"[{message.handle}]: {content}"
        formatted.append({"role": message.role, "content": content})
    return formatted


def _build_user_content(agent_input: AgentInput) -> Tuple[List[Dict[str, Any]], str]:
    content: List[Dict[str, Any]] = [
        {"type": "image", "source": {"type": "url", "url": image.url}}
        for image in agent_input.images
    ]

    text = agent_input.text.strip()
    if not text and agent_input.images:
        text = DEFAULT_IMAGE_PROMPT
    if agent_input.audio:
        note = f"[voice message attached ({len(agent_input.audio)})]"
        text = f"{text}\n{note}" if text else note
    if text:
        content.append({"type": "text", "text": text})

    return content, text


def _tool_uses(blocks) -> List[Any]:
    return [block for block in blocks if getattr(block, "type", None) == "tool_use"]


def _summarize(block) -> Optional[str]:
    name = parse_tool_name(block.name)
    tool_input = block.input or {}
    if name == ToolName.RESY_SEARCH:
        return f'[searched resy for "{tool_input.get("query", "")}"]'
    if name == ToolName.RESY_FIND_SLOTS:
        return (
            f"[checked slots: venue {tool_input.get('venue_id')}, "
            f"{tool_input.get('date')}, party of {tool_input.get('party_size')}]"
        )
    if name == ToolName.RESY_BOOK:
        return "[booked a reservation]"
    if name == ToolName.RESY_CANCEL:
        return "[cancelled a reservation]"
    if name == ToolName.RESY_RESERVATIONS:
        return "[checked upcoming reservations]"
    return None


# ==============================================
# LOOP
# ==============================================


async def _execute_data_tools(
    response,
    resy: ResyService,
    auth_token: Optional[str],
) -> Tuple[List[Dict[str, Any]], bool]:
    """Runs one round of tool calls. Returns (tool_result blocks, booking_succeeded)."""
    results: List[Dict[str, Any]] = []
    booking_succeeded = False

    for block in _tool_uses(response.content):
        name = parse_tool_name(block.name)

        if name in FIRE_AND_FORGET_TOOLS:
            results.append({"type": "tool_result", "tool_use_id": block.id, "content": "ok"})
            continue

        if name not in DATA_TOOLS:
            logger.warning(f"Model called unknown tool {block.name!r}")
            results.append({
                "type": "tool_result",
                "tool_use_id": block.id,
                "content": f"Unknown tool: {block.name}",
                "is_error": True,
            })
            continue

        with LogContext(tool=name.value):
            if not auth_token:
                results.append({
                    "type": "tool_result",
                    "tool_use_id": block.id,
                    "content": f"{ERROR_PREFIXES[name]}: no Resy account connected",
                    "is_error": True,
                })
                continue

            try:
                result = await DATA_TOOL_HANDLERS[name](resy, auth_token, block.input or {})
            except TableTextError as e:
                message = e.message
                logger.error(f"❌ {name.value} failed: {message}")
                results.append({
                    "type": "tool_result",
                    "tool_use_id": block.id,
                    "content": f"{ERROR_PREFIXES[name]}: {message}",
                    "is_error": True,
                })
                continue
            except Exception as e:
                # Any tool failure is the model's to explain; only the model call itself propagates
                message = str(e) or type(e).__name__
                logger.error(f"❌ {name.value} failed unexpectedly: {message}", exc_info=True)
                results.append({
                    "type": "tool_result",
                    "tool_use_id": block.id,
                    "content": f"{ERROR_PREFIXES[name]}: {message}",
                    "is_error": True,
                })
                continue

            results.append({"type": "tool_result", "tool_use_id": block.id, "content": _to_json(result)})
            if name == ToolName.RESY_BOOK:
                booking_succeeded = True

    return results, booking_succeeded


def _has_data_tool(response) -> bool:
    return any(parse_tool_name(block.name) in DATA_TOOLS for block in _tool_uses(response.content))


async def _apply_fire_and_forget(blocks, context: AgentContext, reply: AgentReply) -> None:
    for block in _tool_uses(blocks):
        name = parse_tool_name(block.name)
        tool_input = block.input or {}

        if name == ToolName.SEND_REACTION:
            try:
                reaction = Reaction.model_validate(tool_input)
            except PydanticValidationError:
                logger.warning(f"Ignoring invalid reaction {tool_input!r}")
                continue
            if reaction.type != "custom" or reaction.emoji:
                reply.reaction = reaction

        elif name == ToolName.SEND_EFFECT:
            try:
                reply.effect = MessageEffect(type=tool_input.get("effect_type"), name=tool_input.get("effect"))
            except PydanticValidationError:
                logger.warning(f"Ignoring invalid effect {tool_input!r}")

        elif name == ToolName.RENAME_GROUP_CHAT:
            if tool_input.get("name"):
                reply.rename_chat = str(tool_input["name"])

        elif name == ToolName.REMEMBER_USER:
            await _remember(tool_input, context, reply)


async def _remember(tool_input: Dict[str, Any], context: AgentContext, reply: AgentReply) -> None:
    target = tool_input.get("handle") or context.sender_handle
    if not target:
        return

    name, fact = tool_input.get("name"), tool_input.get("fact")
    name_changed = bool(name) and await conversation_service.set_user_name(target, name)
    fact_changed = bool(fact) and await conversation_service.add_user_fact(target, fact)

    if name_changed or fact_changed:
        reply.remembered_user = RememberedUser(
            name=name if name_changed else None,
            fact=fact if fact_changed else None,
            is_for_sender=not tool_input.get("handle") or tool_input.get("handle") == context.sender_handle,
        )


async def run_agent(
    agent_input: AgentInput,
    context: AgentContext,
    claude: Optional[ClaudeService] = None,
    resy: Optional[ResyService] = None,
) -> AgentReply:
    """
    Produces the reply for one inbound message.

    Raises:
        Whatever the model client raises; there is no safe reply without it
    """
    chat_id = agent_input.chat_id

    command = _special_command(agent_input.text)
    if command:
        logger.info(f"Handling command /{command}")
        return await _run_special_command(command, chat_id, context)

    claude = claude or get_claude_service()
    resy = resy or get_resy_service()
    auth_token = context.credentials.resy_auth_token if context.credentials else None

    history = await conversation_service.get_conversation(chat_id)
    user_content, history_text = _build_user_content(agent_input)
    if history_text:
        await conversation_service.add_message(chat_id, "user", history_text, handle=context.sender_handle)

    system = build_system_prompt(context)
    tools = build_tool_set(has_credentials=auth_token is not None, is_group_chat=context.is_group_chat)
    messages: List[Dict[str, Any]] = format_history(history, context.is_group_chat)
    messages.append({"role": "user", "content": user_content})

    response = await claude.create_message(messages=messages, system=system, tools=tools)

    assistant_turns: List[Any] = []
    booking_succeeded = False
    rounds = 0

    while response.stop_reason == "tool_use" and rounds < settings.MAX_TOOL_LOOPS:
        # A turn with only fire-and-forget tools has nothing to reason over
        if not _has_data_tool(response):
            break

        logger.info(f"🔧 Tool round {rounds + 1}")
        tool_results, booked = await _execute_data_tools(response, resy, auth_token)
        booking_succeeded = booking_succeeded or booked

        assistant_turns.append(response.content)
        messages.append({"role": "assistant", "content": response.content})
        messages.append({"role": "user", "content": tool_results})

        response = await claude.create_message(messages=messages, system=system, tools=tools)
        rounds += 1

    if rounds >= settings.MAX_TOOL_LOOPS and response.stop_reason == "tool_use":
        logger.warning(f"⚠️ Tool loop stopped at the {settings.MAX_TOOL_LOOPS}-round bound")

    all_blocks = [block for turn in assistant_turns for block in turn] + list(response.content)

    reply = AgentReply(tool_rounds=rounds)
    await _apply_fire_and_forget(all_blocks, context, reply)

    if booking_succeeded and reply.effect is None:
        reply.effect = CELEBRATION_EFFECT
        logger.info("🎉 Attaching celebration effect for successful booking")

    # Only the final turn's text is the reply
    final_text = [block.text for block in response.content if getattr(block, "type", None) == "text"]
    reply.text = "\n".join(final_text) if final_text else None

    await _record_assistant_turn(chat_id, reply, all_blocks)
    return reply


async def _record_assistant_turn(chat_id: str, reply: AgentReply, blocks) -> None:
    summaries = [summary for summary in (_summarize(block) for block in _tool_uses(blocks)) if summary]

    if reply.text:
        text = flatten_for_history(reply.text)
        content = f"{' '.join(summaries)} {text}" if summaries else text
    elif summaries:
        content = " ".join(summaries)
    elif reply.effect:
        content = f"[sent {reply.effect.name} effect]"
    elif reply.reaction:
        content = f"[reacted with {reply.reaction.display}]"
    else:
        return

    await conversation_service.add_message(chat_id, "assistant", content)
