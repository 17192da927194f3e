"""
app/flow/dispatcher.py

Purpose: Central message dispatcher

- Receives normalized messages from the webhook
- Chat bookkeeping: counter, contact card, read receipt, typing, chat info
- Routes on auth state: inline token, pending challenge, pending OTP,
  no credentials (start OTP), sign out
- Group-chat pre-filter, then the agent loop
- Delivers the reply (reaction, rename, multi-part text with effect)

Failures of the model call propagate: the webhook has already acknowledged
the event, so the message is logged as failed.
"""

import asyncio
from typing import Any, Dict, Optional

from app.agent.classifier import GroupAction, classify_group_message
from app.agent.context import AgentContext, AgentInput
from app.agent.loop import run_agent
from app.core.config import settings
from app.core.exceptions import MessagingGatewayError
from app.core.logging import get_logger, LogContext
from app.flow.handlers.challenge import handle_challenge_input
from app.flow.handlers.commands import handle_sign_out, is_sign_out_command
from app.flow.handlers.inline_token import handle_inline_token
from app.flow.handlers.otp import handle_otp_input, start_otp_flow
from app.models.auth import AuthState
from app.schemas.webhook import ChatInfo, InboundMessage, ReplyTo
from app.services import conversation_service, credential_service, session_service, user_service
from app.services.claude_service import ClaudeService, get_claude_service
from app.services.linq_service import LinqService, get_linq_service
from app.services.resy_service import ResyService, get_resy_service
from app.services.user_context_service import load_user_context
from utils.constants import RENAMED_CHAT_MESSAGE
from utils.message_utils import redact_phone
from utils.validation_utils import looks_like_inline_token, sanitize_input

logger = get_logger(__name__)


async def _best_effort(coro, what: str) -> None:
    """Read receipts, typing and contact cards must not block a reply."""
    try:
        await coro
    except MessagingGatewayError as e:
        logger.warning(f"⚠️ {what} failed: {e.message}")


async def _prepare_chat(message: InboundMessage, linq: LinqService) -> ChatInfo:
    count = await conversation_service.increment_chat_count(message.chat_id)
    interval = settings.CONTACT_CARD_INTERVAL

    tasks = [
        _best_effort(linq.mark_as_read(message.chat_id), "Mark as read"),
        _best_effort(linq.start_typing(message.chat_id), "Start typing"),
    ]
    if count == 1 or count % interval == 0:
        logger.info(f"📇 Sharing contact card (message #{count})")
        tasks.append(_best_effort(linq.share_contact_card(message.chat_id), "Share contact card"))
    await asyncio.gather(*tasks)

    try:
        return await linq.get_chat(message.chat_id)
    except MessagingGatewayError as e:
        logger.warning(f"⚠️ Chat info unavailable, treating as a direct chat: {e.message}")
        return ChatInfo(id=message.chat_id)


async def dispatch_message(
    message: InboundMessage,
    linq: Optional[LinqService] = None,
    resy: Optional[ResyService] = None,
    claude: Optional[ClaudeService] = None,
) -> Dict[str, Any]:
    """
    Main dispatcher for one inbound message.

    Returns:
        {"status": ...} describing which path handled the message
    """
    linq = linq or get_linq_service()
    resy = resy or get_resy_service()
    claude = claude or get_claude_service()

    phone = message.sender
    chat_id = message.chat_id

    with LogContext(user=redact_phone(phone), chat_id=chat_id):
        logger.info(f"📨 Dispatching message from {redact_phone(phone)}")

        chat_info = await _prepare_chat(message, linq)
        text = sanitize_input(message.text)

        # Pasted token wins over every other state
        if looks_like_inline_token(text):
            return await handle_inline_token(phone, chat_id, text, linq)

        session = await session_service.get_auth_session(phone)

        if session.state == AuthState.CHALLENGE_PENDING:
            return await handle_challenge_input(phone, chat_id, text, session.pending_challenge, linq, resy)

        if session.state == AuthState.OTP_SENT:
            return await handle_otp_input(phone, chat_id, text, linq, resy)

        user_context = await load_user_context(phone)
        if user_context is None:
            if await user_service.get_user(phone) is None:
                await user_service.create_user(phone)
            return await start_otp_flow(phone, chat_id, linq, resy)

        if is_sign_out_command(text):
            return await handle_sign_out(phone, chat_id, linq)

        return await _respond(message, chat_info, user_context, linq, claude, resy)


async def _respond(message: InboundMessage, chat_info: ChatInfo, user_context, linq, claude, resy) -> Dict[str, Any]:
    phone = message.sender
    chat_id = message.chat_id
    is_group = chat_info.is_group_chat

    if is_group and not message.has_media:
        history = await conversation_service.get_conversation(chat_id)
        decision = await classify_group_message(message.text, phone, history, claude=claude)

        if decision.action == GroupAction.IGNORE:
            logger.info("Ignoring group chat message")
            return {"status": "ignored"}

        if decision.action == GroupAction.REACT:
            await linq.send_reaction(message.message_id, decision.reaction)
            await conversation_service.add_message(chat_id, "user", message.text, handle=phone)
            await conversation_service.add_message(chat_id, "assistant", f"[reacted with {decision.reaction.display}]")
            return {"status": "reacted"}

    sender_profile = await conversation_service.get_user_profile(phone)
    just_onboarded = await credential_service.consume_just_onboarded(phone)

    context = AgentContext(
        is_group_chat=is_group,
        participant_names=[handle.handle for handle in chat_info.handles],
        chat_name=chat_info.display_name,
        incoming_effect=message.effect,
        sender_handle=phone,
        sender_profile=sender_profile,
        service=message.service,
        credentials=user_context.credentials,
        just_onboarded=just_onboarded,
    )
    agent_input = AgentInput(chat_id=chat_id, text=message.text, images=message.images, audio=message.audio)

    reply = await run_agent(agent_input, context, claude=claude, resy=resy)

    if reply.reaction:
        await linq.send_reaction(message.message_id, reply.reaction)

    if reply.rename_chat and is_group:
        await linq.rename_chat(chat_id, reply.rename_chat)

    final_text = reply.text
    if not final_text and reply.effect:
        final_text = await claude.generate_effect_text(reply.effect.name)
    if not final_text and reply.rename_chat and is_group:
        final_text = RENAMED_CHAT_MESSAGE.format(name=reply.rename_chat)

    sent = 0
    if final_text:
        reply_to = ReplyTo(message_id=message.message_id) if message.reply_to else None
        sent = await linq.send_parts(chat_id, final_text, effect=reply.effect, reply_to=reply_to)

    logger.info(f"✅ Replied with {sent} message(s) after {reply.tool_rounds} tool round(s)")
    return {"status": "responded", "parts": sent}
