import logging

import httpx

from ocrelay.core.exceptions import OpenCodeError, TelegramError
from ocrelay.core.state import BotContext
from ocrelay.core.store import ChatSession

logger = logging.getLogger(__name__)

PLACEHOLDER = "Thinking..."


async def handle_text(ctx: BotContext, chat_id: int, text: str) -> None:
    """普通消息：确保会话存在 -> 发送占位消息 -> 注册到流 -> 异步提交 prompt"""
    if not text:
        return
    if not ctx.guard.is_allowed(chat_id):
        await ctx.api.send_message(chat_id, "Unauthorized. You are not allowed to use this bot.")
        return
    if not ctx.guard.check_rate(chat_id):
        await ctx.api.send_message(chat_id, "Please wait a moment before sending another message...")
        return

    try:
        await ctx.api.send_chat_action(chat_id, "typing")
    except (TelegramError, httpx.HTTPError) as e:
        logger.debug(f"sendChatAction failed for chat {chat_id}: {e}")

    agent = ctx.current_agent(chat_id)
    session = ctx.store.get(chat_id)
    if session is not None and session.session_id:
        ctx.store.increment(chat_id)
    else:
        try:
            created = await ctx.client.create_session(f"Telegram Chat {chat_id}")
        except (OpenCodeError, httpx.HTTPError) as e:
            logger.warning(f"Error creating session for chat {chat_id}: {e}")
            await ctx.api.send_message(chat_id, f"Failed to create session: {e}")
            return
        # /agent、/model 可能已经为这个 chat 存了偏好
        prefs = session or ChatSession(chat_id=chat_id, session_id="")
        session = ChatSession(chat_id=chat_id, session_id=created["id"], title=created.get("title", ""),
                              agent=agent, model_provider=prefs.model_provider, model_id=prefs.model_id,
                              message_count=1)
        ctx.store.set(session)

    placeholder = await ctx.api.send_message(chat_id, PLACEHOLDER)
    message_id = placeholder["message_id"]
    await ctx.stream.register(session.session_id, chat_id, message_id)

    try:
        await ctx.client.prompt_async(session.session_id, text, agent=agent,
                                      provider_id=session.model_provider or None,
                                      model_id=session.model_id or None)
    except (OpenCodeError, httpx.HTTPError) as e:
        logger.warning(f"Error sending prompt to session {session.session_id}: {e}")
        await ctx.stream.unregister(session.session_id)
        await ctx.api.edit_message_text(chat_id, message_id, f"Error: {e}")
