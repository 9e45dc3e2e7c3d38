"""Conversation preparation: persist the incoming turn and return the history
the researcher should see."""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

from loguru import logger

from morphic.errors import MessageNotFoundError
from morphic.models.parts import UIMessage, generate_id
from morphic.services import database as db

DEFAULT_CHAT_TITLE = "Untitled"

SUBMIT_MESSAGE = "submit-message"
REGENERATE_MESSAGE = "regenerate-message"


@dataclass
class StreamContext:
    chat_id: str
    user_id: str
    trigger: str = SUBMIT_MESSAGE
    message_id: str | None = None
    # Chat as returned by ``database.load_chat``, when the caller already has it.
    initial_chat: dict[str, Any] | None = None
    is_new_chat: bool = False
    pending_initial_save: "asyncio.Task[dict[str, Any]] | None" = None
    pending_initial_user_message: UIMessage | None = None


async def _save_first_message(chat_id: str, message: UIMessage, user_id: str) -> dict[str, Any]:
    t0 = time.monotonic()
    try:
        result = await db.create_chat_with_first_message(chat_id, DEFAULT_CHAT_TITLE, user_id, message)
    except Exception:
        logger.exception(f"Error creating chat {chat_id} with first message")
        raise
    logger.debug(f"createChatWithFirstMessage completed in {int((time.monotonic() - t0) * 1000)}ms")
    return result


async def prepare_messages(context: StreamContext, message: UIMessage | None) -> list[UIMessage]:
    """Persist the incoming turn and return the conversation to research over.

    For a new chat the chat and first message are saved in the background;
    the task is left on ``context.pending_initial_save`` for the caller to
    await before writing the assistant reply.
    """
    logger.debug(f"prepare_messages: trigger={context.trigger}, is_new_chat={context.is_new_chat}")

    if context.trigger == REGENERATE_MESSAGE and context.message_id:
        return await _prepare_regeneration(context, message)

    if message is None:
        raise ValueError("No message provided")

    if not message.id:
        message.id = generate_id()

    if context.is_new_chat:
        context.pending_initial_save = asyncio.create_task(
            _save_first_message(context.chat_id, message, context.user_id)
        )
        context.pending_initial_user_message = message
        return [message]

    if context.initial_chat is None:
        await db.create_chat(context.chat_id, DEFAULT_CHAT_TITLE, context.user_id)

    await db.upsert_message(context.chat_id, message, context.user_id)

    if context.initial_chat is not None and context.initial_chat.get("messages") is not None:
        return [*context.initial_chat["messages"], message]

    updated_chat = await db.load_chat(context.chat_id, context.user_id)
    if updated_chat and updated_chat.get("messages") is not None:
        return updated_chat["messages"]
    return [message]


def _last_index(messages: list[UIMessage], role: str) -> int:
    for index in range(len(messages) - 1, -1, -1):
        if messages[index].role == role:
            return index
    return -1


async def _prepare_regeneration(context: StreamContext, message: UIMessage | None) -> list[UIMessage]:
    current_chat = context.initial_chat
    if current_chat is None:
        current_chat = await db.load_chat(context.chat_id, context.user_id)
    messages: list[UIMessage] = (current_chat or {}).get("messages") or []
    if not messages:
        raise MessageNotFoundError("No messages found")

    message_index = next((i for i, m in enumerate(messages) if m.id == context.message_id), -1)

    if message_index == -1:
        last_assistant_index = _last_index(messages, "assistant")
        last_user_index = _last_index(messages, "user")
        if last_assistant_index < 0 and last_user_index < 0:
            raise MessageNotFoundError(
                f"Message {context.message_id} not found and no fallback available"
            )
        message_index = max(last_assistant_index, last_user_index)
        logger.warning(
            f"Message {context.message_id} not found; regenerating from position {message_index}"
        )

    target = messages[message_index]
    if target.role == "assistant":
        await db.delete_messages_from_index(context.chat_id, target.id, context.user_id)
        return messages[:message_index]

    # User message edit
    if message is not None and message.id == context.message_id:
        await db.upsert_message(context.chat_id, message, context.user_id)

    later = messages[message_index + 1 :]
    if later:
        await db.delete_messages_from_index(context.chat_id, later[0].id, context.user_id)

    updated_chat = await db.load_chat(context.chat_id, context.user_id)
    if updated_chat and updated_chat.get("messages") is not None:
        return updated_chat["messages"]
    return messages[: message_index + 1]
