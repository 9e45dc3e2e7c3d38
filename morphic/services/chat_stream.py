"""Request pipeline: prepare the conversation, run the researcher, persist the reply."""
from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Callable

from loguru import logger

from morphic.agents.researcher import create_researcher
from morphic.errors import AccessDeniedError
from morphic.llm_client import get_model, get_runtime
from morphic.models.events import SSEEvent
from morphic.models.parts import UIMessage, generate_id
from morphic.models.schemas import ChatRequest
from morphic.services import database as db
from morphic.services import logger as log_service
from morphic.services import streaming
from morphic.services.conversation import StreamContext, prepare_messages


async def save_assistant_message(context: StreamContext, message: UIMessage) -> None:
    """Write the assistant reply once the background initial save has landed."""
    if context.pending_initial_save is not None:
        await context.pending_initial_save
    if message.parts:
        await db.upsert_message(context.chat_id, message, context.user_id)


async def start_chat(request: ChatRequest, user_id: str) -> tuple[StreamContext, list[UIMessage]]:
    """Load the chat when it exists and run message preparation.

    Raises before any streaming starts, so the caller can map errors to HTTP
    statuses.
    """
    initial_chat = None
    if not request.is_new_chat:
        initial_chat = await db.load_chat(request.chat_id, user_id)
        if initial_chat is not None and initial_chat["user_id"] != user_id:
            raise AccessDeniedError(f"Chat {request.chat_id} belongs to another user")

    context = StreamContext(
        chat_id=request.chat_id,
        user_id=user_id,
        trigger=request.trigger,
        message_id=request.message_id,
        initial_chat=initial_chat,
        is_new_chat=request.is_new_chat,
    )
    message = UIMessage.from_dict(request.message) if request.message else None
    messages = await prepare_messages(context, message)
    return context, messages


async def stream_chat(
    context: StreamContext,
    messages: list[UIMessage],
    *,
    model: str | None = None,
    search_mode: str | None = None,
    abort_event: asyncio.Event | None = None,
    runtime_factory: Callable[[], Any] = get_runtime,
) -> AsyncIterator[SSEEvent]:
    """Stream researcher events, then persist the assembled assistant message.

    If the consumer goes away mid-stream the researcher is aborted and the
    partial reply is still saved.
    """
    abort_event = abort_event or asyncio.Event()
    writer = streaming.StreamWriter()
    assembler = streaming.MessageAssembler(generate_id())
    researcher = create_researcher(
        get_model(model),
        search_mode,
        writer=writer,
        abort_event=abort_event,
        runtime_factory=runtime_factory,
    )

    async def run_researcher() -> None:
        try:
            async for event in researcher.stream(messages, message_id=assembler.message.id):
                assembler.apply(event)
        except Exception as e:
            logger.exception(f"Researcher failed for chat {context.chat_id}")
            await writer.write(streaming.error(str(e) or "Research stream failed unexpectedly."))
        finally:
            writer.close()

    task = asyncio.create_task(run_researcher())
    completed = False
    try:
        async for event in writer.events():
            yield event
        completed = True
    finally:
        if not completed:
            abort_event.set()
            await asyncio.gather(task, return_exceptions=True)
            try:
                await save_assistant_message(context, assembler.message)
            except Exception:
                logger.exception(f"Failed to save partial reply for chat {context.chat_id}")

    await task
    try:
        await save_assistant_message(context, assembler.message)
    except Exception as e:
        log_service.log_event(
            event_type="db_error",
            message="Failed to persist assistant message",
            error=str(e),
            chat_id=context.chat_id,
        )
        yield streaming.error("Failed to save the response.")
