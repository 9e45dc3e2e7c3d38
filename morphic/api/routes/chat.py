from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from morphic.api.deps import get_user_id
from morphic.errors import AccessDeniedError, MessageNotFoundError
from morphic.models.schemas import ChatRequest
from morphic.services import logger as log_service
from morphic.services import streaming
from morphic.services.chat_stream import start_chat, stream_chat

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.post("")
async def chat(request: ChatRequest, http_request: Request, user_id: str = Depends(get_user_id)):
    """Run one researcher turn and stream its events as SSE."""
    try:
        context, messages = await start_chat(request, user_id)
    except MessageNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AccessDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    log_service.log_event(
        event_type="chat_started",
        message="Chat stream started",
        chat_id=request.chat_id,
        trigger=request.trigger,
        search_mode=request.search_mode,
    )

    async def event_generator():
        try:
            async for event in stream_chat(
                context,
                messages,
                model=request.model,
                search_mode=request.search_mode,
            ):
                yield event.to_sse()
        except Exception as e:
            log_service.log_event(
                event_type="stream_error",
                message="Unhandled error in chat stream",
                error=str(e),
                chat_id=request.chat_id,
            )
            yield streaming.error("Chat stream failed unexpectedly.").to_sse()

    return EventSourceResponse(event_generator())
