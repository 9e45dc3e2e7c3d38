from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from morphic.api.deps import get_optional_user_id, get_user_id
from morphic.models.schemas import (
    ChatDetailResponse,
    ChatResponse,
    TitleUpdate,
    VisibilityUpdate,
)
from morphic.services import database as db

router = APIRouter(prefix="/api/chats", tags=["chats"])


@router.get("", response_model=list[ChatResponse])
async def list_chats(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(get_user_id),
):
    chats = await db.get_chats(user_id, limit=limit, offset=offset)
    return [ChatResponse(**c) for c in chats]


@router.get("/{chat_id}", response_model=ChatDetailResponse)
async def get_chat(chat_id: str, user_id: str | None = Depends(get_optional_user_id)):
    """Get a chat with its messages. Public chats are readable by anyone."""
    chat = await db.load_chat(chat_id, user_id)
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")
    messages = chat.pop("messages")
    return ChatDetailResponse(
        chat=ChatResponse(**chat),
        messages=[m.to_dict() for m in messages],
    )


@router.patch("/{chat_id}/visibility", response_model=ChatResponse)
async def update_visibility(
    chat_id: str, update: VisibilityUpdate, user_id: str = Depends(get_user_id)
):
    chat = await db.update_chat_visibility(chat_id, update.visibility, user_id)
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")
    return ChatResponse(**chat)


@router.patch("/{chat_id}/title", response_model=ChatResponse)
async def update_title(chat_id: str, update: TitleUpdate, user_id: str = Depends(get_user_id)):
    chat = await db.update_chat_title(chat_id, update.title, user_id)
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")
    return ChatResponse(**chat)


@router.delete("/{chat_id}", status_code=204)
async def delete_chat(chat_id: str, user_id: str = Depends(get_user_id)):
    deleted = await db.delete_chat(chat_id, user_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Chat not found")
