from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Requests ---


class ChatRequest(_CamelModel):
    chat_id: str
    # UI message in its JSON wire shape; absent for pure regeneration.
    message: dict[str, Any] | None = None
    trigger: Literal["submit-message", "regenerate-message"] = "submit-message"
    message_id: str | None = None
    search_mode: str | None = None
    model: str | None = None
    is_new_chat: bool = False


class VisibilityUpdate(BaseModel):
    visibility: Literal["public", "private"]


class TitleUpdate(BaseModel):
    title: str = Field(min_length=1, max_length=256)


class FeedbackRequest(_CamelModel):
    sentiment: Literal["positive", "neutral", "negative"]
    message: str = Field(min_length=1)
    page_url: str
    user_agent: str | None = None


# --- Responses ---


class ChatResponse(_CamelModel):
    id: str
    title: str
    user_id: str
    visibility: str
    created_at: datetime


class ChatDetailResponse(_CamelModel):
    chat: ChatResponse
    messages: list[dict[str, Any]]


class FeedbackResponse(_CamelModel):
    id: str
    created_at: datetime
