from __future__ import annotations

from fastapi import APIRouter, Depends, Header

from morphic.api.deps import get_optional_user_id
from morphic.models.schemas import FeedbackRequest, FeedbackResponse
from morphic.services import database as db

router = APIRouter(prefix="/api/feedback", tags=["feedback"])


@router.post("", response_model=FeedbackResponse, status_code=201)
async def submit_feedback(
    feedback: FeedbackRequest,
    user_id: str | None = Depends(get_optional_user_id),
    user_agent: str | None = Header(default=None),
):
    row = await db.create_feedback(
        sentiment=feedback.sentiment,
        message=feedback.message,
        page_url=feedback.page_url,
        user_id=user_id,
        user_agent=feedback.user_agent or user_agent,
    )
    return FeedbackResponse(id=row["id"], created_at=row["created_at"])
