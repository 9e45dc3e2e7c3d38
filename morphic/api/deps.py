from __future__ import annotations

from fastapi import Header, HTTPException


async def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Acting user id, supplied by the identity layer in front of the API."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


async def get_optional_user_id(x_user_id: str | None = Header(default=None)) -> str | None:
    return x_user_id or None
