"""PostgreSQL storage for chats, messages, parts and feedback using asyncpg.

Every operation runs inside a transaction that first sets
``app.current_user_id`` so the row-level security policies in ``schema.sql``
apply to the acting user.
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import asyncpg
from loguru import logger

from morphic.config import settings
from morphic.errors import AccessDeniedError
from morphic.models.parts import UIMessage
from morphic.services import logger as log_service
from morphic.utils.message_mapping import (
    PART_COLUMNS,
    build_message_from_db,
    map_message_to_row,
    map_parts_to_rows,
)

SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"

JSON_PART_COLUMNS = frozenset(
    column
    for column in PART_COLUMNS
    if column.endswith(("_input", "_output")) or column in ("data_content", "provider_metadata")
)

CHAT_COLUMNS = "id, created_at, title, user_id, visibility"

# Connection pool
_pool: asyncpg.Pool | None = None


def _db_available() -> bool:
    """Check if database is configured and available."""
    return bool(settings.database_url)


async def _get_pool() -> asyncpg.Pool:
    """Get or create the database connection pool."""
    global _pool
    if not _db_available():
        raise RuntimeError("Database not configured. Set DATABASE_URL in .env")
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
        )
    return _pool


async def close_pool() -> None:
    """Close the database connection pool."""
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


@asynccontextmanager
async def _user_transaction(user_id: str | None) -> AsyncIterator[asyncpg.Connection]:
    pool = await _get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            await conn.execute("SELECT set_config('app.current_user_id', $1, true)", user_id or "")
            yield conn


async def init_schema() -> None:
    """Create tables, indexes and policies if they do not exist."""
    pool = await _get_pool()
    async with pool.acquire() as conn:
        await conn.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
    log_service.log_db_operation("init_schema", "*", "success")


def _quote(column: str) -> str:
    return '"' + column.replace('"', '""') + '"'


def _coerce_json_object(value: Any) -> dict[str, Any]:
    """Normalize JSON-string fields into dictionaries."""
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _decode_part_row(record: asyncpg.Record) -> dict[str, Any]:
    row = dict(record)
    for column in JSON_PART_COLUMNS:
        value = row.get(column)
        if isinstance(value, str):
            row[column] = json.loads(value)
    return row


def _prepare_part_row(row: dict[str, Any]) -> dict[str, Any]:
    """Keep known columns only and serialize JSON values."""
    unknown = [column for column in row if column not in PART_COLUMNS]
    if unknown:
        logger.warning(f"Dropping part columns with no storage: {', '.join(sorted(unknown))}")

    prepared: dict[str, Any] = {}
    for column, value in row.items():
        if column not in PART_COLUMNS:
            continue
        if column in JSON_PART_COLUMNS and value is not None:
            value = json.dumps(value, default=str)
        prepared[column] = value
    return prepared


async def _insert_parts(conn: asyncpg.Connection, message: UIMessage) -> int:
    rows = map_parts_to_rows(message.parts, message.id)
    for row in rows:
        prepared = _prepare_part_row(row)
        columns = list(prepared)
        placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
        await conn.execute(
            f"INSERT INTO parts ({', '.join(_quote(c) for c in columns)}) VALUES ({placeholders})",
            *prepared.values(),
        )
    return len(rows)


async def _write_message(conn: asyncpg.Connection, chat_id: str, message: UIMessage) -> None:
    """Upsert the message row and replace its parts."""
    row = map_message_to_row(message, chat_id)
    # createdAt is derived from the row on load, never stored in metadata.
    metadata = {k: v for k, v in (row["metadata"] or {}).items() if k != "createdAt"}

    await conn.execute(
        """
        INSERT INTO messages (id, chat_id, role, metadata, created_at)
        VALUES ($1, $2, $3, $4, clock_timestamp())
        ON CONFLICT (id) DO UPDATE
        SET metadata = COALESCE(messages.metadata, '{}'::jsonb) || COALESCE(EXCLUDED.metadata, '{}'::jsonb),
            updated_at = now()
        """,
        row["id"],
        row["chat_id"],
        row["role"],
        json.dumps(metadata) if metadata else None,
    )
    await conn.execute("DELETE FROM parts WHERE message_id = $1", message.id)
    await _insert_parts(conn, message)


async def _require_owned_chat(conn: asyncpg.Connection, chat_id: str, user_id: str) -> None:
    owner = await conn.fetchval("SELECT user_id FROM chats WHERE id = $1", chat_id)
    if owner is None or owner != user_id:
        raise AccessDeniedError(f"Chat {chat_id} is not writable by this user")


# --- Chats ---

async def create_chat(
    chat_id: str, title: str, user_id: str, visibility: str = "private"
) -> dict[str, Any]:
    """Create a new chat."""
    async with _user_transaction(user_id) as conn:
        result = await conn.fetchrow(
            f"""
            INSERT INTO chats (id, title, user_id, visibility)
            VALUES ($1, $2, $3, $4)
            RETURNING {CHAT_COLUMNS}
            """,
            chat_id,
            title,
            user_id,
            visibility,
        )
    log_service.log_db_operation("create_chat", "chats", "success", details=chat_id)
    return dict(result)


async def create_chat_with_first_message(
    chat_id: str, title: str, user_id: str, message: UIMessage
) -> dict[str, Any]:
    """Create a chat and its first message in one transaction."""
    try:
        async with _user_transaction(user_id) as conn:
            result = await conn.fetchrow(
                f"""
                INSERT INTO chats (id, title, user_id)
                VALUES ($1, $2, $3)
                RETURNING {CHAT_COLUMNS}
                """,
                chat_id,
                title,
                user_id,
            )
            await _write_message(conn, chat_id, message)
    except Exception as e:
        log_service.log_db_operation("create_chat_with_first_message", "chats", "error", error=str(e))
        raise
    log_service.log_db_operation("create_chat_with_first_message", "chats", "success", details=chat_id)
    return dict(result)


async def load_chat(chat_id: str, user_id: str | None) -> dict[str, Any] | None:
    """Load a chat with its messages, or None when absent or not readable."""
    async with _user_transaction(user_id) as conn:
        chat = await conn.fetchrow(f"SELECT {CHAT_COLUMNS} FROM chats WHERE id = $1", chat_id)
        if chat is None:
            return None

        message_rows = await conn.fetch(
            """
            SELECT id, chat_id, role, created_at, updated_at, metadata
            FROM messages
            WHERE chat_id = $1
            ORDER BY created_at, id
            """,
            chat_id,
        )
        part_records = await conn.fetch(
            """
            SELECT p.*
            FROM parts p
            INNER JOIN messages m ON m.id = p.message_id
            WHERE m.chat_id = $1
            ORDER BY p.message_id, p."order"
            """,
            chat_id,
        )

    parts_by_message: dict[str, list[dict[str, Any]]] = {}
    for record in part_records:
        row = _decode_part_row(record)
        parts_by_message.setdefault(row["message_id"], []).append(row)

    messages: list[UIMessage] = []
    for record in message_rows:
        row = dict(record)
        row["metadata"] = _coerce_json_object(row.get("metadata"))
        messages.append(build_message_from_db(row, parts_by_message.get(row["id"], [])))

    result = dict(chat)
    result["messages"] = messages
    return result


async def get_chats(user_id: str, limit: int = 20, offset: int = 0) -> list[dict[str, Any]]:
    """List the user's chats, newest first."""
    async with _user_transaction(user_id) as conn:
        results = await conn.fetch(
            f"""
            SELECT {CHAT_COLUMNS}
            FROM chats
            WHERE user_id = $1
            ORDER BY created_at DESC
            LIMIT $2 OFFSET $3
            """,
            user_id,
            limit,
            offset,
        )
    return [dict(r) for r in results]


async def update_chat_title(chat_id: str, title: str, user_id: str) -> dict[str, Any] | None:
    async with _user_transaction(user_id) as conn:
        result = await conn.fetchrow(
            f"UPDATE chats SET title = $1 WHERE id = $2 RETURNING {CHAT_COLUMNS}",
            title,
            chat_id,
        )
    return dict(result) if result else None


async def update_chat_visibility(
    chat_id: str, visibility: str, user_id: str
) -> dict[str, Any] | None:
    async with _user_transaction(user_id) as conn:
        result = await conn.fetchrow(
            f"UPDATE chats SET visibility = $1 WHERE id = $2 RETURNING {CHAT_COLUMNS}",
            visibility,
            chat_id,
        )
    log_service.log_db_operation(
        "update_chat_visibility", "chats", "success" if result else "not_found", details=chat_id
    )
    return dict(result) if result else None


async def delete_chat(chat_id: str, user_id: str) -> bool:
    """Delete a chat; messages and parts cascade."""
    async with _user_transaction(user_id) as conn:
        status = await conn.execute("DELETE FROM chats WHERE id = $1", chat_id)
    deleted = status.endswith(" 1")
    log_service.log_db_operation("delete_chat", "chats", "success" if deleted else "not_found", details=chat_id)
    return deleted


# --- Messages ---

async def upsert_message(chat_id: str, message: UIMessage, user_id: str) -> None:
    """Insert or update a message and replace its parts."""
    try:
        async with _user_transaction(user_id) as conn:
            await _require_owned_chat(conn, chat_id, user_id)
            await _write_message(conn, chat_id, message)
    except Exception as e:
        log_service.log_db_operation("upsert_message", "messages", "error", details=message.id, error=str(e))
        raise
    log_service.log_db_operation("upsert_message", "messages", "success", details=message.id)


async def delete_messages_from_index(chat_id: str, message_id: str, user_id: str) -> int:
    """Delete a message and every message created after it in the chat."""
    async with _user_transaction(user_id) as conn:
        await _require_owned_chat(conn, chat_id, user_id)
        created_at = await conn.fetchval(
            "SELECT created_at FROM messages WHERE id = $1 AND chat_id = $2",
            message_id,
            chat_id,
        )
        if created_at is None:
            return 0
        status = await conn.execute(
            "DELETE FROM messages WHERE chat_id = $1 AND created_at >= $2",
            chat_id,
            created_at,
        )
    deleted = int(status.rsplit(" ", 1)[-1])
    log_service.log_db_operation(
        "delete_messages_from_index", "messages", "success", details=f"{message_id}: {deleted} deleted"
    )
    return deleted


# --- Feedback ---

async def create_feedback(
    sentiment: str,
    message: str,
    page_url: str,
    user_id: str | None = None,
    user_agent: str | None = None,
) -> dict[str, Any]:
    async with _user_transaction(user_id) as conn:
        result = await conn.fetchrow(
            """
            INSERT INTO feedback (user_id, sentiment, message, page_url, user_agent)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING id, user_id, sentiment, message, page_url, user_agent, created_at
            """,
            user_id,
            sentiment,
            message,
            page_url,
            user_agent,
        )
    log_service.log_db_operation("create_feedback", "feedback", "success")
    return dict(result)
