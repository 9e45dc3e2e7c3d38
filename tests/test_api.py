"""Tests for API routes."""
from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from morphic.errors import AccessDeniedError, MessageNotFoundError
from morphic.models.parts import TextPart, UIMessage
from morphic.services import streaming

USER = {"X-User-Id": "user-1"}

CHAT_ROW = {
    "id": "chat-1",
    "title": "Untitled",
    "user_id": "user-1",
    "visibility": "private",
    "created_at": datetime(2026, 1, 1, 12, 0, 0),
}


@pytest.fixture
def client():
    from morphic.main import app

    return TestClient(app)


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "morphic"


# --- Chat stream ---


def _chat_body(**overrides):
    body = {
        "chatId": "chat-1",
        "message": {"id": "u1", "role": "user", "parts": [{"type": "text", "text": "hi"}]},
        "trigger": "submit-message",
        "isNewChat": True,
    }
    body.update(overrides)
    return body


def test_chat_requires_user(client):
    response = client.post("/api/chat", json=_chat_body())
    assert response.status_code == 401


@pytest.mark.parametrize(
    "error, status",
    [
        (MessageNotFoundError("Message m1 not found"), 404),
        (AccessDeniedError("Chat chat-1 belongs to another user"), 403),
        (ValueError("No message provided"), 400),
    ],
)
def test_chat_maps_preparation_errors(client, error, status):
    with patch("morphic.api.routes.chat.start_chat", AsyncMock(side_effect=error)):
        response = client.post("/api/chat", json=_chat_body(), headers=USER)

    assert response.status_code == status
    assert response.json()["detail"] == str(error)


def test_chat_streams_events(client):
    async def fake_stream(context, messages, **kwargs):
        yield streaming.start("a1")
        yield streaming.text_delta("Hello")
        yield streaming.finish("stop")

    with (
        patch("morphic.api.routes.chat.start_chat", AsyncMock(return_value=(object(), []))) as start,
        patch("morphic.api.routes.chat.stream_chat", fake_stream),
    ):
        response = client.post("/api/chat", json=_chat_body(searchMode="quick"), headers=USER)

    assert response.status_code == 200
    assert "event: text-delta" in response.text
    assert '"delta": "Hello"' in response.text
    assert "event: finish" in response.text
    request, user_id = start.await_args.args
    assert request.search_mode == "quick"
    assert request.is_new_chat is True
    assert user_id == "user-1"


def test_chat_stream_failure_becomes_error_event(client):
    async def broken_stream(context, messages, **kwargs):
        yield streaming.start("a1")
        raise RuntimeError("boom")

    with (
        patch("morphic.api.routes.chat.start_chat", AsyncMock(return_value=(object(), []))),
        patch("morphic.api.routes.chat.stream_chat", broken_stream),
    ):
        response = client.post("/api/chat", json=_chat_body(), headers=USER)

    assert "event: error" in response.text
    assert "Chat stream failed unexpectedly." in response.text


def test_chat_rejects_unknown_trigger(client):
    response = client.post("/api/chat", json=_chat_body(trigger="resume"), headers=USER)
    assert response.status_code == 422


# --- Chats ---


def test_list_chats(client):
    with patch("morphic.api.routes.chats.db") as mock_db:
        mock_db.get_chats = AsyncMock(return_value=[CHAT_ROW])
        response = client.get("/api/chats?limit=5", headers=USER)

    assert response.status_code == 200
    assert response.json()[0]["userId"] == "user-1"
    mock_db.get_chats.assert_awaited_once_with("user-1", limit=5, offset=0)


def test_get_chat_with_messages(client):
    message = UIMessage(id="u1", role="user", parts=[TextPart(text="hi")])
    with patch("morphic.api.routes.chats.db") as mock_db:
        mock_db.load_chat = AsyncMock(return_value={**CHAT_ROW, "messages": [message]})
        response = client.get("/api/chats/chat-1")

    assert response.status_code == 200
    data = response.json()
    assert data["chat"]["id"] == "chat-1"
    assert data["messages"][0]["parts"] == [{"type": "text", "text": "hi"}]
    mock_db.load_chat.assert_awaited_once_with("chat-1", None)


def test_get_missing_chat(client):
    with patch("morphic.api.routes.chats.db") as mock_db:
        mock_db.load_chat = AsyncMock(return_value=None)
        response = client.get("/api/chats/nope", headers=USER)

    assert response.status_code == 404


def test_update_visibility(client):
    with patch("morphic.api.routes.chats.db") as mock_db:
        mock_db.update_chat_visibility = AsyncMock(return_value={**CHAT_ROW, "visibility": "public"})
        response = client.patch("/api/chats/chat-1/visibility", json={"visibility": "public"}, headers=USER)

    assert response.status_code == 200
    assert response.json()["visibility"] == "public"


def test_update_visibility_rejects_unknown_value(client):
    response = client.patch("/api/chats/chat-1/visibility", json={"visibility": "team"}, headers=USER)
    assert response.status_code == 422


def test_update_title(client):
    with patch("morphic.api.routes.chats.db") as mock_db:
        mock_db.update_chat_title = AsyncMock(return_value={**CHAT_ROW, "title": "Renamed"})
        response = client.patch("/api/chats/chat-1/title", json={"title": "Renamed"}, headers=USER)

    assert response.json()["title"] == "Renamed"
    mock_db.update_chat_title.assert_awaited_once_with("chat-1", "Renamed", "user-1")


def test_delete_chat(client):
    with patch("morphic.api.routes.chats.db") as mock_db:
        mock_db.delete_chat = AsyncMock(side_effect=[True, False])
        first = client.delete("/api/chats/chat-1", headers=USER)
        second = client.delete("/api/chats/chat-1", headers=USER)

    assert first.status_code == 204
    assert second.status_code == 404


# --- Feedback ---


def test_submit_feedback(client):
    with patch("morphic.api.routes.feedback.db") as mock_db:
        mock_db.create_feedback = AsyncMock(
            return_value={"id": "f1", "created_at": datetime(2026, 1, 1)}
        )
        response = client.post(
            "/api/feedback",
            json={"sentiment": "positive", "message": "Great", "pageUrl": "https://morphic.sh/"},
            headers={"User-Agent": "pytest-agent"},
        )

    assert response.status_code == 201
    assert response.json()["id"] == "f1"
    mock_db.create_feedback.assert_awaited_once_with(
        sentiment="positive",
        message="Great",
        page_url="https://morphic.sh/",
        user_id=None,
        user_agent="pytest-agent",
    )


def test_feedback_rejects_empty_message(client):
    response = client.post(
        "/api/feedback",
        json={"sentiment": "negative", "message": "", "pageUrl": "https://morphic.sh/"},
    )
    assert response.status_code == 422
