from __future__ import annotations

from datetime import datetime

import pytest

from morphic.errors import MalformedPartError
from morphic.models.parts import (
    DataPart,
    DynamicToolPart,
    FilePart,
    ReasoningPart,
    SourceDocumentPart,
    SourceUrlPart,
    StepPart,
    TextPart,
    ToolCallPart,
    ToolPart,
    ToolResultPart,
    UIMessage,
)
from morphic.utils.message_mapping import (
    build_message_from_db,
    map_message_to_row,
    map_parts_to_rows,
    map_row_to_part,
    map_rows_to_parts,
    normalize_tool_name,
    original_tool_name,
)


def _roundtrip(parts):
    return map_rows_to_parts(map_parts_to_rows(parts, "msg-1"))


def test_text_reasoning_and_file_parts_roundtrip():
    parts = [
        TextPart(text="Hello", provider_metadata={"openai": {"id": "x"}}),
        ReasoningPart(text="thinking"),
        FilePart(media_type="image/png", url="https://example.com/a.png", filename="a.png"),
        SourceUrlPart(source_id="s1", url="https://example.com", title="Example"),
    ]

    assert _roundtrip(parts) == parts


@pytest.mark.parametrize(
    "part",
    [
        SourceDocumentPart(
            source_id="doc-1",
            media_type="application/pdf",
            title="Report",
            filename="report.pdf",
            url="https://example.com/report.pdf",
            snippet="Key findings",
        ),
        ToolPart(
            tool_name="todoWrite",
            tool_call_id="call-1",
            state="output-available",
            input={"todos": [{"id": "1", "content": "Plan", "status": "pending"}]},
            output={"message": "Todo list updated: 0/1 completed"},
        ),
        ToolPart(tool_name="todoRead", tool_call_id="call-2", state="output-available", input={}, output={"todos": []}),
        ToolPart(tool_name="question", tool_call_id="call-3", state="input-available", input={"question": "Which?"}),
        ToolPart(tool_name="fetch", tool_call_id="call-4", state="input-streaming", input={"url": "https://a"}),
        DynamicToolPart(
            tool_name="mcp__github__search",
            tool_call_id="call-5",
            state="output-error",
            input={"q": "x"},
            error_text="rate limited",
        ),
    ],
    ids=["source-document", "todo-write", "todo-read", "question", "input-streaming", "dynamic-error"],
)
def test_remaining_variants_roundtrip(part):
    assert _roundtrip([part]) == [part]


@pytest.mark.parametrize("state", ["input-streaming", "input-available"])
def test_pending_tool_states_do_not_surface_output(state):
    part = ToolPart(
        tool_name="question",
        tool_call_id="call-1",
        state=state,
        input={"question": "Which?"},
        output={"stale": True},
    )

    (row,) = map_parts_to_rows([part], "msg-1")
    (decoded,) = map_rows_to_parts([row])

    assert row["tool_question_input"] == {"question": "Which?"}
    assert decoded.state == state
    assert decoded.output is None
    assert "output" not in decoded.to_dict()


def test_order_is_dense_after_dropping_parts():
    parts = [
        TextPart(text="a"),
        ToolCallPart(tool_call_id=None, tool_name="search", args={"query": "x"}),
        StepPart(type="step-finish"),
        TextPart(text="b"),
    ]

    rows = map_parts_to_rows(parts, "msg-1")

    assert [r["order"] for r in rows] == [0, 1]
    assert [r["text_text"] for r in rows] == ["a", "b"]
    assert all(r["message_id"] == "msg-1" for r in rows)


def test_invalid_tool_call_is_dropped_not_raised():
    rows = map_parts_to_rows(
        [ToolCallPart(tool_call_id="call-1", tool_name="search", args=None)],
        "msg-1",
    )
    assert rows == []


def test_registered_tool_part_uses_its_own_columns():
    part = ToolPart(
        tool_name="search",
        tool_call_id="call-1",
        state="output-available",
        input={"query": "python"},
        output={"results": []},
    )

    (row,) = map_parts_to_rows([part], "msg-1")

    assert row["type"] == "tool-search"
    assert row["tool_tool_call_id"] == "call-1"
    assert row["tool_search_input"] == {"query": "python"}
    assert row["tool_search_output"] == {"results": []}
    assert map_row_to_part(row) == part


def test_tool_error_roundtrip_keeps_error_text():
    part = ToolPart(
        tool_name="fetch",
        tool_call_id="call-2",
        state="output-error",
        input={"url": "https://example.com"},
        error_text="404 Not Found",
    )

    decoded = _roundtrip([part])[0]

    assert decoded.state == "output-error"
    assert decoded.error_text == "404 Not Found"
    assert decoded.output is None


def test_tool_call_and_result_share_the_tool_name():
    parts = [
        ToolCallPart(tool_call_id="call-1", tool_name="askQuestion", args={"question": "Which?"}),
        ToolResultPart(tool_call_id="call-1", result={"answer": "A"}),
    ]

    rows = map_parts_to_rows(parts, "msg-1")

    assert [r["type"] for r in rows] == ["tool-question", "tool-question"]
    assert rows[0]["tool_state"] == "input-available"
    assert rows[0]["tool_question_input"] == {"question": "Which?"}
    assert rows[1]["tool_state"] == "output-available"
    assert rows[1]["tool_question_output"] == {"answer": "A"}


def test_tool_result_without_call_falls_back_to_unknown():
    (row,) = map_parts_to_rows([ToolResultPart(tool_call_id="orphan", result="done")], "msg-1")

    assert row["type"] == "tool-unknown"
    assert row["tool_unknown_output"] == "done"

    decoded = map_row_to_part(row)
    assert isinstance(decoded, ToolResultPart)
    assert decoded.tool_call_id == "orphan"


def test_dynamic_tool_keeps_true_name_and_origin():
    part = DynamicToolPart(
        tool_name="mcp__github__list_issues",
        tool_call_id="call-9",
        state="output-available",
        input={"repo": "a/b"},
        output=[{"id": 1}],
    )

    (row,) = map_parts_to_rows([part], "msg-1")

    assert row["type"] == "tool-dynamic"
    assert row["tool_dynamic_name"] == "mcp__github__list_issues"
    assert row["tool_dynamic_type"] == "mcp"

    decoded = map_row_to_part(row)
    assert decoded == part
    assert decoded.origin == "mcp"


def test_data_parts_roundtrip_and_unknown_shapes_pass_through():
    rows = map_parts_to_rows(
        [
            DataPart(type="data-relatedQuestions", data={"items": ["q"]}, id="rq-1"),
            DataPart(type="widget", data={"type": "widget", "size": 3}),
        ],
        "msg-1",
    )

    assert rows[0]["data_prefix"] == "relatedQuestions"
    assert rows[0]["data_id"] == "rq-1"
    assert rows[1]["data_prefix"] == "widget"
    assert rows[1]["data_content"] == {"type": "widget", "size": 3}

    first, second = map_rows_to_parts(rows)
    assert first == DataPart(type="data-relatedQuestions", data={"items": ["q"]}, id="rq-1")
    assert second.type == "data-widget"


def test_step_start_is_the_only_persisted_step():
    rows = map_parts_to_rows([StepPart(type="step-start"), StepPart(type="step-finish")], "msg-1")

    assert len(rows) == 1
    assert map_row_to_part(rows[0]) == StepPart(type="step-start")


@pytest.mark.parametrize("state", [None, "done"])
def test_tool_row_with_bad_state_is_malformed(state):
    row = {"type": "tool-search", "order": 0, "tool_tool_call_id": "c", "tool_state": state}

    with pytest.raises(MalformedPartError):
        map_row_to_part(row)


def test_unknown_row_type_is_malformed():
    with pytest.raises(MalformedPartError):
        map_row_to_part({"type": "mystery", "order": 0})


def test_rows_decode_in_order():
    rows = [
        {"type": "text", "order": 1, "text_text": "second"},
        {"type": "text", "order": 0, "text_text": "first"},
    ]

    assert [p.text for p in map_rows_to_parts(rows)] == ["first", "second"]


def test_build_message_from_db_merges_created_at():
    created = datetime(2026, 1, 2, 3, 4, 5)
    message = build_message_from_db(
        {"id": "m1", "role": "assistant", "metadata": {"model": "x"}, "created_at": created},
        [{"type": "text", "order": 0, "text_text": "hi"}],
    )

    assert message.metadata == {"model": "x", "createdAt": created.isoformat()}
    assert message.parts == [TextPart(text="hi")]


def test_map_message_to_row():
    message = UIMessage(id="m1", role="user", parts=[TextPart(text="q")], metadata={"a": 1})

    assert map_message_to_row(message, "chat-1") == {
        "id": "m1",
        "chat_id": "chat-1",
        "role": "user",
        "metadata": {"a": 1},
    }


def test_tool_name_mapping():
    assert normalize_tool_name("askQuestion") == "question"
    assert normalize_tool_name("dynamic__lookup") == "dynamic"
    assert original_tool_name("question") == "askQuestion"
    assert original_tool_name("search") == "search"
