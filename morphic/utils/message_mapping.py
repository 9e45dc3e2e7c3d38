"""Mapping between in-memory message parts and flattened ``parts`` table rows.

Rows are plain dicts keyed by column name. Every tool shares the generic
``tool_tool_call_id`` / ``tool_state`` / ``tool_error_text`` columns and owns a
``tool_<name>_input`` / ``tool_<name>_output`` column pair. Runtime-discovered
tools all collapse into the ``dynamic`` pair and keep their real name in
``tool_dynamic_name``.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Sequence

from loguru import logger

from morphic.errors import MalformedPartError
from morphic.models.parts import (
    INPUT_AVAILABLE,
    INPUT_STREAMING,
    OUTPUT_AVAILABLE,
    OUTPUT_ERROR,
    TOOL_STATES,
    DataPart,
    DynamicToolPart,
    FilePart,
    Part,
    ReasoningPart,
    SourceDocumentPart,
    SourceUrlPart,
    StepPart,
    TextPart,
    ToolCallPart,
    ToolPart,
    ToolResultPart,
    UIMessage,
    dynamic_tool_origin,
    generate_id,
    is_dynamic_tool_name,
)

DYNAMIC_TOOL = "dynamic"
UNKNOWN_TOOL = "unknown"

# Tools with a dedicated input/output column pair in the parts table.
REGISTERED_TOOL_COLUMNS = ("search", "fetch", "question", "todoWrite", "todoRead")

# Model-facing tool name -> column name.
TOOL_NAME_MAP = {
    "search": "search",
    "fetch": "fetch",
    "askQuestion": "question",
    "question": "question",
    "todoWrite": "todoWrite",
    "todoRead": "todoRead",
}

# Column name -> model-facing tool name.
ORIGINAL_TOOL_NAMES = {
    "search": "search",
    "fetch": "fetch",
    "question": "askQuestion",
    "todoWrite": "todoWrite",
    "todoRead": "todoRead",
    DYNAMIC_TOOL: DYNAMIC_TOOL,
}

PART_COLUMNS = (
    "id",
    "message_id",
    "order",
    "type",
    "text_text",
    "reasoning_text",
    "file_media_type",
    "file_filename",
    "file_url",
    "source_url_source_id",
    "source_url_url",
    "source_url_title",
    "source_document_source_id",
    "source_document_media_type",
    "source_document_title",
    "source_document_filename",
    "source_document_url",
    "source_document_snippet",
    "tool_tool_call_id",
    "tool_state",
    "tool_error_text",
    *(
        f"tool_{name}_{kind}"
        for name in (*REGISTERED_TOOL_COLUMNS, DYNAMIC_TOOL)
        for kind in ("input", "output")
    ),
    "tool_dynamic_name",
    "tool_dynamic_type",
    "data_prefix",
    "data_content",
    "data_id",
    "provider_metadata",
    "created_at",
)


def input_column(tool_name: str) -> str:
    return f"tool_{tool_name}_input"


def output_column(tool_name: str) -> str:
    return f"tool_{tool_name}_output"


def normalize_tool_name(tool_name: str) -> str:
    """Map a model-facing tool name to its column name."""
    if is_dynamic_tool_name(tool_name):
        return DYNAMIC_TOOL
    return TOOL_NAME_MAP.get(tool_name, tool_name)


def original_tool_name(column_name: str) -> str:
    return ORIGINAL_TOOL_NAMES.get(column_name, column_name)


def _tool_name_for_call_id(tool_call_id: str | None, parts: Sequence[Part]) -> str:
    for candidate in parts:
        if isinstance(candidate, ToolCallPart) and candidate.tool_call_id == tool_call_id:
            return normalize_tool_name(candidate.tool_name or "")
    logger.warning(f"No tool-call found for tool-result {tool_call_id}; storing as '{UNKNOWN_TOOL}'")
    return UNKNOWN_TOOL


def _call_for_id(tool_call_id: str | None, parts: Sequence[Part]) -> ToolCallPart | None:
    for candidate in parts:
        if isinstance(candidate, ToolCallPart) and candidate.tool_call_id == tool_call_id:
            return candidate
    return None


# --- Encoding ---

Encoder = Callable[[Any, dict[str, Any], Sequence[Part]], "dict[str, Any] | None"]


def _encode_text(part: TextPart, base: dict[str, Any], _: Sequence[Part]) -> dict[str, Any]:
    return {**base, "text_text": part.text, "provider_metadata": part.provider_metadata}


def _encode_reasoning(part: ReasoningPart, base: dict[str, Any], _: Sequence[Part]) -> dict[str, Any]:
    return {**base, "reasoning_text": part.text, "provider_metadata": part.provider_metadata}


def _encode_file(part: FilePart, base: dict[str, Any], _: Sequence[Part]) -> dict[str, Any]:
    return {
        **base,
        "file_media_type": part.media_type,
        "file_filename": part.filename,
        "file_url": part.url,
    }


def _encode_source_url(part: SourceUrlPart, base: dict[str, Any], _: Sequence[Part]) -> dict[str, Any]:
    return {
        **base,
        "source_url_source_id": part.source_id,
        "source_url_url": part.url,
        "source_url_title": part.title,
    }


def _encode_source_document(
    part: SourceDocumentPart, base: dict[str, Any], _: Sequence[Part]
) -> dict[str, Any]:
    return {
        **base,
        "source_document_source_id": part.source_id,
        "source_document_media_type": part.media_type,
        "source_document_title": part.title,
        "source_document_filename": part.filename,
        "source_document_url": part.url,
        "source_document_snippet": part.snippet,
    }


def _encode_tool_call(
    part: ToolCallPart, base: dict[str, Any], _: Sequence[Part]
) -> dict[str, Any] | None:
    if not part.tool_call_id or not part.tool_name or part.args is None:
        logger.warning(f"Dropping invalid tool-call part: {part}")
        return None

    tool_name = normalize_tool_name(part.tool_name)
    row = {
        **base,
        "type": f"tool-{tool_name}",
        "tool_tool_call_id": part.tool_call_id,
        "tool_state": INPUT_AVAILABLE,
        input_column(tool_name): part.args,
    }
    if tool_name == DYNAMIC_TOOL:
        row["tool_dynamic_name"] = part.tool_name
        row["tool_dynamic_type"] = dynamic_tool_origin(part.tool_name)
    return row


def _encode_tool_result(
    part: ToolResultPart, base: dict[str, Any], parts: Sequence[Part]
) -> dict[str, Any] | None:
    if not part.tool_call_id:
        logger.warning(f"Dropping tool-result part without toolCallId: {part}")
        return None

    tool_name = _tool_name_for_call_id(part.tool_call_id, parts)
    row = {
        **base,
        "type": f"tool-{tool_name}",
        "tool_tool_call_id": part.tool_call_id,
        "tool_state": OUTPUT_ERROR if part.is_error else OUTPUT_AVAILABLE,
        "tool_error_text": str(part.result) if part.is_error else None,
        output_column(tool_name): None if part.is_error else part.result,
    }
    if tool_name == DYNAMIC_TOOL:
        call = _call_for_id(part.tool_call_id, parts)
        if call is not None and call.tool_name:
            row["tool_dynamic_name"] = call.tool_name
            row["tool_dynamic_type"] = dynamic_tool_origin(call.tool_name)
    return row


def _encode_tool(part: ToolPart, base: dict[str, Any], _: Sequence[Part]) -> dict[str, Any]:
    return {
        **base,
        "type": part.type,
        "tool_tool_call_id": part.tool_call_id or generate_id(),
        "tool_state": part.state or INPUT_AVAILABLE,
        "tool_error_text": part.error_text,
        input_column(part.tool_name): part.input,
        output_column(part.tool_name): part.output,
    }


def _encode_dynamic_tool(
    part: DynamicToolPart, base: dict[str, Any], _: Sequence[Part]
) -> dict[str, Any]:
    return {
        **base,
        "type": f"tool-{DYNAMIC_TOOL}",
        "tool_tool_call_id": part.tool_call_id or generate_id(),
        "tool_state": part.state,
        "tool_dynamic_name": part.tool_name,
        "tool_dynamic_type": part.origin,
        "tool_dynamic_input": part.input,
        "tool_dynamic_output": part.output if part.state == OUTPUT_AVAILABLE else None,
        "tool_error_text": part.error_text if part.state == OUTPUT_ERROR else None,
    }


def _encode_step(part: StepPart, base: dict[str, Any], _: Sequence[Part]) -> dict[str, Any] | None:
    # Only step-start marks durable message structure.
    if part.type == "step-start":
        return base
    return None


def _encode_data(part: DataPart, base: dict[str, Any], _: Sequence[Part]) -> dict[str, Any]:
    if part.is_namespaced:
        return {
            **base,
            "data_prefix": part.type[len("data-"):],
            "data_content": part.data,
            "data_id": part.id,
        }
    return {**base, "data_prefix": part.type, "data_content": part.data}


_ENCODERS: dict[type, Encoder] = {
    TextPart: _encode_text,
    ReasoningPart: _encode_reasoning,
    FilePart: _encode_file,
    SourceUrlPart: _encode_source_url,
    SourceDocumentPart: _encode_source_document,
    ToolCallPart: _encode_tool_call,
    ToolResultPart: _encode_tool_result,
    ToolPart: _encode_tool,
    DynamicToolPart: _encode_dynamic_tool,
    StepPart: _encode_step,
    DataPart: _encode_data,
}


def map_parts_to_rows(parts: Sequence[Part], message_id: str) -> list[dict[str, Any]]:
    """Encode parts into ``parts`` rows with a dense, zero-based ``order``."""
    rows: list[dict[str, Any]] = []
    for index, part in enumerate(parts):
        encoder = _ENCODERS.get(type(part))
        if encoder is None:
            raise TypeError(f"Unsupported part object: {part!r}")
        base = {"message_id": message_id, "order": index, "type": part.type}
        row = encoder(part, base, parts)
        if row is not None:
            rows.append(row)

    for order, row in enumerate(rows):
        row["order"] = order
    return rows


# --- Decoding ---


def _require_state(row: dict[str, Any], tool_name: str) -> str:
    state = row.get("tool_state")
    if state is None:
        raise MalformedPartError(f"tool_state is missing for tool-{tool_name} part {row.get('id')}")
    if state not in TOOL_STATES:
        raise MalformedPartError(f"Unknown tool state '{state}' for tool-{tool_name} part {row.get('id')}")
    return state


def _decode_registered_tool(row: dict[str, Any], tool_name: str) -> ToolPart:
    state = _require_state(row, tool_name)
    part = ToolPart(
        tool_name=tool_name,
        tool_call_id=row.get("tool_tool_call_id") or "",
        state=state,
        input=row.get(input_column(tool_name)),
    )
    if state == OUTPUT_AVAILABLE:
        part.output = row.get(output_column(tool_name))
    elif state == OUTPUT_ERROR:
        part.error_text = row.get("tool_error_text")
    return part


def _decode_dynamic_tool(row: dict[str, Any]) -> DynamicToolPart:
    state = _require_state(row, DYNAMIC_TOOL)
    return DynamicToolPart(
        tool_name=row.get("tool_dynamic_name") or "",
        tool_call_id=row.get("tool_tool_call_id") or "",
        state=state,
        input=row.get("tool_dynamic_input"),
        output=row.get("tool_dynamic_output"),
        error_text=row.get("tool_error_text"),
    )


def _decode_generic_tool(row: dict[str, Any], tool_name: str) -> ToolCallPart | ToolResultPart:
    state = _require_state(row, tool_name)
    tool_call_id = row.get("tool_tool_call_id") or ""
    if state in (INPUT_STREAMING, INPUT_AVAILABLE):
        return ToolCallPart(
            tool_call_id=tool_call_id,
            tool_name=original_tool_name(tool_name),
            args=row.get(input_column(tool_name)),
        )
    is_error = state == OUTPUT_ERROR
    return ToolResultPart(
        tool_call_id=tool_call_id,
        is_error=is_error,
        result=row.get("tool_error_text") if is_error else row.get(output_column(tool_name)),
    )


def map_row_to_part(row: dict[str, Any]) -> Part:
    """Decode one ``parts`` row. Raises ``MalformedPartError`` on corrupt tool rows."""
    part_type = row.get("type") or ""

    if part_type == "text":
        return TextPart(text=row.get("text_text") or "", provider_metadata=row.get("provider_metadata"))
    if part_type == "reasoning":
        return ReasoningPart(
            text=row.get("reasoning_text") or "",
            provider_metadata=row.get("provider_metadata"),
        )
    if part_type == "file":
        return FilePart(
            media_type=row.get("file_media_type") or "",
            filename=row.get("file_filename") or "",
            url=row.get("file_url") or "",
        )
    if part_type == "source-url":
        return SourceUrlPart(
            source_id=row.get("source_url_source_id") or "",
            url=row.get("source_url_url") or "",
            title=row.get("source_url_title") or "",
        )
    if part_type == "source-document":
        return SourceDocumentPart(
            source_id=row.get("source_document_source_id") or "",
            media_type=row.get("source_document_media_type") or "",
            title=row.get("source_document_title") or "",
            filename=row.get("source_document_filename") or "",
            url=row.get("source_document_url") or "",
            snippet=row.get("source_document_snippet") or "",
        )

    if part_type.startswith("tool-"):
        tool_name = part_type[len("tool-"):]
        if tool_name == DYNAMIC_TOOL:
            return _decode_dynamic_tool(row)
        if tool_name in REGISTERED_TOOL_COLUMNS:
            return _decode_registered_tool(row, tool_name)
        return _decode_generic_tool(row, tool_name)

    if part_type == "step-start":
        return StepPart(type="step-start")

    if row.get("data_prefix"):
        data_id = row.get("data_id")
        return DataPart(type=f"data-{row['data_prefix']}", data=row.get("data_content"), id=data_id or None)

    raise MalformedPartError(f"Unknown part type: {part_type}")


def map_rows_to_parts(rows: Sequence[dict[str, Any]]) -> list[Part]:
    """Decode rows in ascending ``order``."""
    ordered = sorted(rows, key=lambda r: r.get("order", 0))
    return [map_row_to_part(row) for row in ordered]


# --- Messages ---


def map_message_to_row(message: UIMessage, chat_id: str) -> dict[str, Any]:
    return {
        "id": message.id,
        "chat_id": chat_id,
        "role": message.role,
        "metadata": message.metadata or None,
    }


def build_message_from_db(
    message_row: dict[str, Any], part_rows: Sequence[dict[str, Any]]
) -> UIMessage:
    """Rebuild a UI message from its stored row and part rows."""
    metadata: dict[str, Any] = dict(message_row.get("metadata") or {})
    created_at = message_row.get("created_at")
    if created_at is not None:
        metadata["createdAt"] = (
            created_at.isoformat() if isinstance(created_at, datetime) else str(created_at)
        )

    return UIMessage(
        id=message_row["id"],
        role=message_row["role"],
        parts=map_rows_to_parts(part_rows),
        metadata=metadata or None,
    )
