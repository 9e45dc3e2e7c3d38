"""In-memory message and message-part representation.

Parts follow the chat client's wire shape: every part is a JSON object with a
``type`` tag. Each tag maps to one dataclass below; ``part_from_dict`` parses the
wire dict and ``Part.to_dict`` produces it again.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

INPUT_STREAMING = "input-streaming"
INPUT_AVAILABLE = "input-available"
OUTPUT_AVAILABLE = "output-available"
OUTPUT_ERROR = "output-error"

TOOL_STATES = (INPUT_STREAMING, INPUT_AVAILABLE, OUTPUT_AVAILABLE, OUTPUT_ERROR)

STEP_TYPES = ("step-start", "step-result", "step-continue", "step-finish")

# Tool names that are discovered at runtime carry one of these prefixes.
MCP_TOOL_PREFIX = "mcp__"
DYNAMIC_TOOL_PREFIX = "dynamic__"


def generate_id() -> str:
    return uuid.uuid4().hex


def is_dynamic_tool_name(tool_name: str) -> bool:
    return tool_name.startswith(MCP_TOOL_PREFIX) or tool_name.startswith(DYNAMIC_TOOL_PREFIX)


def dynamic_tool_origin(tool_name: str) -> str:
    return "mcp" if tool_name.startswith(MCP_TOOL_PREFIX) else "dynamic"


def _without_none(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


@dataclass
class TextPart:
    type: ClassVar[str] = "text"
    text: str
    provider_metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return _without_none(
            {"type": self.type, "text": self.text, "providerMetadata": self.provider_metadata}
        )


@dataclass
class ReasoningPart:
    type: ClassVar[str] = "reasoning"
    text: str
    provider_metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return _without_none(
            {"type": self.type, "text": self.text, "providerMetadata": self.provider_metadata}
        )


@dataclass
class FilePart:
    type: ClassVar[str] = "file"
    media_type: str
    url: str
    filename: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _without_none(
            {
                "type": self.type,
                "mediaType": self.media_type,
                "filename": self.filename,
                "url": self.url,
            }
        )


@dataclass
class SourceUrlPart:
    type: ClassVar[str] = "source-url"
    source_id: str
    url: str
    title: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "sourceId": self.source_id, "url": self.url, "title": self.title}


@dataclass
class SourceDocumentPart:
    type: ClassVar[str] = "source-document"
    source_id: str
    media_type: str
    title: str
    filename: str = ""
    url: str = ""
    snippet: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "sourceId": self.source_id,
            "mediaType": self.media_type,
            "title": self.title,
            "filename": self.filename,
            "url": self.url,
            "snippet": self.snippet,
        }


@dataclass
class ToolPart:
    """A statically registered tool invocation, e.g. ``tool-search``."""

    tool_name: str
    tool_call_id: str
    state: str
    input: Any = None
    output: Any = None
    error_text: str | None = None

    @property
    def type(self) -> str:
        return f"tool-{self.tool_name}"

    def to_dict(self) -> dict[str, Any]:
        return _without_none(
            {
                "type": self.type,
                "toolCallId": self.tool_call_id,
                "state": self.state,
                "input": self.input,
                "output": self.output,
                "errorText": self.error_text,
            }
        )


@dataclass
class DynamicToolPart:
    """A runtime-discovered tool invocation; the tool's name is data, not a tag."""

    type: ClassVar[str] = "dynamic-tool"
    tool_name: str
    tool_call_id: str
    state: str
    input: Any = None
    output: Any = None
    error_text: str | None = None

    @property
    def origin(self) -> str:
        return dynamic_tool_origin(self.tool_name)

    def to_dict(self) -> dict[str, Any]:
        return _without_none(
            {
                "type": self.type,
                "toolName": self.tool_name,
                "toolCallId": self.tool_call_id,
                "state": self.state,
                "input": self.input,
                "output": self.output,
                "errorText": self.error_text,
            }
        )


@dataclass
class ToolCallPart:
    """Bare model-runtime call event. Fields may be missing on malformed input."""

    type: ClassVar[str] = "tool-call"
    tool_call_id: str | None
    tool_name: str | None
    args: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "args": self.args,
        }


@dataclass
class ToolResultPart:
    type: ClassVar[str] = "tool-result"
    tool_call_id: str | None
    result: Any = None
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "toolCallId": self.tool_call_id,
            "result": self.result,
            "isError": self.is_error,
        }


@dataclass
class StepPart:
    type: str = "step-start"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type}


@dataclass
class DataPart:
    """Opaque passthrough: ``data-<suffix>`` parts and any unrecognized shape.

    For unrecognized shapes ``data`` holds the whole original dict.
    """

    type: str
    data: Any = None
    id: str | None = None

    @property
    def is_namespaced(self) -> bool:
        return self.type.startswith("data-")

    def to_dict(self) -> dict[str, Any]:
        if not self.is_namespaced and isinstance(self.data, dict):
            return dict(self.data)
        return _without_none({"type": self.type, "id": self.id, "data": self.data})


Part = Union[
    TextPart,
    ReasoningPart,
    FilePart,
    SourceUrlPart,
    SourceDocumentPart,
    ToolPart,
    DynamicToolPart,
    ToolCallPart,
    ToolResultPart,
    StepPart,
    DataPart,
]


def part_from_dict(raw: dict[str, Any]) -> Part:
    """Parse one wire-format part. Unknown shapes become a ``DataPart``."""
    part_type = raw.get("type", "")

    if part_type == "text":
        return TextPart(text=raw.get("text", ""), provider_metadata=raw.get("providerMetadata"))
    if part_type == "reasoning":
        return ReasoningPart(text=raw.get("text", ""), provider_metadata=raw.get("providerMetadata"))
    if part_type == "file":
        return FilePart(
            media_type=raw.get("mediaType", ""),
            url=raw.get("url", ""),
            filename=raw.get("filename"),
        )
    if part_type == "source-url":
        return SourceUrlPart(
            source_id=raw.get("sourceId", ""),
            url=raw.get("url", ""),
            title=raw.get("title", ""),
        )
    if part_type == "source-document":
        return SourceDocumentPart(
            source_id=raw.get("sourceId", ""),
            media_type=raw.get("mediaType", ""),
            title=raw.get("title", ""),
            filename=raw.get("filename", ""),
            url=raw.get("url", ""),
            snippet=raw.get("snippet", ""),
        )
    if part_type == "tool-call":
        return ToolCallPart(
            tool_call_id=raw.get("toolCallId"),
            tool_name=raw.get("toolName"),
            args=raw.get("args"),
        )
    if part_type == "tool-result":
        return ToolResultPart(
            tool_call_id=raw.get("toolCallId"),
            result=raw.get("result"),
            is_error=bool(raw.get("isError", False)),
        )
    if part_type == "dynamic-tool":
        return DynamicToolPart(
            tool_name=raw.get("toolName", ""),
            tool_call_id=raw.get("toolCallId", ""),
            state=raw.get("state", INPUT_AVAILABLE),
            input=raw.get("input"),
            output=raw.get("output"),
            error_text=raw.get("errorText"),
        )
    if part_type in STEP_TYPES:
        return StepPart(type=part_type)
    if part_type.startswith("tool-"):
        return ToolPart(
            tool_name=part_type[len("tool-"):],
            tool_call_id=raw.get("toolCallId", ""),
            state=raw.get("state", ""),
            input=raw.get("input"),
            output=raw.get("output"),
            error_text=raw.get("errorText"),
        )
    if part_type.startswith("data-"):
        return DataPart(type=part_type, data=raw.get("data"), id=raw.get("id"))
    return DataPart(type=part_type, data=dict(raw))


@dataclass
class UIMessage:
    id: str
    role: str
    parts: list[Part] = field(default_factory=list)
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "parts": [part.to_dict() for part in self.parts],
        }
        if self.metadata:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "UIMessage":
        return cls(
            id=raw.get("id") or generate_id(),
            role=raw.get("role", "user"),
            parts=[part_from_dict(p) for p in raw.get("parts", []) if isinstance(p, dict)],
            metadata=raw.get("metadata"),
        )

    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))
