"""OpenRouter model runtime over the OpenAI-compatible SDK.

Internal conversation messages use one shape throughout the researcher:
``{"role": "user", "content": str}``, assistant turns whose content is a list
of ``TextBlock``/``ToolUseBlock``, and user turns whose content is a list of
``tool_result`` dicts. ``to_openai_messages`` turns that into chat-completions
messages.
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Union

from loguru import logger

from morphic.config import settings
from morphic.models.parts import (
    OUTPUT_AVAILABLE,
    OUTPUT_ERROR,
    DynamicToolPart,
    FilePart,
    StepPart,
    TextPart,
    ToolCallPart,
    ToolPart,
    ToolResultPart,
    UIMessage,
)
from morphic.services import logger as log_service
from morphic.utils.message_mapping import original_tool_name


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class TextBlock:
    type: str
    text: str


@dataclass
class ToolUseBlock:
    type: str
    id: str
    name: str
    input: dict[str, Any]


@dataclass
class TextDelta:
    text: str


@dataclass
class ReasoningDelta:
    text: str


@dataclass
class ToolCallRequest:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass
class StepFinish:
    finish_reason: str
    usage: Usage = field(default_factory=Usage)


ModelEvent = Union[TextDelta, ReasoningDelta, ToolCallRequest, StepFinish]


def _block_attr(block: Any, name: str) -> Any:
    if isinstance(block, dict):
        return block.get(name)
    return getattr(block, name, None)


def to_openai_messages(system: str, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    openai_messages: list[dict[str, Any]] = [{"role": "system", "content": system}]

    for message in messages:
        role = message["role"]
        content = message["content"]

        if isinstance(content, str):
            openai_messages.append({"role": role, "content": content})
            continue

        if role == "assistant" and isinstance(content, list):
            text_parts: list[str] = []
            tool_calls: list[dict[str, Any]] = []
            for block in content:
                btype = _block_attr(block, "type")
                if btype == "text":
                    text_value = _block_attr(block, "text")
                    if text_value:
                        text_parts.append(text_value)
                elif btype == "tool_use":
                    tool_calls.append(
                        {
                            "id": _block_attr(block, "id"),
                            "type": "function",
                            "function": {
                                "name": _block_attr(block, "name"),
                                "arguments": json.dumps(_block_attr(block, "input") or {}),
                            },
                        }
                    )
            msg: dict[str, Any] = {"role": "assistant"}
            msg["content"] = "\n".join(text_parts) if text_parts else None
            if tool_calls:
                msg["tool_calls"] = tool_calls
            openai_messages.append(msg)
            continue

        if role == "user" and isinstance(content, list):
            for tool_result in content:
                if tool_result.get("type") != "tool_result":
                    continue
                tool_content = str(tool_result.get("content", ""))
                if tool_result.get("is_error"):
                    tool_content = f"ERROR: {tool_content}"
                openai_messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": tool_result.get("tool_use_id", ""),
                        "content": tool_content,
                    }
                )
            continue

        openai_messages.append({"role": role, "content": str(content)})

    return openai_messages


def to_openai_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": t["name"],
                "description": t.get("description", ""),
                "parameters": t.get("input_schema", {"type": "object", "properties": {}}),
            },
        }
        for t in tools
    ]


def tool_result_block(tool_call_id: str, content: Any, *, is_error: bool = False) -> dict[str, Any]:
    if not isinstance(content, str):
        content = json.dumps(content, default=str)
    block: dict[str, Any] = {"type": "tool_result", "tool_use_id": tool_call_id, "content": content}
    if is_error:
        block["is_error"] = True
    return block


def _user_content(message: UIMessage) -> str:
    lines: list[str] = []
    for part in message.parts:
        if isinstance(part, TextPart) and part.text:
            lines.append(part.text)
        elif isinstance(part, FilePart):
            label = part.filename or part.media_type
            lines.append(f"[Attached file: {label} ({part.url})]")
    return "\n".join(lines)


def ui_messages_to_model_messages(messages: list[UIMessage]) -> list[dict[str, Any]]:
    """Convert chat history into internal model messages.

    Each assistant step becomes an assistant turn followed by a user turn with
    its tool results, so tool calls stay paired with their results. Tool parts
    without a result (interactive questions still waiting for an answer) are
    left out.
    """
    model_messages: list[dict[str, Any]] = []

    for message in messages:
        if message.role == "user":
            content = _user_content(message)
            if content:
                model_messages.append({"role": "user", "content": content})
            continue
        if message.role != "assistant":
            continue

        blocks: list[Any] = []
        results: list[dict[str, Any]] = []

        def flush() -> None:
            if blocks:
                model_messages.append({"role": "assistant", "content": list(blocks)})
            if results:
                model_messages.append({"role": "user", "content": list(results)})
            blocks.clear()
            results.clear()

        for part in message.parts:
            if isinstance(part, StepPart):
                flush()
            elif isinstance(part, TextPart):
                if part.text:
                    blocks.append(TextBlock(type="text", text=part.text))
            elif isinstance(part, (ToolPart, DynamicToolPart)):
                if part.state not in (OUTPUT_AVAILABLE, OUTPUT_ERROR):
                    continue
                name = (
                    part.tool_name
                    if isinstance(part, DynamicToolPart)
                    else original_tool_name(part.tool_name)
                )
                blocks.append(
                    ToolUseBlock(type="tool_use", id=part.tool_call_id, name=name, input=part.input or {})
                )
                if part.state == OUTPUT_ERROR:
                    results.append(tool_result_block(part.tool_call_id, part.error_text or "", is_error=True))
                else:
                    results.append(tool_result_block(part.tool_call_id, part.output))
            elif isinstance(part, ToolCallPart):
                blocks.append(
                    ToolUseBlock(
                        type="tool_use",
                        id=part.tool_call_id or "",
                        name=part.tool_name or "",
                        input=part.args or {},
                    )
                )
            elif isinstance(part, ToolResultPart):
                results.append(
                    tool_result_block(part.tool_call_id or "", part.result, is_error=bool(part.is_error))
                )
        flush()

    return model_messages


class OpenRouterRuntime:
    """Streams one model step at a time.

    Cancelling the consuming task closes the underlying HTTP stream.
    """

    def __init__(self, openai_client: Any):
        self._client = openai_client

    @staticmethod
    def _temperature_for_model(model: str) -> int:
        # Some OpenAI GPT-5-compatible gateways reject temperature=0.
        lowered = (model or "").lower()
        if "gpt-5" in lowered:
            return 1
        return 0

    @staticmethod
    def _tool_choice(tool_choice: str | None) -> Any:
        if tool_choice is None:
            return "auto"
        return {"type": "function", "function": {"name": tool_choice}}

    async def stream_step(
        self,
        *,
        model: str,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[ModelEvent]:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": to_openai_messages(system, messages),
            "max_tokens": max_tokens or settings.max_output_tokens,
            "temperature": self._temperature_for_model(model),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            kwargs["tools"] = to_openai_tools(tools)
            kwargs["tool_choice"] = self._tool_choice(tool_choice)

        t0 = time.monotonic()
        usage = Usage()
        finish_reason: str | None = None
        # Tool-call fragments arrive keyed by index; arguments are streamed JSON text.
        calls: dict[int, dict[str, str]] = {}

        try:
            stream = await self._client.chat.completions.create(**kwargs)
        except Exception as e:
            log_service.log_llm_call(
                model=model,
                caller="researcher",
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(e),
            )
            raise

        try:
            async for chunk in stream:
                chunk_usage = getattr(chunk, "usage", None)
                if chunk_usage:
                    usage = Usage(
                        input_tokens=getattr(chunk_usage, "prompt_tokens", 0) or 0,
                        output_tokens=getattr(chunk_usage, "completion_tokens", 0) or 0,
                    )

                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                choice = choices[0]
                if getattr(choice, "finish_reason", None):
                    finish_reason = choice.finish_reason

                delta = getattr(choice, "delta", None)
                if not delta:
                    continue

                reasoning = getattr(delta, "reasoning", None)
                if reasoning:
                    yield ReasoningDelta(text=reasoning)

                text = getattr(delta, "content", None)
                if text:
                    yield TextDelta(text=text)

                for tc in getattr(delta, "tool_calls", None) or []:
                    entry = calls.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                    if tc.id:
                        entry["id"] = tc.id
                    function = getattr(tc, "function", None)
                    if function is not None:
                        if function.name:
                            entry["name"] += function.name
                        if function.arguments:
                            entry["arguments"] += function.arguments
        finally:
            await stream.close()

        for index in sorted(calls):
            entry = calls[index]
            try:
                parsed_args = json.loads(entry["arguments"] or "{}")
            except json.JSONDecodeError:
                logger.warning(f"Unparseable arguments for tool call {entry['id']} ({entry['name']})")
                parsed_args = {}
            yield ToolCallRequest(id=entry["id"], name=entry["name"], input=parsed_args)

        log_service.log_llm_call(
            model=model,
            caller="researcher",
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        yield StepFinish(finish_reason=finish_reason or "stop", usage=usage)


def get_runtime() -> OpenRouterRuntime:
    """Create the OpenRouter runtime via the OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    openai_client = AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
    )
    return OpenRouterRuntime(openai_client)


def get_model(requested: str | None = None) -> str:
    """Get the active OpenRouter model id."""
    if settings.openrouter_model:
        return settings.openrouter_model
    return requested or settings.default_model
