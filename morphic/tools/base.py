"""Tool contract.

A tool validates its input against a pydantic model and executes as an async
generator of ``ToolEvent``s: zero or more progress events followed by exactly
one terminal event. ``run_tool`` is the only way the researcher drives a tool;
it turns validation failures and exceptions into an error terminal and guards
the exactly-one-terminal rule.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from loguru import logger
from pydantic import BaseModel, ValidationError

from morphic.models.parts import INPUT_STREAMING, OUTPUT_AVAILABLE, OUTPUT_ERROR
from morphic.services import logger as log_service

COMPLETE = "complete"
ERROR = "error"


@dataclass
class ToolEvent:
    state: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def terminal(self) -> bool:
        return self.state in (COMPLETE, ERROR)

    @property
    def part_state(self) -> str:
        """State of the message part this event corresponds to."""
        if self.state == COMPLETE:
            return OUTPUT_AVAILABLE
        if self.state == ERROR:
            return OUTPUT_ERROR
        return INPUT_STREAMING

    @property
    def error_text(self) -> str | None:
        return self.data.get("error") if self.state == ERROR else None

    @classmethod
    def complete(cls, payload: dict[str, Any]) -> "ToolEvent":
        return cls(state=COMPLETE, data={**payload, "state": COMPLETE})

    @classmethod
    def failed(cls, message: str) -> "ToolEvent":
        return cls(state=ERROR, data={"state": ERROR, "error": message})


class Tool:
    """Base class for tools exposed to the researcher."""

    name: str = "tool"
    description: str = ""
    input_model: type[BaseModel] = BaseModel
    # Interactive tools have no executor: the client answers them.
    interactive: bool = False

    def validate(self, raw_input: Any) -> BaseModel:
        if isinstance(raw_input, self.input_model):
            return raw_input
        return self.input_model.model_validate(raw_input or {})

    def to_model_tool(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_model.model_json_schema(),
        }

    async def execute(self, params: Any, *, tool_call_id: str) -> AsyncIterator[ToolEvent]:
        raise NotImplementedError(f"Tool {self.name} has no executor")
        yield  # pragma: no cover


async def run_tool(tool: Tool, raw_input: Any, *, tool_call_id: str) -> AsyncIterator[ToolEvent]:
    """Drive one tool invocation, always ending in exactly one terminal event."""
    t0 = time.monotonic()

    try:
        params = tool.validate(raw_input)
    except ValidationError as e:
        logger.warning(f"Invalid input for tool {tool.name} ({tool_call_id}): {e}")
        yield ToolEvent.failed(f"Invalid input for {tool.name}: {e}")
        return

    terminal: ToolEvent | None = None
    try:
        async for event in tool.execute(params, tool_call_id=tool_call_id):
            if terminal is not None:
                logger.error(f"Tool {tool.name} emitted {event.state} after its terminal event; ignored")
                continue
            if event.terminal:
                terminal = event
            yield event
    except asyncio.CancelledError:
        raise
    except Exception as e:
        if terminal is not None:
            logger.error(f"Tool {tool.name} failed after its terminal event: {e}")
        else:
            terminal = ToolEvent.failed(str(e) or type(e).__name__)
            yield terminal

    if terminal is None:
        terminal = ToolEvent.failed(f"Tool {tool.name} finished without a result")
        yield terminal

    log_service.log_tool_call(
        tool_name=tool.name,
        tool_call_id=tool_call_id,
        status="success" if terminal.state == COMPLETE else "error",
        duration_ms=int((time.monotonic() - t0) * 1000),
        error=terminal.error_text,
    )
