from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

from morphic.models.events import EventType, SSEEvent
from morphic.models.parts import (
    INPUT_AVAILABLE,
    OUTPUT_AVAILABLE,
    OUTPUT_ERROR,
    DataPart,
    DynamicToolPart,
    Part,
    ReasoningPart,
    StepPart,
    TextPart,
    ToolPart,
    UIMessage,
    is_dynamic_tool_name,
)
from morphic.utils.message_mapping import normalize_tool_name


def start(message_id: str) -> SSEEvent:
    return SSEEvent(event=EventType.START, data={"messageId": message_id})


def start_step(step: int) -> SSEEvent:
    return SSEEvent(event=EventType.START_STEP, data={"step": step})


def text_delta(delta: str) -> SSEEvent:
    return SSEEvent(event=EventType.TEXT_DELTA, data={"delta": delta})


def reasoning_delta(delta: str) -> SSEEvent:
    return SSEEvent(event=EventType.REASONING_DELTA, data={"delta": delta})


def tool_input_available(tool_call_id: str, tool_name: str, tool_input: Any) -> SSEEvent:
    return SSEEvent(
        event=EventType.TOOL_INPUT_AVAILABLE,
        data={"toolCallId": tool_call_id, "toolName": tool_name, "input": tool_input},
    )


def tool_progress(tool_call_id: str, tool_name: str, state: str, payload: dict[str, Any]) -> SSEEvent:
    return SSEEvent(
        event=EventType.TOOL_PROGRESS,
        data={"toolCallId": tool_call_id, "toolName": tool_name, "state": state, "data": payload},
    )


def tool_output_available(tool_call_id: str, output: Any) -> SSEEvent:
    return SSEEvent(
        event=EventType.TOOL_OUTPUT_AVAILABLE,
        data={"toolCallId": tool_call_id, "output": output},
    )


def tool_output_error(tool_call_id: str, error_text: str) -> SSEEvent:
    return SSEEvent(
        event=EventType.TOOL_OUTPUT_ERROR,
        data={"toolCallId": tool_call_id, "errorText": error_text},
    )


def data(part_type: str, payload: Any, *, part_id: str | None = None) -> SSEEvent:
    event_data: dict[str, Any] = {"type": part_type, "data": payload}
    if part_id:
        event_data["id"] = part_id
    return SSEEvent(event=EventType.DATA, data=event_data)


def finish_step(step: int, finish_reason: str, **usage: int) -> SSEEvent:
    return SSEEvent(
        event=EventType.FINISH_STEP,
        data={"step": step, "finishReason": finish_reason, **usage},
    )


def finish(finish_reason: str, **kwargs: Any) -> SSEEvent:
    return SSEEvent(event=EventType.FINISH, data={"finishReason": finish_reason, **kwargs})


def error(message: str) -> SSEEvent:
    return SSEEvent(event=EventType.ERROR, data={"errorText": message})


class StreamWriter:
    """Result-streaming sink: a single-consumer queue of events for the client.

    ``close`` enqueues a sentinel so the consumer knows the stream is over.
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    async def write(self, event: SSEEvent) -> None:
        if self.closed:
            return
        await self._queue.put(event)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(self._CLOSED)

    async def events(self) -> AsyncIterator[SSEEvent]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item


class MessageAssembler:
    """Folds researcher stream events into the parts of one assistant message."""

    def __init__(self, message_id: str):
        self.message = UIMessage(id=message_id, role="assistant", parts=[])
        self._tool_parts: dict[str, ToolPart | DynamicToolPart] = {}
        self.finish_reason: str | None = None

    @property
    def parts(self) -> list[Part]:
        return self.message.parts

    def apply(self, event: SSEEvent) -> None:
        payload = event.data

        if event.event is EventType.START_STEP:
            self.parts.append(StepPart(type="step-start"))
        elif event.event is EventType.TEXT_DELTA:
            if self.parts and isinstance(self.parts[-1], TextPart):
                self.parts[-1].text += payload["delta"]
            else:
                self.parts.append(TextPart(text=payload["delta"]))
        elif event.event is EventType.REASONING_DELTA:
            if self.parts and isinstance(self.parts[-1], ReasoningPart):
                self.parts[-1].text += payload["delta"]
            else:
                self.parts.append(ReasoningPart(text=payload["delta"]))
        elif event.event is EventType.TOOL_INPUT_AVAILABLE:
            self._add_tool_part(payload["toolCallId"], payload["toolName"], payload.get("input"))
        elif event.event is EventType.TOOL_OUTPUT_AVAILABLE:
            part = self._tool_parts.get(payload["toolCallId"])
            if part is not None:
                part.state = OUTPUT_AVAILABLE
                part.output = payload.get("output")
        elif event.event is EventType.TOOL_OUTPUT_ERROR:
            part = self._tool_parts.get(payload["toolCallId"])
            if part is not None:
                part.state = OUTPUT_ERROR
                part.error_text = payload.get("errorText") or ""
        elif event.event is EventType.DATA:
            self.parts.append(DataPart(type=payload["type"], data=payload.get("data"), id=payload.get("id")))
        elif event.event is EventType.FINISH:
            self.finish_reason = payload.get("finishReason")

    def _add_tool_part(self, tool_call_id: str, tool_name: str, tool_input: Any) -> None:
        part: ToolPart | DynamicToolPart
        if is_dynamic_tool_name(tool_name):
            part = DynamicToolPart(
                tool_name=tool_name,
                tool_call_id=tool_call_id,
                state=INPUT_AVAILABLE,
                input=tool_input,
            )
        else:
            part = ToolPart(
                tool_name=normalize_tool_name(tool_name),
                tool_call_id=tool_call_id,
                state=INPUT_AVAILABLE,
                input=tool_input,
            )
        self._tool_parts[tool_call_id] = part
        self.parts.append(part)
