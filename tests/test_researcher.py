from __future__ import annotations

import asyncio
import copy
from unittest.mock import patch

import pytest
from pydantic import BaseModel, ConfigDict

from morphic.agents.modes import ModePolicy, SearchMode
from morphic.agents.researcher import Researcher, create_researcher
from morphic.llm_client import StepFinish, TextDelta, ToolCallRequest, Usage
from morphic.models.events import EventType
from morphic.models.parts import TextPart, UIMessage
from morphic.services import streaming
from morphic.tools.base import Tool, ToolEvent
from morphic.tools.question import QuestionTool
from morphic.tools.search import QuickModeSearchTool


class FakeRuntime:
    """Plays back one scripted list of model events per step."""

    def __init__(self, steps, *, hang_on_step=None):
        self.steps = list(steps)
        self.calls: list[dict] = []
        self.hang_on_step = hang_on_step
        self.closed = 0

    async def stream_step(self, *, model, system, messages, tools, tool_choice, max_tokens):
        step = len(self.calls)
        self.calls.append(
            {
                "model": model,
                "system": system,
                "messages": copy.deepcopy(messages),
                "tools": [t["name"] for t in tools],
                "tool_choice": tool_choice,
            }
        )
        try:
            events = self.steps[step] if step < len(self.steps) else [TextDelta("done")]
            for event in events:
                yield event
            if step == self.hang_on_step:
                await asyncio.Event().wait()
            yield StepFinish(finish_reason="stop", usage=Usage(input_tokens=5, output_tokens=2))
        finally:
            self.closed += 1


class _AnyInput(BaseModel):
    model_config = ConfigDict(extra="allow")


class EchoTool(Tool):
    name = "search"
    input_model = _AnyInput

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.cancelled = False

    async def execute(self, params, *, tool_call_id):
        yield ToolEvent(state="searching", data={"state": "searching"})
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        yield ToolEvent.complete({"echo": tool_call_id})


class RecordingWriter:
    def __init__(self):
        self.events = []

    async def write(self, event):
        self.events.append(event)


def _policy(**overrides):
    values = {
        "mode": SearchMode.ADAPTIVE,
        "system_prompt": "You research.",
        "active_tools": ("search",),
        "max_steps": 50,
    }
    values.update(overrides)
    return ModePolicy(**values)


def _history():
    return [UIMessage(id="u1", role="user", parts=[TextPart(text="What is Python?")])]


async def _run(researcher):
    return [event async for event in researcher.stream(_history(), message_id="a1")]


def _types(events):
    return [e.event for e in events]


@pytest.mark.asyncio
async def test_single_step_without_tools_stops():
    runtime = FakeRuntime([[TextDelta("Python is "), TextDelta("a language.")]])
    researcher = Researcher(model="m", policy=_policy(), tools={}, runtime=runtime)

    events = await _run(researcher)

    assert _types(events) == [
        EventType.START,
        EventType.START_STEP,
        EventType.TEXT_DELTA,
        EventType.TEXT_DELTA,
        EventType.FINISH_STEP,
        EventType.FINISH,
    ]
    assert events[0].data == {"messageId": "a1"}
    assert events[-1].data["finishReason"] == "stop"
    assert len(runtime.calls) == 1
    assert runtime.calls[0]["messages"] == [{"role": "user", "content": "What is Python?"}]
    assert "Current date and time:" in runtime.calls[0]["system"]


@pytest.mark.asyncio
async def test_tool_results_feed_the_next_step_in_call_order():
    runtime = FakeRuntime(
        [
            [
                TextDelta("Let me look."),
                ToolCallRequest(id="c1", name="search", input={"query": "a"}),
                ToolCallRequest(id="c2", name="search", input={"query": "b"}),
            ],
            [TextDelta("Answer.")],
        ]
    )
    researcher = Researcher(model="m", policy=_policy(), tools={"search": EchoTool()}, runtime=runtime)

    events = await _run(researcher)

    outputs = [e.data["toolCallId"] for e in events if e.event is EventType.TOOL_OUTPUT_AVAILABLE]
    assert outputs == ["c1", "c2"]
    progress = [e for e in events if e.event is EventType.TOOL_PROGRESS]
    assert progress[0].data["state"] == "input-streaming"

    second_context = runtime.calls[1]["messages"]
    assistant_turn, tool_turn = second_context[1], second_context[2]
    assert [b.type for b in assistant_turn["content"]] == ["text", "tool_use", "tool_use"]
    assert [r["tool_use_id"] for r in tool_turn["content"]] == ["c1", "c2"]
    assert events[-1].data["finishReason"] == "stop"


@pytest.mark.asyncio
async def test_unknown_tool_is_reported_as_error_and_loop_continues():
    runtime = FakeRuntime([[ToolCallRequest(id="c1", name="fetch", input={})], [TextDelta("ok")]])
    researcher = Researcher(model="m", policy=_policy(), tools={"search": EchoTool()}, runtime=runtime)

    events = await _run(researcher)

    errors = [e for e in events if e.event is EventType.TOOL_OUTPUT_ERROR]
    assert errors[0].data == {"toolCallId": "c1", "errorText": "Tool fetch is not available"}
    assert runtime.calls[1]["messages"][2]["content"][0]["is_error"] is True
    assert len(runtime.calls) == 2


@pytest.mark.asyncio
async def test_step_budget_is_enforced():
    looping = [[ToolCallRequest(id=f"c{i}", name="search", input={})] for i in range(10)]
    runtime = FakeRuntime(looping)
    researcher = Researcher(model="m", policy=_policy(max_steps=3), tools={"search": EchoTool()}, runtime=runtime)

    events = await _run(researcher)

    assert len(runtime.calls) == 3
    assert events[-1].data["finishReason"] == "max-steps"


@pytest.mark.asyncio
async def test_forced_tool_choice_applies_to_first_step_only():
    runtime = FakeRuntime([[ToolCallRequest(id="c1", name="search", input={})], [TextDelta("done")]])
    researcher = Researcher(
        model="m",
        policy=_policy(force_first_step_tool="search"),
        tools={"search": EchoTool()},
        runtime=runtime,
    )

    await _run(researcher)

    assert [c["tool_choice"] for c in runtime.calls] == ["search", None]


@pytest.mark.asyncio
async def test_interactive_tool_ends_the_run_awaiting_the_user():
    runtime = FakeRuntime([[ToolCallRequest(id="q1", name="askQuestion", input={"question": "Which?"})]])
    researcher = Researcher(
        model="m",
        policy=_policy(active_tools=("search", "askQuestion")),
        tools={"search": EchoTool(), "askQuestion": QuestionTool()},
        runtime=runtime,
    )

    events = await _run(researcher)

    assert EventType.TOOL_INPUT_AVAILABLE in _types(events)
    assert EventType.TOOL_OUTPUT_AVAILABLE not in _types(events)
    assert events[-1].data["finishReason"] == "tool-calls"
    assert len(runtime.calls) == 1


@pytest.mark.asyncio
async def test_abort_during_model_stream_keeps_partial_text():
    abort = asyncio.Event()
    runtime = FakeRuntime([[TextDelta("Partial")]], hang_on_step=0)
    researcher = Researcher(model="m", policy=_policy(), tools={}, runtime=runtime, abort_event=abort)
    assembler = streaming.MessageAssembler("a1")

    async def consume():
        async for event in researcher.stream(_history(), message_id="a1"):
            assembler.apply(event)
            if event.event is EventType.TEXT_DELTA:
                abort.set()

    await asyncio.wait_for(consume(), timeout=1)

    assert assembler.finish_reason == "abort"
    assert assembler.message.text() == "Partial"
    assert runtime.closed == 1


@pytest.mark.asyncio
async def test_abort_cancels_in_flight_tool():
    abort = asyncio.Event()
    tool = EchoTool(delay=10)
    runtime = FakeRuntime([[ToolCallRequest(id="c1", name="search", input={})]])
    researcher = Researcher(model="m", policy=_policy(), tools={"search": tool}, runtime=runtime, abort_event=abort)
    assembler = streaming.MessageAssembler("a1")

    async def consume():
        async for event in researcher.stream(_history(), message_id="a1"):
            assembler.apply(event)
            if event.event is EventType.TOOL_PROGRESS:
                asyncio.get_running_loop().call_later(0.01, abort.set)

    await asyncio.wait_for(consume(), timeout=1)

    assert tool.cancelled is True
    assert assembler.finish_reason == "abort"
    (tool_part,) = [p for p in assembler.parts if getattr(p, "tool_call_id", None) == "c1"]
    assert tool_part.state == "input-available"


@pytest.mark.asyncio
async def test_writer_receives_every_event():
    writer = RecordingWriter()
    runtime = FakeRuntime([[TextDelta("hi")]])
    researcher = Researcher(model="m", policy=_policy(), tools={}, runtime=runtime, writer=writer)

    events = await _run(researcher)

    assert writer.events == events


def test_create_researcher_quick_mode_wraps_search():
    researcher = create_researcher("openai/gpt-4o-mini", "quick", runtime_factory=lambda: FakeRuntime([]))

    assert isinstance(researcher.tools["search"], QuickModeSearchTool)
    assert researcher.policy.max_steps == 20
    assert [t["name"] for t in researcher.active_model_tools()] == ["search", "fetch"]


def test_create_researcher_with_writer_enables_todo_tools():
    researcher = create_researcher(
        "openai/gpt-4o-mini",
        "planning",
        writer=RecordingWriter(),
        runtime_factory=lambda: FakeRuntime([]),
    )

    assert researcher.policy.force_first_step_tool == "todoWrite"
    assert {"todoWrite", "todoRead"} <= set(researcher.tools)


def test_create_researcher_propagates_runtime_factory_failure():
    def broken_factory():
        raise RuntimeError("no model runtime")

    with patch("morphic.agents.researcher.logger") as mock_logger:
        with pytest.raises(RuntimeError, match="no model runtime"):
            create_researcher("openai/gpt-4o-mini", "adaptive", runtime_factory=broken_factory)

    mock_logger.exception.assert_called_once()
