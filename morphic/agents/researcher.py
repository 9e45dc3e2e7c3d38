"""Researcher agent: a step-bounded tool-use loop over the model runtime.

Each step streams one model turn, then runs the requested tools in call order
and feeds their results back before the next step. The loop ends when a step
requests no tools, an interactive tool is called, the step budget runs out,
or the abort event is set. Everything observable is yielded as ``SSEEvent``s
and mirrored into the writer when one is attached.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol

from loguru import logger

from morphic.agents.modes import ModePolicy, SearchMode, get_mode_policy
from morphic.config import settings
from morphic.llm_client import (
    ReasoningDelta,
    StepFinish,
    TextBlock,
    TextDelta,
    ToolCallRequest,
    ToolUseBlock,
    get_runtime,
    tool_result_block,
    ui_messages_to_model_messages,
)
from morphic.models.events import SSEEvent
from morphic.models.parts import UIMessage, generate_id
from morphic.services import streaming
from morphic.services.prompt_store import render_prompt
from morphic.tools.base import COMPLETE, Tool, run_tool
from morphic.tools.registry import create_tools
from morphic.tools.search import QuickModeSearchTool, SearchTool

FINISH_STOP = "stop"
FINISH_TOOL_CALLS = "tool-calls"
FINISH_MAX_STEPS = "max-steps"
FINISH_ABORT = "abort"

_DONE = object()


class StreamSink(Protocol):
    async def write(self, event: SSEEvent) -> None: ...


async def _anext(iterator: AsyncIterator[Any]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _DONE


class Researcher:
    def __init__(
        self,
        *,
        model: str,
        policy: ModePolicy,
        tools: dict[str, Tool],
        runtime: Any,
        writer: StreamSink | None = None,
        abort_event: asyncio.Event | None = None,
    ):
        self.model = model
        self.policy = policy
        self.tools = tools
        self.runtime = runtime
        self.writer = writer
        self.abort_event = abort_event
        self.system_prompt = "\n".join(
            [
                policy.system_prompt,
                render_prompt("researcher.date_line", current_date=datetime.now().strftime("%c")),
            ]
        )

    @property
    def aborted(self) -> bool:
        return self.abort_event is not None and self.abort_event.is_set()

    def active_model_tools(self) -> list[dict[str, Any]]:
        return [self.tools[name].to_model_tool() for name in self.policy.active_tools if name in self.tools]

    async def _race_abort(self, awaitable: Awaitable[Any]) -> tuple[Any, bool]:
        """Await ``awaitable`` unless the abort event fires first.

        Returns ``(result, aborted)``. On abort the pending work is cancelled
        and awaited so its ``finally`` blocks close network resources.
        """
        if self.abort_event is None:
            return await awaitable, False
        if self.abort_event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            return None, True

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.abort_event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

        if work.done():
            return work.result(), False

        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        return None, True

    async def _emit(self, event: SSEEvent) -> SSEEvent:
        if self.writer is not None:
            await self.writer.write(event)
        return event

    async def stream(self, messages: list[UIMessage], *, message_id: str | None = None) -> AsyncIterator[SSEEvent]:
        context = ui_messages_to_model_messages(messages)
        model_tools = self.active_model_tools()
        finish_reason = FINISH_MAX_STEPS

        yield await self._emit(streaming.start(message_id or generate_id()))

        for step in range(self.policy.max_steps):
            if self.aborted:
                finish_reason = FINISH_ABORT
                break

            tool_choice = self.policy.force_first_step_tool if step == 0 else None
            yield await self._emit(streaming.start_step(step))

            text_chunks: list[str] = []
            calls: list[ToolCallRequest] = []
            step_finish: StepFinish | None = None

            model_events = self.runtime.stream_step(
                model=self.model,
                system=self.system_prompt,
                messages=context,
                tools=model_tools,
                tool_choice=tool_choice,
                max_tokens=settings.max_output_tokens,
            )
            aborted = False
            try:
                while True:
                    event, aborted = await self._race_abort(_anext(model_events))
                    if aborted or event is _DONE:
                        break
                    if isinstance(event, TextDelta):
                        text_chunks.append(event.text)
                        yield await self._emit(streaming.text_delta(event.text))
                    elif isinstance(event, ReasoningDelta):
                        yield await self._emit(streaming.reasoning_delta(event.text))
                    elif isinstance(event, ToolCallRequest):
                        calls.append(event)
                    elif isinstance(event, StepFinish):
                        step_finish = event
            finally:
                await model_events.aclose()

            if aborted:
                finish_reason = FINISH_ABORT
                break

            assistant_blocks: list[Any] = []
            if text_chunks:
                assistant_blocks.append(TextBlock(type="text", text="".join(text_chunks)))
            assistant_blocks.extend(
                ToolUseBlock(type="tool_use", id=call.id, name=call.name, input=call.input) for call in calls
            )
            if assistant_blocks:
                context.append({"role": "assistant", "content": assistant_blocks})

            usage = step_finish.usage if step_finish else None
            step_reason = step_finish.finish_reason if step_finish else FINISH_STOP

            if not calls:
                yield await self._emit(
                    streaming.finish_step(
                        step,
                        step_reason,
                        inputTokens=usage.input_tokens if usage else 0,
                        outputTokens=usage.output_tokens if usage else 0,
                    )
                )
                finish_reason = FINISH_STOP
                break

            results: list[dict[str, Any]] = []
            awaiting_user = False
            for call in calls:
                tool = self.tools.get(call.name) if call.name in self.policy.active_tools else None
                yield await self._emit(streaming.tool_input_available(call.id, call.name, call.input))

                if tool is None:
                    message = f"Tool {call.name} is not available"
                    logger.warning(f"Model requested unavailable tool {call.name} ({call.id})")
                    yield await self._emit(streaming.tool_output_error(call.id, message))
                    results.append(tool_result_block(call.id, message, is_error=True))
                    continue

                if tool.interactive:
                    awaiting_user = True
                    continue

                tool_events = run_tool(tool, call.input, tool_call_id=call.id)
                try:
                    while True:
                        tool_event, aborted = await self._race_abort(_anext(tool_events))
                        if aborted or tool_event is _DONE:
                            break
                        if not tool_event.terminal:
                            yield await self._emit(
                                streaming.tool_progress(call.id, call.name, tool_event.part_state, tool_event.data)
                            )
                        elif tool_event.state == COMPLETE:
                            yield await self._emit(streaming.tool_output_available(call.id, tool_event.data))
                            results.append(tool_result_block(call.id, tool_event.data))
                        else:
                            error_text = tool_event.error_text or "Tool failed"
                            yield await self._emit(streaming.tool_output_error(call.id, error_text))
                            results.append(tool_result_block(call.id, error_text, is_error=True))
                finally:
                    await tool_events.aclose()
                if aborted:
                    break

            if aborted:
                finish_reason = FINISH_ABORT
                break

            if results:
                context.append({"role": "user", "content": results})

            yield await self._emit(
                streaming.finish_step(
                    step,
                    step_reason,
                    inputTokens=usage.input_tokens if usage else 0,
                    outputTokens=usage.output_tokens if usage else 0,
                )
            )

            if awaiting_user:
                finish_reason = FINISH_TOOL_CALLS
                break

        if finish_reason == FINISH_MAX_STEPS:
            logger.info(f"Researcher stopped after {self.policy.max_steps} steps")
        elif finish_reason == FINISH_ABORT:
            logger.info("Researcher aborted")

        yield await self._emit(streaming.finish(finish_reason))


def create_researcher(
    model: str,
    search_mode: "str | SearchMode | None" = None,
    *,
    writer: StreamSink | None = None,
    abort_event: asyncio.Event | None = None,
    runtime_factory: Callable[[], Any] = get_runtime,
) -> Researcher:
    """Build a researcher for one request.

    Errors from the runtime factory or tool construction are logged and
    re-raised; there is no fallback model.
    """
    try:
        policy = get_mode_policy(search_mode or settings.default_search_mode, has_writer=writer is not None)
        logger.info(
            f"Researcher {policy.mode.value} mode: maxSteps={policy.max_steps}, "
            f"tools=[{', '.join(policy.active_tools)}]"
        )

        tools = create_tools(model, with_todo=writer is not None)
        if policy.force_optimized_search:
            search_tool = tools["search"]
            if isinstance(search_tool, SearchTool):
                tools["search"] = QuickModeSearchTool(search_tool)

        runtime = runtime_factory()
    except Exception:
        logger.exception("Error creating researcher")
        raise

    return Researcher(
        model=model,
        policy=policy,
        tools=tools,
        runtime=runtime,
        writer=writer,
        abort_event=abort_event,
    )
