from __future__ import annotations

from morphic.tools.base import Tool
from morphic.tools.fetch import FetchTool
from morphic.tools.question import QuestionTool
from morphic.tools.search import SearchTool
from morphic.tools.todo import create_todo_tools


def create_tools(model: str, *, with_todo: bool = False) -> dict[str, Tool]:
    """Build the full tool set for one researcher run, keyed by model-facing name."""
    tools: dict[str, Tool] = {
        "search": SearchTool(model),
        "fetch": FetchTool(),
        "askQuestion": QuestionTool(),
    }
    if with_todo:
        tools.update(create_todo_tools())
    return tools
