from __future__ import annotations

from typing import AsyncIterator, Literal

from pydantic import BaseModel, Field

from morphic.tools.base import Tool, ToolEvent


class TodoItem(BaseModel):
    id: str
    content: str
    status: Literal["pending", "in_progress", "completed"] = "pending"
    priority: Literal["high", "medium", "low"] = "medium"


class TodoWriteInput(BaseModel):
    todos: list[TodoItem] = Field(description="The complete, updated todo list")


class TodoReadInput(BaseModel):
    pass


class TodoStore:
    """Plan state shared by the todo tools of one researcher run."""

    def __init__(self) -> None:
        self.todos: list[TodoItem] = []

    def replace(self, todos: list[TodoItem]) -> None:
        self.todos = list(todos)

    def snapshot(self) -> dict:
        completed = sum(1 for t in self.todos if t.status == "completed")
        return {
            "todos": [t.model_dump() for t in self.todos],
            "completedCount": completed,
            "totalCount": len(self.todos),
        }


class TodoWriteTool(Tool):
    name = "todoWrite"
    description = (
        "Create or update the research plan as a todo list. Always send the full list; "
        "mark items in_progress while working on them and completed when done."
    )
    input_model = TodoWriteInput

    def __init__(self, store: TodoStore):
        self.store = store

    async def execute(self, params: TodoWriteInput, *, tool_call_id: str) -> AsyncIterator[ToolEvent]:
        yield ToolEvent(
            state="updating",
            data={"state": "updating", "todos": [t.model_dump() for t in params.todos]},
        )
        self.store.replace(params.todos)
        snapshot = self.store.snapshot()
        snapshot["message"] = (
            f"Todo list updated: {snapshot['completedCount']}/{snapshot['totalCount']} completed"
        )
        yield ToolEvent.complete(snapshot)


class TodoReadTool(Tool):
    name = "todoRead"
    description = "Read the current research todo list and progress."
    input_model = TodoReadInput

    def __init__(self, store: TodoStore):
        self.store = store

    async def execute(self, params: TodoReadInput, *, tool_call_id: str) -> AsyncIterator[ToolEvent]:
        yield ToolEvent(state="reading", data={"state": "reading"})
        yield ToolEvent.complete(self.store.snapshot())


def create_todo_tools() -> dict[str, Tool]:
    store = TodoStore()
    return {"todoWrite": TodoWriteTool(store), "todoRead": TodoReadTool(store)}
