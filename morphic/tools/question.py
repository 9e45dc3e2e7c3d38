from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from morphic.tools.base import Tool


class QuestionOption(BaseModel):
    value: str
    label: str


class QuestionInput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    question: str = Field(description="The question to ask the user")
    options: list[QuestionOption] = Field(
        default_factory=list, description="Choices the user can pick from"
    )
    allows_input: bool = Field(default=False, description="Whether free-form input is accepted")
    input_label: str | None = None
    input_placeholder: str | None = None


class QuestionTool(Tool):
    """Asks the user a clarifying question. The client supplies the answer."""

    name = "askQuestion"
    description = (
        "Ask the user a clarifying question when the request is ambiguous. "
        "Offer concrete options where possible."
    )
    input_model = QuestionInput
    interactive = True
