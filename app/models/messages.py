"""Structured chat messages rebuilt from the event stream."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from cuid2 import cuid_wrapper
from pydantic import BaseModel, ConfigDict, Field

generate_id = cuid_wrapper()


class ToolCallState(StrEnum):
    INPUT_STREAMING = "input-streaming"
    INPUT_AVAILABLE = "input-available"
    OUTPUT_AVAILABLE = "output-available"
    OUTPUT_ERROR = "output-error"


class Part(BaseModel):
    model_config = ConfigDict(frozen=True)


class TextPart(Part):
    type: Literal["text"] = "text"
    text: str


class ReasoningPart(Part):
    type: Literal["reasoning"] = "reasoning"
    text: str


class ToolCallPart(Part):
    """One tool invocation; correlated with its result by ``tool_call_id``."""

    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    input: dict[str, Any] = {}
    state: ToolCallState = ToolCallState.INPUT_AVAILABLE
    output: Any = None
    error_text: str | None = None

    @property
    def is_finished(self) -> bool:
        return self.state in (ToolCallState.OUTPUT_AVAILABLE, ToolCallState.OUTPUT_ERROR)


MessagePart = Annotated[TextPart | ReasoningPart | ToolCallPart, Field(discriminator="type")]


class Message(BaseModel):
    """One conversational turn.

    ``content`` is the concatenated text of the turn; ``parts`` keeps the
    emission order of text, reasoning and tool calls.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_id)
    role: Literal["user", "assistant"]
    content: str = ""
    parts: tuple[MessagePart, ...] = ()
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role="user", content=content, parts=(TextPart(text=content),))

    @classmethod
    def assistant(cls) -> "Message":
        return cls(role="assistant")

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        return [part for part in self.parts if isinstance(part, ToolCallPart)]
