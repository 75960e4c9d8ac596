"""Payloads carried by the chat event stream.

Every payload is one JSON object. Content events are tagged by ``type``;
the terminal ``{"error": ...}`` and ``{"done": true}`` payloads have no tag.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class StreamEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TextEvent(StreamEvent):
    """One incremental text delta."""

    type: Literal["text"] = "text"
    content: str


class ReasoningEvent(StreamEvent):
    """One incremental reasoning delta."""

    type: Literal["reasoning"] = "reasoning"
    content: str


class ToolCallStartEvent(StreamEvent):
    type: Literal["tool_call_start"] = "tool_call_start"
    tool_call_id: str | None = Field(None, alias="toolCallId")
    tool_name: str = Field(alias="toolName")
    input: dict[str, Any] = {}


class ToolCallResultEvent(StreamEvent):
    type: Literal["tool_call_result"] = "tool_call_result"
    tool_call_id: str | None = Field(None, alias="toolCallId")
    result: Any = None
    is_error: bool = Field(False, alias="isError")
    error: str | None = None


class ErrorEvent(StreamEvent):
    """Terminal error; only the done marker may follow."""

    error: str


class DoneEvent(StreamEvent):
    """Always the last payload of a well-formed stream."""

    done: Literal[True] = True


ContentEvent = Annotated[
    TextEvent | ReasoningEvent | ToolCallStartEvent | ToolCallResultEvent,
    Field(discriminator="type"),
]
ChatEvent = TextEvent | ReasoningEvent | ToolCallStartEvent | ToolCallResultEvent | ErrorEvent | DoneEvent

_content_event_adapter: TypeAdapter[Any] = TypeAdapter(ContentEvent)

CONTENT_EVENT_TYPES = frozenset({"text", "reasoning", "tool_call_start", "tool_call_result"})


def dump_event(event: ChatEvent) -> str:
    """JSON text of one payload, using the wire field names."""
    return event.model_dump_json(by_alias=True, exclude_none=True)


def parse_stream_event(data: dict[str, Any]) -> ChatEvent | None:
    """Build the event for one decoded payload.

    Returns ``None`` for payloads of an unknown type so newer servers can
    add event kinds without breaking older clients.

    Raises:
        ValueError: If a known payload is missing required fields
    """
    try:
        if "type" not in data:
            if "error" in data:
                return ErrorEvent.model_validate(data)
            if data.get("done"):
                return DoneEvent()
            return None
        if data["type"] not in CONTENT_EVENT_TYPES:
            return None
        return _content_event_adapter.validate_python(data)
    except ValidationError as e:
        raise ValueError(f"Invalid stream payload: {e}") from e
