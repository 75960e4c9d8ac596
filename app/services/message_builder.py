"""Folding stream events into an assistant message.

``fold_event`` is pure: it never mutates its inputs and returns the next
state. Text and reasoning deltas merge into the trailing part only when it
has the same type; a switch of type always starts a new part. Tool results
are matched to their start event strictly by tool call id.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from app.models.events import (
    ChatEvent,
    ReasoningEvent,
    TextEvent,
    ToolCallResultEvent,
    ToolCallStartEvent,
)
from app.models.messages import (
    Message,
    MessagePart,
    ReasoningPart,
    TextPart,
    ToolCallPart,
    ToolCallState,
    generate_id,
)
from app.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class FoldState:
    """In-flight assistant message plus tool call id -> part index."""

    message: Message
    tool_calls: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def start(cls, message: Message | None = None) -> "FoldState":
        return cls(message=message or Message.assistant())


def _append_delta(
    parts: tuple[MessagePart, ...], part_type: type[TextPart | ReasoningPart], delta: str
) -> tuple[MessagePart, ...]:
    if parts and type(parts[-1]) is part_type:
        return (*parts[:-1], part_type(text=parts[-1].text + delta))
    return (*parts, part_type(text=delta))


def fold_event(state: FoldState, event: ChatEvent) -> FoldState:
    """Apply one event to the message.

    Error and done payloads do not change the message; the caller handles
    them as terminal signals.
    """
    message = state.message

    if isinstance(event, TextEvent):
        updated = message.model_copy(
            update={
                "content": message.content + event.content,
                "parts": _append_delta(message.parts, TextPart, event.content),
            }
        )
        return FoldState(updated, state.tool_calls)

    if isinstance(event, ReasoningEvent):
        updated = message.model_copy(update={"parts": _append_delta(message.parts, ReasoningPart, event.content)})
        return FoldState(updated, state.tool_calls)

    if isinstance(event, ToolCallStartEvent):
        tool_call_id = event.tool_call_id or f"tool-{generate_id()}"
        part = ToolCallPart(tool_call_id=tool_call_id, tool_name=event.tool_name, input=event.input)
        tool_calls = MappingProxyType({**state.tool_calls, tool_call_id: len(message.parts)})
        return FoldState(message.model_copy(update={"parts": (*message.parts, part)}), tool_calls)

    if isinstance(event, ToolCallResultEvent):
        index = state.tool_calls.get(event.tool_call_id) if event.tool_call_id else None
        if index is None:
            logger.warning(f"Dropping result for unknown tool call {event.tool_call_id!r}")
            return state

        part = message.parts[index]
        if not isinstance(part, ToolCallPart) or part.is_finished:
            logger.warning(f"Tool call {event.tool_call_id} already has a result")
            return state

        if event.is_error:
            finished = part.model_copy(
                update={"state": ToolCallState.OUTPUT_ERROR, "error_text": event.error or "Tool execution failed"}
            )
        else:
            finished = part.model_copy(update={"state": ToolCallState.OUTPUT_AVAILABLE, "output": event.result})

        parts = (*message.parts[:index], finished, *message.parts[index + 1 :])
        return FoldState(message.model_copy(update={"parts": parts}), state.tool_calls)

    return state


def fold_events(events: list[ChatEvent], message: Message | None = None) -> Message:
    """Fold a whole event sequence; handy for replaying a recorded stream."""
    state = FoldState.start(message)
    for event in events:
        state = fold_event(state, event)
    return state.message
