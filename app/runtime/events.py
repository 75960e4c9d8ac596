"""Events emitted by an agent session."""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class SessionEventKind(StrEnum):
    """Closed set of event kinds a session can emit."""

    MESSAGE_DELTA = "assistant.message_delta"
    REASONING_DELTA = "assistant.reasoning_delta"
    TOOL_EXECUTION_START = "tool.execution_start"
    TOOL_EXECUTION_COMPLETE = "tool.execution_complete"
    SESSION_IDLE = "session.idle"
    SESSION_ERROR = "session.error"


@dataclass(frozen=True)
class SessionEvent:
    kind: SessionEventKind
    delta: str = ""
    tool_call_id: str | None = None
    tool_name: str | None = None
    arguments: dict[str, Any] | None = None
    success: bool = True
    result: Any = None
    error: str | None = None
