"""In-process agent runtime on top of the Anthropic Messages API."""

from app.runtime.events import SessionEvent, SessionEventKind
from app.runtime.session import AgentRuntime, AgentSession, SessionBusyError

__all__ = ["AgentRuntime", "AgentSession", "SessionBusyError", "SessionEvent", "SessionEventKind"]
