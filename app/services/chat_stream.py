"""Drives one chat request: agent session in, event stream out."""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime
from enum import StrEnum

from langchain_core.tools import BaseTool

from app.config import ChatSettings
from app.models.conversation import ChatTurn
from app.models.events import ErrorEvent, ReasoningEvent, TextEvent, ToolCallResultEvent, ToolCallStartEvent
from app.runtime import AgentRuntime, AgentSession, SessionEvent, SessionEventKind
from app.services.sse import SSEEncoder
from app.utils.logging import get_logger

logger = get_logger(__name__)

Cleanup = Callable[[], Awaitable[None]]


def get_system_prompt() -> str:
    """System instruction for the Taiga assistant."""
    return f"""You are an expert project-management assistant that helps users work with Taiga, an agile project-management platform.

Your role:
1. Understand the user's requests in natural language
2. Use the available tools to read information or perform actions in Taiga
3. Give clear, useful answers based on real data

Strict rules:
- NEVER make up data. If you do not have the information, use the tools to get it
- NEVER assume IDs of projects, sprints or stories. Always look them up first
- If the user does not name a project, ask which one to use or list the available ones
- When you create or modify items, always confirm the action you performed
- If an operation fails, explain the error clearly to the user

Ordering results:
- For "recent", "latest" or "newest" items use orderBy="-created_date"
- For "oldest" or "first" items use orderBy="created_date"
- When the user asks for a specific number of items (e.g. "the last 3"), use limit together with orderBy

Comments:
- When the user asks about the context or details of a story or task, consider reading its comments
- When the user asks to add a note or comment, use the comment creation tools

Response format:
- Use markdown
- Present lists of items in a clear, organized way
- Include IDs and references when useful
- Be concise but informative

Current date and time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"""


class DriverState(StrEnum):
    CREATED = "created"
    STARTED = "started"
    SESSION_CREATED = "session_created"
    REPLAYING_HISTORY = "replaying_history"
    AWAITING_FINAL_TURN = "awaiting_final_turn"
    TERMINATED = "terminated"


class ChatStreamDriver:
    """Runs one agent turn for a chat request and streams its events.

    ``prepare`` starts the runtime, creates the session and replays prior
    user turns; failures there propagate to the caller before any byte is
    streamed. ``run`` submits the final turn in the background. The stream
    is closed exactly once, by ``_finish``, when the session goes idle, when
    the safety timeout elapses, when submission fails or when the client
    disconnects.
    """

    def __init__(
        self,
        runtime: AgentRuntime,
        tools: list[BaseTool],
        settings: ChatSettings,
        session_id: str,
        system_prompt: str | None = None,
        cleanup: Cleanup | None = None,
    ):
        self.runtime = runtime
        self.tools = tools
        self.settings = settings
        self.session_id = session_id
        self.system_prompt = system_prompt or get_system_prompt()
        self.encoder = SSEEncoder()
        self.state = DriverState.CREATED

        self._cleanup = cleanup
        self._session: AgentSession | None = None
        self._closed = False
        self._terminated = asyncio.Event()
        self._unsubscribers: list[Callable[[], None]] = []
        self._submit_task: asyncio.Task[None] | None = None
        self._teardown_task: asyncio.Task[None] | None = None

        self._handlers: dict[SessionEventKind, Callable[[SessionEvent], Awaitable[None]]] = {
            SessionEventKind.MESSAGE_DELTA: self._on_message_delta,
            SessionEventKind.REASONING_DELTA: self._on_reasoning_delta,
            SessionEventKind.TOOL_EXECUTION_START: self._on_tool_start,
            SessionEventKind.TOOL_EXECUTION_COMPLETE: self._on_tool_complete,
            SessionEventKind.SESSION_IDLE: self._on_idle,
            SessionEventKind.SESSION_ERROR: self._on_error,
        }
        missing = set(SessionEventKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for session events: {sorted(missing)}")

    @property
    def closed(self) -> bool:
        return self._closed

    async def prepare(self, history: list[ChatTurn]) -> None:
        """Start the runtime, create the session and replay prior user turns."""
        await self.runtime.start()
        self.state = DriverState.STARTED

        self._session = await self.runtime.create_session(
            session_id=self.session_id,
            system_prompt=self.system_prompt,
            tools=self.tools,
            streaming=True,
            max_tool_hops=self.settings.max_tool_hops,
        )
        self.state = DriverState.SESSION_CREATED

        # Assistant turns are regenerated by the model while replaying
        self.state = DriverState.REPLAYING_HISTORY
        user_turns = [turn for turn in history if turn.role == "user"]
        if user_turns:
            logger.info(f"Replaying {len(user_turns)} prior user turns into session {self.session_id}")
        for turn in user_turns:
            await self._session.send_and_wait(turn.content, timeout=self.settings.history_timeout)

    def run(self, prompt: str) -> None:
        """Subscribe to the session and submit ``prompt`` without waiting."""
        if self._session is None:
            raise RuntimeError("prepare() must complete before run()")

        for kind, handler in self._handlers.items():
            self._unsubscribers.append(self._session.on(kind, handler))

        self.state = DriverState.AWAITING_FINAL_TURN
        self._submit_task = asyncio.create_task(self._submit(prompt), name=f"chat-submit-{self.session_id}")

    async def stream(self) -> AsyncIterator[str]:
        """Wire chunks for the HTTP response; ending early counts as a disconnect."""
        try:
            async for chunk in self.encoder.stream():
                yield chunk
        finally:
            self.abort()

    def abort(self) -> None:
        if not self._closed:
            logger.info(f"Client disconnected from session {self.session_id}")
            self._finish()

    async def aclose(self) -> None:
        """Close the stream and wait for teardown to complete."""
        self._finish()
        if self._teardown_task is not None:
            await self._teardown_task

    async def wait_closed(self) -> None:
        await self._terminated.wait()
        if self._teardown_task is not None:
            await self._teardown_task

    async def _submit(self, prompt: str) -> None:
        try:
            await self._session.send(prompt)
        except Exception as e:
            logger.error(f"Could not submit turn to session {self.session_id}: {e}", exc_info=True)
            self._finish(error=str(e) or "Unknown error")
            return

        try:
            await asyncio.wait_for(self._terminated.wait(), self.settings.turn_timeout)
        except TimeoutError:
            logger.warning(f"Session {self.session_id} did not go idle within {self.settings.turn_timeout}s")
            self._finish()

    def _finish(self, error: str | None = None) -> None:
        """Single terminal transition: optional error, done marker, teardown."""
        if self._closed:
            return
        self._closed = True
        self.state = DriverState.TERMINATED

        if error is not None:
            self.encoder.send(ErrorEvent(error=error))
        self.encoder.close()
        self._terminated.set()

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

        self._teardown_task = asyncio.create_task(self._teardown(), name=f"chat-teardown-{self.session_id}")

    async def _teardown(self) -> None:
        # Errors here are logged only; the response is already closing
        if self._session is not None:
            try:
                await self._session.destroy()
            except Exception as e:
                logger.debug(f"Ignoring session teardown error: {e}")
        try:
            await self.runtime.stop()
        except Exception as e:
            logger.debug(f"Ignoring runtime teardown error: {e}")
        if self._cleanup is not None:
            try:
                await self._cleanup()
            except Exception as e:
                logger.debug(f"Ignoring cleanup error: {e}")
        logger.info(f"Session {self.session_id} torn down")

    async def _on_message_delta(self, event: SessionEvent) -> None:
        if event.delta:
            self.encoder.send(TextEvent(content=event.delta))

    async def _on_reasoning_delta(self, event: SessionEvent) -> None:
        if event.delta:
            self.encoder.send(ReasoningEvent(content=event.delta))

    async def _on_tool_start(self, event: SessionEvent) -> None:
        logger.info(f"Tool {event.tool_name} started ({event.tool_call_id})")
        self.encoder.send(
            ToolCallStartEvent(
                tool_call_id=event.tool_call_id,
                tool_name=event.tool_name or "unknown",
                input=event.arguments or {},
            )
        )

    async def _on_tool_complete(self, event: SessionEvent) -> None:
        if event.success:
            logger.info(f"Tool {event.tool_name} completed ({event.tool_call_id})")
        else:
            logger.warning(f"Tool {event.tool_name} failed ({event.tool_call_id}): {event.error}")
        self.encoder.send(
            ToolCallResultEvent(
                tool_call_id=event.tool_call_id,
                result=event.result,
                is_error=not event.success,
                error=None if event.success else event.error,
            )
        )

    async def _on_idle(self, event: SessionEvent) -> None:
        self._finish()

    async def _on_error(self, event: SessionEvent) -> None:
        self._finish(error=event.error or "Unknown error")
