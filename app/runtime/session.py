"""Agent runtime and sessions.

A session owns one conversation with the model. Each ``send`` runs a turn:
the model is called, requested tools are executed and their results fed
back until the model answers without tools. Progress is published as
``SessionEvent`` values to the handlers registered with ``on``.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from cuid2 import cuid_wrapper
from langchain_core.tools import BaseTool

from app.clients.anthropic import (
    AnthropicClient,
    AnthropicConfig,
    AnthropicMessage,
    AnthropicResponse,
    AnthropicTool,
    CacheControl,
    tool_result_block,
)
from app.models.llm import TextBlock, ThinkingBlock, ToolResultBlock, ToolUseBlock, text_of
from app.runtime.events import SessionEvent, SessionEventKind
from app.utils.logging import get_logger

logger = get_logger(__name__)

EventHandler = Callable[[SessionEvent], Awaitable[None]]

MAX_HOPS_MESSAGE = (
    "I stopped because this request needed too many tool calls. "
    "Please narrow it down or ask me to continue."
)

generate_turn_id: Callable[[], str] = cuid_wrapper()


class SessionBusyError(RuntimeError):
    """A turn is already running in this session."""


class SessionClosedError(RuntimeError):
    """The session was destroyed."""


def to_anthropic_tools(tools: list[BaseTool]) -> list[AnthropicTool]:
    """Describe tools for the Messages API, caching the whole tool block."""
    anthropic_tools = []
    for i, tool in enumerate(tools):
        cache_control = CacheControl(type="ephemeral", ttl="5m") if i == len(tools) - 1 else None
        anthropic_tools.append(
            AnthropicTool(
                name=tool.name,
                description=tool.description,
                input_schema=tool.get_input_schema().model_json_schema(),
                cache_control=cache_control,
            )
        )
    return anthropic_tools


class AgentSession:
    """One conversation with the model and a fixed set of tools."""

    def __init__(
        self,
        session_id: str,
        client: AnthropicClient,
        system_prompt: str,
        tools: list[BaseTool],
        streaming: bool = True,
        max_tool_hops: int = 10,
    ):
        self.session_id = session_id
        self.client = client
        self.system_prompt = system_prompt
        self.streaming = streaming
        self.max_tool_hops = max_tool_hops
        self.messages: list[AnthropicMessage] = []

        self._tools = {tool.name: tool for tool in tools}
        self._anthropic_tools = to_anthropic_tools(tools)
        self._handlers: dict[SessionEventKind, list[EventHandler]] = {kind: [] for kind in SessionEventKind}
        self._turn: asyncio.Task[None] | None = None
        self._turn_error: BaseException | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._destroyed = False

    @property
    def is_busy(self) -> bool:
        return self._turn is not None and not self._turn.done()

    @property
    def last_response_text(self) -> str:
        for message in reversed(self.messages):
            if message.role == "assistant" and isinstance(message.content, list):
                return text_of(message.content)
        return ""

    def on(self, kind: SessionEventKind, handler: EventHandler) -> Callable[[], None]:
        """Subscribe to one event kind; returns the unsubscribe function."""
        self._handlers[kind].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[kind]:
                self._handlers[kind].remove(handler)

        return unsubscribe

    async def send(self, prompt: str) -> str:
        """Start a turn in the background and return its id."""
        if self._destroyed:
            raise SessionClosedError(f"Session {self.session_id} was destroyed")
        if self.is_busy:
            raise SessionBusyError(f"Session {self.session_id} is already processing a turn")

        turn_id = generate_turn_id()
        self._turn_error = None
        self._idle.clear()
        self._turn = asyncio.create_task(self._run_turn(prompt, turn_id), name=f"turn-{turn_id}")
        return turn_id

    async def send_and_wait(self, prompt: str, timeout: float | None = None) -> str:
        """Run a turn to completion and return the final assistant text.

        Raises:
            TimeoutError: If the turn does not finish within ``timeout``
        """
        await self.send(prompt)
        try:
            await asyncio.wait_for(self._idle.wait(), timeout)
        except TimeoutError:
            logger.warning(f"Session {self.session_id} turn exceeded {timeout}s, cancelling")
            await self._cancel_turn()
            raise

        if self._turn_error is not None:
            raise self._turn_error
        return self.last_response_text

    async def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        for handlers in self._handlers.values():
            handlers.clear()
        await self._cancel_turn()
        logger.debug(f"Session {self.session_id} destroyed")

    async def _cancel_turn(self) -> None:
        task = self._turn
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _emit(self, event: SessionEvent) -> None:
        # Handlers run one after another so events keep their emission order
        for handler in list(self._handlers[event.kind]):
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"Handler for {event.kind} failed: {e}", exc_info=True)

    async def _run_turn(self, prompt: str, turn_id: str) -> None:
        logger.info(f"Session {self.session_id} turn {turn_id} started")
        self.messages.append(AnthropicMessage(role="user", content=prompt))
        cancelled = False

        try:
            for hop in range(1, self.max_tool_hops + 1):
                logger.debug(f"Turn {turn_id} model call {hop}/{self.max_tool_hops}")
                response = await self._call_model()
                self.messages.append(AnthropicMessage(role="assistant", content=response.content))

                tool_uses = [block for block in response.content if isinstance(block, ToolUseBlock)]
                if response.stop_reason != "tool_use" or not tool_uses:
                    break

                logger.info(f"Model requested {len(tool_uses)} tools")
                results: list[ToolResultBlock] = []
                for block in tool_uses:
                    results.append(await self._execute_tool(block))
                self.messages.append(AnthropicMessage(role="user", content=results))
            else:
                logger.warning(f"Turn {turn_id} reached max tool hops ({self.max_tool_hops})")
                self.messages.append(AnthropicMessage(role="assistant", content=[TextBlock(text=MAX_HOPS_MESSAGE)]))
                await self._emit(SessionEvent(kind=SessionEventKind.MESSAGE_DELTA, delta=MAX_HOPS_MESSAGE))

            logger.info(f"Session {self.session_id} turn {turn_id} completed")

        except asyncio.CancelledError:
            cancelled = True
            raise
        except Exception as e:
            logger.error(f"Session {self.session_id} turn {turn_id} failed: {e}", exc_info=True)
            self._turn_error = e
            await self._emit(SessionEvent(kind=SessionEventKind.SESSION_ERROR, error=str(e) or type(e).__name__))
        finally:
            self._idle.set()
            if not cancelled and not self._destroyed:
                await self._emit(SessionEvent(kind=SessionEventKind.SESSION_IDLE))

    async def _call_model(self) -> AnthropicResponse:
        if self.streaming:
            return await self.client.stream_message(
                messages=self.messages,
                system_prompt=self.system_prompt,
                tools=self._anthropic_tools,
                on_text=self._on_text,
                on_thinking=self._on_thinking,
            )

        response = await self.client.create_message(
            messages=self.messages,
            system_prompt=self.system_prompt,
            tools=self._anthropic_tools,
        )
        # Without streaming each block is delivered as one delta
        for block in response.content:
            if isinstance(block, ThinkingBlock):
                await self._on_thinking(block.thinking)
            elif isinstance(block, TextBlock):
                await self._on_text(block.text)
        return response

    async def _on_text(self, delta: str) -> None:
        if delta:
            await self._emit(SessionEvent(kind=SessionEventKind.MESSAGE_DELTA, delta=delta))

    async def _on_thinking(self, delta: str) -> None:
        if delta:
            await self._emit(SessionEvent(kind=SessionEventKind.REASONING_DELTA, delta=delta))

    async def _execute_tool(self, block: ToolUseBlock) -> ToolResultBlock:
        await self._emit(
            SessionEvent(
                kind=SessionEventKind.TOOL_EXECUTION_START,
                tool_call_id=block.id,
                tool_name=block.name,
                arguments=block.input,
            )
        )

        result: Any = None
        error: str | None = None
        tool = self._tools.get(block.name)
        if tool is None:
            logger.error(f"Unknown tool requested: {block.name}")
            error = f"Unknown tool: {block.name}"
        else:
            logger.debug(f"Executing tool: {block.name} with input: {block.input}")
            try:
                result = await tool.ainvoke(block.input)
            except Exception as e:
                # Input that does not match the tool's schema
                logger.warning(f"Tool {block.name} rejected its input: {e}")
                error = str(e)
            else:
                if isinstance(result, dict) and "error" in result:
                    error = str(result["error"])

        success = error is None
        await self._emit(
            SessionEvent(
                kind=SessionEventKind.TOOL_EXECUTION_COMPLETE,
                tool_call_id=block.id,
                tool_name=block.name,
                success=success,
                result=result if success else None,
                error=error,
            )
        )
        return tool_result_block(block.id, result if success else {"error": error}, is_error=not success)


class AgentRuntime:
    """Owns the model client and the sessions created from it."""

    def __init__(
        self,
        config: AnthropicConfig | None = None,
        client_factory: Callable[[], AnthropicClient] | None = None,
    ):
        self.config = config
        self._client_factory = client_factory or (lambda: AnthropicClient(config=self.config))
        self._client: AnthropicClient | None = None
        self._sessions: dict[str, AgentSession] = {}

    @property
    def started(self) -> bool:
        return self._client is not None

    async def start(self) -> None:
        if self._client is None:
            self._client = self._client_factory()
            logger.debug("Agent runtime started")

    async def stop(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.destroy()
        if self._client is not None:
            client, self._client = self._client, None
            await client.close()
            logger.debug("Agent runtime stopped")

    async def create_session(
        self,
        session_id: str,
        system_prompt: str,
        tools: list[BaseTool],
        streaming: bool = True,
        max_tool_hops: int = 10,
    ) -> AgentSession:
        if self._client is None:
            raise RuntimeError("Agent runtime is not started")

        session = AgentSession(
            session_id=session_id,
            client=self._client,
            system_prompt=system_prompt,
            tools=tools,
            streaming=streaming,
            max_tool_hops=max_tool_hops,
        )
        self._sessions[session_id] = session
        logger.info(f"Created session {session_id} with {len(tools)} tools")
        return session
