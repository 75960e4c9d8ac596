"""Client for the chat endpoint: decodes the event stream into messages."""

import asyncio
import json
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any, Literal

import httpx

from app.models.events import DoneEvent, ErrorEvent, ToolCallStartEvent, parse_stream_event
from app.models.messages import Message, TextPart
from app.services.message_builder import FoldState, fold_event
from app.utils.logging import get_logger

logger = get_logger(__name__)

DATA_PREFIX = "data:"
DEFAULT_ERROR_MESSAGE = "Error processing the message"

MessageCallback = Callable[[Message], Awaitable[None] | None]
ErrorCallback = Callable[[Exception], Awaitable[None] | None]
ToolCallCallback = Callable[[ToolCallStartEvent], Awaitable[None] | None]


class ChatStatus(StrEnum):
    READY = "ready"
    SUBMITTED = "submitted"
    STREAMING = "streaming"
    ERROR = "error"


class ChatStreamError(Exception):
    """The turn failed: error payload, HTTP error or broken stream."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ChatProtocolError(ChatStreamError):
    """A complete stream line could not be decoded."""


class ChatBusyError(RuntimeError):
    """A turn is already in flight."""


class StreamLineBuffer:
    """Splits stream chunks into complete ``data:`` payloads.

    Only newline-terminated lines are parsed while streaming; a complete
    line that is not valid JSON is a protocol error. The unterminated tail
    left when the stream ends is parsed leniently.
    """

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: str) -> list[dict[str, Any]]:
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        payloads = []
        for line in lines:
            payload = self._parse_line(line, strict=True)
            if payload is not None:
                payloads.append(payload)
        return payloads

    def flush(self) -> list[dict[str, Any]]:
        tail, self._buffer = self._buffer, ""
        payload = self._parse_line(tail, strict=False)
        return [payload] if payload is not None else []

    @staticmethod
    def _parse_line(line: str, strict: bool) -> dict[str, Any] | None:
        line = line.strip()
        if not line.startswith(DATA_PREFIX):
            return None
        data = line[len(DATA_PREFIX) :].strip()
        if not data:
            return None

        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            if strict:
                raise ChatProtocolError(f"Malformed stream payload: {data[:200]}") from e
            logger.debug(f"Ignoring incomplete trailing payload: {data[:200]}")
            return None

        if not isinstance(payload, dict):
            if strict:
                raise ChatProtocolError(f"Stream payload is not an object: {data[:200]}")
            return None
        return payload


async def _notify(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if asyncio.iscoroutine(result):
        await result


class ChatClient:
    """Conversation state for one chat, kept in sync with the event stream.

    Example:
        async with ChatClient("http://localhost:8000", token, backend_url) as chat:
            reply = await chat.send_message("list my projects")
    """

    def __init__(
        self,
        api_url: str,
        credential: str,
        backend_url: str,
        session_id: str | None = None,
        messages: list[Message] | None = None,
        on_finish: MessageCallback | None = None,
        on_error: ErrorCallback | None = None,
        on_tool_call: ToolCallCallback | None = None,
        on_update: MessageCallback | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        self.chat_url = f"{api_url.rstrip('/')}/api/chat"
        self.credential = credential
        self.backend_url = backend_url
        self.session_id = session_id
        self.messages: list[Message] = list(messages or [])
        self.status = ChatStatus.READY
        self.error: Exception | None = None

        self.on_finish = on_finish
        self.on_error = on_error
        self.on_tool_call = on_tool_call
        self.on_update = on_update

        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=10.0))
        self._turn: asyncio.Task[Message | None] | None = None
        self._stopping = False

    async def __aenter__(self) -> "ChatClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.stop()
        if self._owns_http:
            await self._http.aclose()

    @property
    def is_loading(self) -> bool:
        return self.status in (ChatStatus.SUBMITTED, ChatStatus.STREAMING)

    async def send_message(self, text: str) -> Message | None:
        """Send a user message and stream the reply.

        Returns the finished assistant message, or ``None`` when the input
        is blank or the turn was stopped.

        Raises:
            ChatBusyError: If another turn is still in flight
        """
        if not text.strip():
            return None
        if self.is_loading:
            raise ChatBusyError("A message is already being processed")

        self.messages.append(Message.user(text))
        return await self._run_turn()

    async def reload(self) -> Message | None:
        """Regenerate the reply to the most recent user message."""
        if self.is_loading:
            raise ChatBusyError("A message is already being processed")

        last_user = next((i for i in range(len(self.messages) - 1, -1, -1) if self.messages[i].role == "user"), None)
        if last_user is None:
            return None

        text = self.messages[last_user].content
        del self.messages[last_user:]
        return await self.send_message(text)

    def append(self, role: Literal["user", "assistant"], content: str) -> Message:
        """Add a finished message without contacting the server."""
        message = Message(role=role, content=content, parts=(TextPart(text=content),))
        self.messages.append(message)
        return message

    async def stop(self) -> None:
        """Abort the in-flight turn; the partial reply is discarded."""
        task = self._turn
        if task is None or task.done():
            return
        self._stopping = True
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _run_turn(self) -> Message | None:
        self._stopping = False
        self.error = None
        self.status = ChatStatus.SUBMITTED
        self._turn = asyncio.create_task(self._stream_turn(), name="chat-turn")
        try:
            return await self._turn
        except asyncio.CancelledError:
            if not self._stopping:
                raise
            self.status = ChatStatus.READY
            return None
        finally:
            self._turn = None

    def _request_body(self, history: list[Message]) -> dict[str, Any]:
        body: dict[str, Any] = {
            "messages": [{"role": m.role, "content": m.content} for m in history],
            "credential": self.credential,
            "backendUrl": self.backend_url,
        }
        if self.session_id:
            body["sessionId"] = self.session_id
        return body

    def _replace_last(self, message: Message) -> None:
        self.messages[-1] = message

    async def _stream_turn(self) -> Message | None:
        history = list(self.messages)
        state = FoldState.start()
        self.messages.append(state.message)

        try:
            async with self._http.stream("POST", self.chat_url, json=self._request_body(history)) as response:
                if response.is_error:
                    await response.aread()
                    raise ChatStreamError(self._error_message(response), response.status_code)

                self.status = ChatStatus.STREAMING
                buffer = StreamLineBuffer()
                finished = False
                async for chunk in response.aiter_text():
                    for payload in buffer.feed(chunk):
                        state, finished = await self._apply(state, payload)
                        if finished:
                            break
                    if finished:
                        break

                if not finished:
                    for payload in buffer.flush():
                        state, finished = await self._apply(state, payload)

                if not finished:
                    raise ChatStreamError("The response stream ended unexpectedly")

        except asyncio.CancelledError:
            if self._stopping:
                # Partial replies are never finalized
                if self.messages and self.messages[-1].id == state.message.id:
                    self.messages.pop()
                self.status = ChatStatus.READY
                logger.info("Chat turn stopped")
            raise
        except (ChatStreamError, httpx.HTTPError) as e:
            error = e if isinstance(e, ChatStreamError) else ChatStreamError(str(e) or type(e).__name__)
            await self._fail(state.message, error)
            return None

        self.status = ChatStatus.READY
        await _notify(self.on_finish, state.message)
        return state.message

    async def _apply(self, state: FoldState, payload: dict[str, Any]) -> tuple[FoldState, bool]:
        """Fold one payload; the flag is True once the done marker is seen."""
        try:
            event = parse_stream_event(payload)
        except ValueError as e:
            raise ChatProtocolError(str(e)) from e

        if event is None:
            logger.debug(f"Ignoring unknown stream payload: {payload}")
            return state, False
        if isinstance(event, ErrorEvent):
            raise ChatStreamError(event.error)
        if isinstance(event, DoneEvent):
            return state, True

        if isinstance(event, ToolCallStartEvent):
            await _notify(self.on_tool_call, event)

        next_state = fold_event(state, event)
        self._replace_last(next_state.message)
        await _notify(self.on_update, next_state.message)
        return next_state, False

    async def _fail(self, partial: Message, error: ChatStreamError) -> None:
        logger.warning(f"Chat turn failed: {error.message}")
        self.error = error
        self.status = ChatStatus.ERROR
        self._replace_last(
            partial.model_copy(update={"content": error.message, "parts": (TextPart(text=error.message),)})
        )
        await _notify(self.on_error, error)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return DEFAULT_ERROR_MESSAGE
        if isinstance(data, dict) and isinstance(data.get("error"), str):
            return data["error"]
        return DEFAULT_ERROR_MESSAGE
