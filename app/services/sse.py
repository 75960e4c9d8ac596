"""Server-sent event channel for one chat response."""

import asyncio
from collections.abc import AsyncIterator
from enum import StrEnum

from app.models.events import ChatEvent, DoneEvent, dump_event
from app.utils.logging import get_logger

logger = get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}
SSE_MEDIA_TYPE = "text/event-stream"


class ChannelState(StrEnum):
    OPEN = "open"
    STREAMING = "streaming"
    TERMINATED = "terminated"


def encode_event(event: ChatEvent) -> str:
    """One payload in wire format: ``data: <json>`` and a blank line."""
    return f"data: {dump_event(event)}\n\n"


class SSEEncoder:
    """Outbound event channel backed by an unbounded queue.

    Writers call ``send`` and ``close``; the HTTP response consumes
    ``stream()``. After ``close`` the done marker has been queued exactly
    once and every further write is dropped.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self.state = ChannelState.OPEN

    @property
    def closed(self) -> bool:
        return self.state is ChannelState.TERMINATED

    def send(self, event: ChatEvent) -> bool:
        """Queue one event; returns False if the channel is already closed."""
        if self.closed:
            logger.debug(f"Dropping {type(event).__name__} written after close")
            return False
        self.state = ChannelState.STREAMING
        self._queue.put_nowait(encode_event(event))
        return True

    def close(self) -> bool:
        """Write the done marker and end the stream; later calls are no-ops."""
        if self.closed:
            return False
        self._queue.put_nowait(encode_event(DoneEvent()))
        self.state = ChannelState.TERMINATED
        self._queue.put_nowait(None)
        return True

    async def stream(self) -> AsyncIterator[str]:
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                return
            yield chunk
