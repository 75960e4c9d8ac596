"""Tests for the server-sent event channel."""

import json

import pytest

from app.models.events import ErrorEvent, TextEvent, ToolCallResultEvent, ToolCallStartEvent
from app.services.sse import ChannelState, SSEEncoder, encode_event


async def collect(encoder: SSEEncoder) -> list[dict]:
    chunks = [chunk async for chunk in encoder.stream()]
    for chunk in chunks:
        assert chunk.startswith("data: ")
        assert chunk.endswith("\n\n")
    return [json.loads(chunk[len("data: ") :]) for chunk in chunks]


class TestEncodeEvent:
    """Tests for the wire format of single payloads."""

    def test_text_event(self):
        """Text deltas are tagged payloads on one data line."""
        assert encode_event(TextEvent(content="hola")) == 'data: {"type":"text","content":"hola"}\n\n'

    def test_tool_call_start_uses_wire_names(self):
        """Tool call fields use camelCase names on the wire."""
        chunk = encode_event(ToolCallStartEvent(tool_call_id="t1", tool_name="get_projects", input={}))
        payload = json.loads(chunk[len("data: ") :])
        assert payload == {"type": "tool_call_start", "toolCallId": "t1", "toolName": "get_projects", "input": {}}

    def test_successful_result_omits_error(self):
        """The error field is absent from successful results."""
        chunk = encode_event(ToolCallResultEvent(tool_call_id="t1", result=[{"id": 1}], is_error=False))
        payload = json.loads(chunk[len("data: ") :])
        assert payload == {"type": "tool_call_result", "toolCallId": "t1", "result": [{"id": 1}], "isError": False}

    def test_failed_result_has_error(self):
        chunk = encode_event(ToolCallResultEvent(tool_call_id="t1", is_error=True, error="Version conflict"))
        payload = json.loads(chunk[len("data: ") :])
        assert payload["isError"] is True
        assert payload["error"] == "Version conflict"


class TestSSEEncoder:
    """Tests for the queue-backed channel."""

    @pytest.mark.asyncio
    async def test_events_then_done(self):
        """Events come out in order followed by a single done marker."""
        encoder = SSEEncoder()
        encoder.send(TextEvent(content="Hola"))
        encoder.send(TextEvent(content=" mundo"))
        encoder.close()

        payloads = await collect(encoder)
        assert payloads == [
            {"type": "text", "content": "Hola"},
            {"type": "text", "content": " mundo"},
            {"done": True},
        ]

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        """Closing twice writes the done marker once."""
        encoder = SSEEncoder()
        assert encoder.close() is True
        assert encoder.close() is False

        payloads = await collect(encoder)
        assert payloads == [{"done": True}]

    @pytest.mark.asyncio
    async def test_writes_after_close_are_dropped(self):
        """Nothing follows the done marker."""
        encoder = SSEEncoder()
        encoder.send(ErrorEvent(error="boom"))
        encoder.close()
        assert encoder.send(TextEvent(content="late")) is False

        payloads = await collect(encoder)
        assert payloads == [{"error": "boom"}, {"done": True}]

    def test_state_transitions(self):
        encoder = SSEEncoder()
        assert encoder.state is ChannelState.OPEN
        encoder.send(TextEvent(content="x"))
        assert encoder.state is ChannelState.STREAMING
        encoder.close()
        assert encoder.closed
