"""Unit tests for relay events and the upstream-to-relay transcoder."""

import asyncio
import json
from collections.abc import AsyncIterator, Iterable

import pytest
from pydantic import ValidationError

from workbench.llm.base import UpstreamError, Usage
from workbench.relay.events import (
    DoneEvent,
    ErrorEvent,
    TextEvent,
    UsageEvent,
    UsageStartEvent,
    decode_event,
    encode_sse,
    is_terminal,
)
from workbench.relay.transcoder import frame_to_event, transcode


def text_delta(text: str) -> dict:
    return {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}}


async def frames_from(items: Iterable, error: Exception | None = None) -> AsyncIterator[dict]:
    for item in items:
        yield item
    if error is not None:
        raise error


async def collect(frames) -> list:
    return [event async for event in transcode(frames)]


class TestFrameToEvent:
    """Tests for frame_to_event."""

    def test_text_delta(self) -> None:
        assert frame_to_event(text_delta("Hel")) == TextEvent(text="Hel")

    def test_message_delta_usage(self) -> None:
        frame = {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 2}}
        assert frame_to_event(frame) == UsageEvent(usage=Usage(output_tokens=2))

    def test_message_start_usage(self) -> None:
        frame = {"type": "message_start", "message": {"id": "m", "usage": {"input_tokens": 100}}}
        assert frame_to_event(frame) == UsageStartEvent(usage=Usage(input_tokens=100))

    @pytest.mark.parametrize(
        "frame",
        [
            {"type": "ping"},
            {"type": "message_stop"},
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
            {"type": "content_block_delta", "delta": {"type": "input_json_delta", "partial_json": "{"}},
            {"type": "message_delta", "delta": {}},
            {"type": "message_start", "message": {}},
            {"no_type": True},
        ],
    )
    def test_other_frames_are_no_ops(self, frame: dict) -> None:
        assert frame_to_event(frame) is None


class TestTranscode:
    """Tests for transcode."""

    @pytest.mark.asyncio
    async def test_successful_stream_ends_with_single_done(self) -> None:
        frames = [
            {"type": "message_start", "message": {"usage": {"input_tokens": 100}}},
            {"type": "ping"},
            text_delta("Hel"),
            text_delta("lo"),
            {"type": "message_delta", "usage": {"output_tokens": 2}},
            {"type": "message_stop"},
        ]
        events = await collect(frames_from(frames))
        assert events == [
            UsageStartEvent(usage=Usage(input_tokens=100)),
            TextEvent(text="Hel"),
            TextEvent(text="lo"),
            UsageEvent(usage=Usage(output_tokens=2)),
            DoneEvent(),
        ]

    @pytest.mark.asyncio
    async def test_empty_stream_emits_done(self) -> None:
        assert await collect(frames_from([])) == [DoneEvent()]

    @pytest.mark.asyncio
    async def test_upstream_error_emits_single_error_and_no_done(self) -> None:
        events = await collect(frames_from([], error=UpstreamError("Overloaded", 529)))
        assert events == [ErrorEvent(error="Overloaded")]

    @pytest.mark.asyncio
    async def test_mid_stream_error_keeps_earlier_events(self) -> None:
        events = await collect(
            frames_from([text_delta("Hel")], error=UpstreamError("connection reset"))
        )
        assert events == [TextEvent(text="Hel"), ErrorEvent(error="connection reset")]

    @pytest.mark.asyncio
    async def test_unexpected_failure_becomes_error_event(self) -> None:
        events = await collect(frames_from([], error=RuntimeError("boom")))
        assert events == [ErrorEvent(error="boom")]

    @pytest.mark.asyncio
    async def test_exactly_one_terminal_event(self) -> None:
        for error in (None, UpstreamError("x")):
            events = await collect(frames_from([text_delta("a"), {"type": "ping"}], error=error))
            terminals = [e for e in events if is_terminal(e)]
            assert len(terminals) == 1
            assert events[-1] is terminals[0]

    @pytest.mark.asyncio
    async def test_cancellation_is_not_an_event(self) -> None:
        async def stalled() -> AsyncIterator[dict]:
            yield text_delta("Hel")
            await asyncio.Event().wait()
            yield text_delta("never")

        received = []

        async def consume() -> None:
            async for event in transcode(stalled()):
                received.append(event)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert received == [TextEvent(text="Hel")]


class TestEventWireFormat:
    """Tests for SSE encoding and decoding of relay events."""

    def test_encode_text(self) -> None:
        frame = encode_sse(TextEvent(text="Hi"))
        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame[len("data: ") :]) == {"type": "text", "text": "Hi"}

    def test_encode_done(self) -> None:
        assert encode_sse(DoneEvent()) == 'data: {"type":"done"}\n\n'

    def test_encode_usage_omits_missing_fields(self) -> None:
        frame = encode_sse(UsageEvent(usage=Usage(output_tokens=2)))
        assert json.loads(frame[6:]) == {"type": "usage", "usage": {"output_tokens": 2}}

    @pytest.mark.parametrize(
        "event",
        [
            TextEvent(text="x"),
            UsageEvent(usage=Usage(output_tokens=1)),
            UsageStartEvent(usage=Usage(input_tokens=1)),
            ErrorEvent(error="bad"),
            DoneEvent(),
        ],
    )
    def test_decode_by_type(self, event) -> None:
        assert decode_event(event.model_dump_json()) == event

    def test_decode_unknown_type_fails(self) -> None:
        with pytest.raises(ValidationError):
            decode_event('{"type": "mystery"}')
