"""Translation of upstream protocol frames into relay events."""

from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from workbench.core.logging import get_logger
from workbench.llm.base import UpstreamError, Usage
from workbench.relay.events import (
    DoneEvent,
    ErrorEvent,
    RelayEvent,
    TextEvent,
    UsageEvent,
    UsageStartEvent,
)

logger = get_logger(__name__)

UNEXPECTED_ERROR_MESSAGE = "Unexpected relay failure"


def frame_to_event(frame: dict[str, Any]) -> RelayEvent | None:
    """Map one upstream frame to a relay event.

    Returns None for frames with no relay counterpart (pings, block
    start/stop, non-text deltas, ...).
    """
    frame_type = frame.get("type")

    if frame_type == "content_block_delta":
        delta = frame.get("delta")
        if isinstance(delta, dict) and delta.get("type") == "text_delta":
            text = delta.get("text")
            if isinstance(text, str):
                return TextEvent(text=text)
        return None

    if frame_type == "message_delta":
        usage = frame.get("usage")
        if isinstance(usage, dict):
            return UsageEvent(usage=Usage.model_validate(usage))
        return None

    if frame_type == "message_start":
        message = frame.get("message")
        if isinstance(message, dict) and isinstance(message.get("usage"), dict):
            return UsageStartEvent(usage=Usage.model_validate(message["usage"]))
        return None

    return None


async def transcode(frames: AsyncIterable[dict[str, Any]]) -> AsyncIterator[RelayEvent]:
    """Re-emit an upstream frame stream as relay events.

    Events keep arrival order. The stream always ends with exactly one
    terminal event: ``done`` after the last frame, or ``error`` if the
    upstream fails. Task cancellation propagates without an event.

    Args:
        frames: Decoded upstream frames, e.g. ``AnthropicLLM.stream_frames()``.

    Yields:
        RelayEvent: Events in arrival order, terminal event last.
    """
    text_events = 0
    try:
        async for frame in frames:
            event = frame_to_event(frame)
            if event is None:
                continue
            if isinstance(event, TextEvent):
                text_events += 1
            yield event
    except UpstreamError as e:
        logger.warning("relay_upstream_error", error=e.message, status_code=e.status_code)
        yield ErrorEvent(error=e.message)
        return
    except Exception as e:
        logger.error("relay_unexpected_error", error=str(e), kind=type(e).__name__)
        yield ErrorEvent(error=str(e) or UNEXPECTED_ERROR_MESSAGE)
        return

    logger.info("relay_stream_completed", text_events=text_events)
    yield DoneEvent()
