"""Relay event stream between backend and client."""

from workbench.relay.events import (
    DoneEvent,
    ErrorEvent,
    RelayEvent,
    TextEvent,
    UsageEvent,
    UsageStartEvent,
    decode_event,
    encode_sse,
    is_terminal,
)
from workbench.relay.transcoder import frame_to_event, transcode

__all__ = [
    "DoneEvent",
    "ErrorEvent",
    "RelayEvent",
    "TextEvent",
    "UsageEvent",
    "UsageStartEvent",
    "decode_event",
    "encode_sse",
    "frame_to_event",
    "is_terminal",
    "transcode",
]
