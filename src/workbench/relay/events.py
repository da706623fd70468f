"""Relay events: the provider-agnostic stream sent from backend to client.

Each event is serialized as one SSE frame, ``data: <json>\\n\\n``, with a
``type`` discriminator.
"""

from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter

from workbench.llm.base import Usage


class TextEvent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class UsageEvent(BaseModel):
    """Usage reported at the end of a completion."""

    type: Literal["usage"] = "usage"
    usage: Usage


class UsageStartEvent(BaseModel):
    """Usage reported when a completion starts, including prompt-cache stats."""

    type: Literal["usage_start"] = "usage_start"
    usage: Usage


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"


RelayEvent = Annotated[
    TextEvent | UsageEvent | UsageStartEvent | ErrorEvent | DoneEvent,
    Field(discriminator="type"),
]

_relay_event_adapter = TypeAdapter(RelayEvent)

SSE_DATA_PREFIX = "data: "


def is_terminal(event: RelayEvent) -> bool:
    """Whether ``event`` ends a stream."""
    return isinstance(event, (ErrorEvent, DoneEvent))


def encode_sse(event: RelayEvent) -> str:
    """Serialize an event as one SSE frame."""
    return f"{SSE_DATA_PREFIX}{event.model_dump_json(exclude_none=True)}\n\n"


def decode_event(data: str | bytes) -> RelayEvent:
    """Parse the JSON payload of one SSE frame.

    Raises:
        pydantic.ValidationError: If the payload is not a known event.
    """
    return _relay_event_adapter.validate_json(data)
