"""Client-side conversation state and the stream reducer.

A stream over one conversation moves through these phases::

    idle -> sending -> streaming -> settled | errored | canceled -> idle

``reduce`` applies one relay event to a ``StreamState`` and returns a new
state; it performs no I/O and never mutates its input.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from workbench.llm.base import Turn, Usage
from workbench.relay.events import (
    DoneEvent,
    ErrorEvent,
    RelayEvent,
    TextEvent,
    UsageEvent,
    UsageStartEvent,
)

DEFAULT_TITLE = "New conversation"
TITLE_MAX_LENGTH = 40
TITLE_ELLIPSIS = "…"
ERROR_PREFIX = "⚠️ Error: "


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_conversation_id() -> str:
    return str(uuid4())


class Phase(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    SETTLED = "settled"
    ERRORED = "errored"
    CANCELED = "canceled"

    @property
    def in_flight(self) -> bool:
        return self in (Phase.SENDING, Phase.STREAMING)

    @property
    def terminal(self) -> bool:
        return self in (Phase.SETTLED, Phase.ERRORED, Phase.CANCELED)


class Conversation(BaseModel):
    """A conversation as held in client memory."""

    id: str = Field(default_factory=new_conversation_id)
    title: str = DEFAULT_TITLE
    model: str
    system: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    turns: list[Turn] = Field(default_factory=list)
    # False for a store summary whose turns have not been fetched yet
    hydrated: bool = Field(default=True, exclude=True)

    @field_validator("created_at", "updated_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Treat naive timestamps, as returned by SQLite, as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def trailing_turn(self) -> Turn | None:
        return self.turns[-1] if self.turns else None

    def touched(self, now: datetime | None = None) -> "Conversation":
        """Copy with ``updated_at`` bumped, never moving it backwards."""
        now = now or utc_now()
        return self.model_copy(update={"updated_at": max(now, self.updated_at)})


def truncate_title(text: str) -> str:
    """Cut ``text`` to the title length, marking the cut with an ellipsis."""
    if len(text) > TITLE_MAX_LENGTH:
        return text[:TITLE_MAX_LENGTH] + TITLE_ELLIPSIS
    return text


def title_from_turns(turns: Sequence[Turn]) -> str:
    """Derive a title from the first user turn."""
    for turn in turns:
        if turn.role == "user":
            return truncate_title(turn.text)
    return DEFAULT_TITLE


@dataclass(frozen=True)
class StreamState:
    """One conversation plus the progress of its in-flight completion."""

    conversation: Conversation
    phase: Phase = Phase.IDLE
    usage: Usage = field(default_factory=Usage)


def _with_trailing(conversation: Conversation, turn: Turn) -> Conversation:
    turns = [*conversation.turns[:-1], turn]
    return conversation.model_copy(update={"turns": turns})


def begin_stream(
    conversation: Conversation, text: str, now: datetime | None = None
) -> StreamState:
    """Append a user turn and an empty streaming assistant placeholder.

    The first turn pair of a conversation also sets its title.
    """
    user_turn = Turn(role="user", content=text)
    placeholder = Turn(role="assistant", content="", streaming=True)
    turns = [*conversation.turns, user_turn, placeholder]

    update: dict = {"turns": turns}
    if not conversation.turns:
        update["title"] = title_from_turns(turns)

    updated = conversation.model_copy(update=update).touched(now)
    return StreamState(conversation=updated, phase=Phase.SENDING)


def reduce(state: StreamState, event: RelayEvent) -> StreamState:
    """Apply one relay event.

    Events arriving outside ``sending``/``streaming`` are ignored, so a
    canceled or finished stream cannot be changed by late events.
    """
    if not state.phase.in_flight:
        return state

    trailing = state.conversation.trailing_turn
    if trailing is None or not trailing.streaming:
        return state

    if isinstance(event, TextEvent):
        turn = trailing.model_copy(update={"content": trailing.text + event.text})
        return replace(
            state,
            conversation=_with_trailing(state.conversation, turn),
            phase=Phase.STREAMING,
        )

    if isinstance(event, (UsageStartEvent, UsageEvent)):
        return replace(state, usage=state.usage.merge(event.usage))

    if isinstance(event, DoneEvent):
        turn = trailing.model_copy(
            update={
                "streaming": False,
                "usage": None if state.usage.is_empty() else state.usage,
            }
        )
        return replace(
            state,
            conversation=_with_trailing(state.conversation, turn),
            phase=Phase.SETTLED,
        )

    if isinstance(event, ErrorEvent):
        turn = trailing.model_copy(
            update={"content": f"{ERROR_PREFIX}{event.error}", "streaming": False}
        )
        return replace(
            state,
            conversation=_with_trailing(state.conversation, turn),
            phase=Phase.ERRORED,
        )

    return state


def cancel_stream(state: StreamState) -> StreamState:
    """Stop a stream in place, keeping whatever text already arrived.

    Calling it on a stream that is not in flight returns ``state`` unchanged.
    """
    if not state.phase.in_flight:
        return state

    conversation = state.conversation
    trailing = conversation.trailing_turn
    if trailing is not None and trailing.streaming:
        conversation = _with_trailing(
            conversation, trailing.model_copy(update={"streaming": False})
        )
    return replace(state, conversation=conversation, phase=Phase.CANCELED)


def finished_pair(state: StreamState) -> list[Turn]:
    """The user and assistant turns a settled stream produced."""
    if state.phase is not Phase.SETTLED:
        return []
    return list(state.conversation.turns[-2:])
