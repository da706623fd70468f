"""Conversation session: local conversations plus their in-flight streams."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from workbench.client.errors import (
    ConversationBusyError,
    ConversationNotFoundError,
    ConversationNotLoadedError,
    RelayRequestError,
)
from workbench.client.relay import RelayClient
from workbench.client.state import (
    DEFAULT_TITLE,
    Conversation,
    Phase,
    StreamState,
    begin_stream,
    cancel_stream,
    finished_pair,
    reduce,
)
from workbench.client.store import StoreSync
from workbench.core.config import settings
from workbench.core.logging import get_logger
from workbench.relay.events import ErrorEvent, RelayEvent, is_terminal

logger = get_logger(__name__)

CONNECTION_CLOSED_MESSAGE = "Connection closed before the response finished"


@dataclass
class _InFlight:
    """Bookkeeping for one outstanding request."""

    conversation_id: str
    state: StreamState
    task: asyncio.Task[None] | None = None
    canceled: bool = False


class ChatSession:
    """Owns a user's local conversations and drives their streams.

    Local state changes first; store writes follow in the background.
    Each conversation has at most one request in flight.

    Example usage:
        context = await login(http, "http://localhost:3001", password)
        session = ChatSession(RelayClient(context), StoreSync(context))
        await session.load()
        task = session.send("hi")
        await task
    """

    def __init__(
        self,
        relay: RelayClient,
        store: StoreSync | None = None,
        default_model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        on_change: Callable[[Conversation], None] | None = None,
    ) -> None:
        self.relay = relay
        self.store = store
        self.default_model = default_model or settings.default_model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.on_change = on_change

        self.conversations: dict[str, Conversation] = {}
        self.active_id: str | None = None
        self._in_flight: dict[str, _InFlight] = {}
        self._last_phase: dict[str, Phase] = {}

    # -- queries ---------------------------------------------------------

    @property
    def active(self) -> Conversation | None:
        if self.active_id is None:
            return None
        return self.conversations.get(self.active_id)

    def conversation_list(self) -> list[Conversation]:
        """Conversations ordered by most recent update."""
        return sorted(
            self.conversations.values(), key=lambda c: c.updated_at, reverse=True
        )

    def get(self, conversation_id: str) -> Conversation:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    def phase(self, conversation_id: str | None = None) -> Phase:
        """Current phase of a conversation's stream (``idle`` when none)."""
        target = conversation_id or self.active_id
        in_flight = self._in_flight.get(target) if target else None
        return in_flight.state.phase if in_flight else Phase.IDLE

    def last_phase(self, conversation_id: str) -> Phase | None:
        """Terminal phase of the conversation's most recent stream."""
        return self._last_phase.get(conversation_id)

    def is_streaming(self, conversation_id: str | None = None) -> bool:
        return self.phase(conversation_id).in_flight

    # -- loading ---------------------------------------------------------

    async def load(self) -> list[Conversation]:
        """Replace local conversations with the store's summaries.

        The most recent conversation becomes active with its turns fetched.
        """
        if self.store is None:
            return self.conversation_list()
        summaries = await self.store.list_conversations()
        self.conversations = {c.id: c for c in summaries}
        self.active_id = None
        ordered = self.conversation_list()
        if ordered:
            await self.open(ordered[0].id)
        logger.info("conversations_loaded", count=len(ordered))
        return self.conversation_list()

    async def open(self, conversation_id: str) -> Conversation:
        """Fetch a conversation's turns from the store and make it active."""
        if self.store is not None and not self.is_streaming(conversation_id):
            fetched = await self.store.fetch_conversation(conversation_id)
            if fetched is not None:
                self.conversations[conversation_id] = fetched
        self.select(conversation_id)
        return self.get(conversation_id)

    # -- metadata --------------------------------------------------------

    def new_conversation(self, model: str | None = None) -> Conversation:
        """Create an empty conversation and make it active."""
        conversation = Conversation(model=model or self.default_model)
        self._switch_to(conversation.id)
        self._put(conversation)
        if self.store is not None:
            self.store.create_conversation(conversation)
        logger.info("conversation_created", conversation_id=conversation.id)
        return conversation

    def select(self, conversation_id: str) -> None:
        """Make a conversation active, canceling the previous one's stream."""
        self.get(conversation_id)
        self._switch_to(conversation_id)

    def rename(self, conversation_id: str, title: str) -> None:
        title = title.strip()
        if not title:
            return
        self._edit(conversation_id, title=title)

    def set_model(self, model: str) -> None:
        """Change the active conversation's model, creating one if needed."""
        conversation = self.active or self.new_conversation()
        self._edit(conversation.id, model=model)

    def set_system(self, system: str) -> None:
        """Change the active conversation's system prompt, creating one if needed."""
        conversation = self.active or self.new_conversation()
        self._edit(conversation.id, system=system)

    def delete(self, conversation_id: str) -> None:
        """Delete a conversation; the most recent remaining one becomes active."""
        self.get(conversation_id)
        self.cancel(conversation_id)
        del self.conversations[conversation_id]
        if self.active_id == conversation_id:
            remaining = self.conversation_list()
            self.active_id = remaining[0].id if remaining else None
        if self.store is not None:
            self.store.delete_conversation(conversation_id)
        logger.info("conversation_deleted", conversation_id=conversation_id)

    def clear(self) -> None:
        """Empty the active conversation's turns and reset its title locally."""
        conversation = self.active
        if conversation is None:
            return
        self.cancel(conversation.id)
        cleared = conversation.model_copy(
            update={"turns": [], "title": DEFAULT_TITLE}
        ).touched()
        self._put(cleared)
        if self.store is not None:
            self.store.update_conversation(conversation.id, title=DEFAULT_TITLE)

    # -- streaming -------------------------------------------------------

    def send(self, text: str) -> asyncio.Task[None]:
        """Send a user message in the active conversation.

        A conversation is created when none is active. Returns the task
        reading the response stream.

        Raises:
            ValueError: If ``text`` is blank.
            ConversationBusyError: If the conversation already has a request
                in flight.
            ConversationNotLoadedError: If the active conversation is a store
                summary whose turns could not be fetched.
        """
        text = text.strip()
        if not text:
            raise ValueError("Cannot send an empty message")

        conversation = self.active or self.new_conversation()
        if not conversation.hydrated:
            raise ConversationNotLoadedError(conversation.id)
        if conversation.id in self._in_flight:
            raise ConversationBusyError(conversation.id)

        is_first_pair = not conversation.turns
        state = begin_stream(conversation, text)
        self._put(state.conversation)
        if is_first_pair and self.store is not None:
            self.store.update_conversation(
                conversation.id, title=state.conversation.title
            )

        in_flight = _InFlight(conversation_id=conversation.id, state=state)
        self._in_flight[conversation.id] = in_flight
        in_flight.task = asyncio.create_task(self._run(in_flight))
        logger.info(
            "stream_started",
            conversation_id=conversation.id,
            turn_count=len(state.conversation.turns),
        )
        return in_flight.task

    def cancel(self, conversation_id: str | None = None) -> None:
        """Stop the in-flight request, keeping text already received.

        Does nothing when no request is in flight, so repeated calls are safe.
        """
        target = conversation_id or self.active_id
        if target is None:
            return
        in_flight = self._in_flight.pop(target, None)
        if in_flight is None or in_flight.canceled:
            return

        in_flight.canceled = True
        in_flight.state = cancel_stream(in_flight.state)
        self._commit(in_flight)
        self._last_phase[target] = in_flight.state.phase
        if in_flight.task is not None:
            in_flight.task.cancel()
        logger.info("stream_canceled", conversation_id=target)

    async def _run(self, in_flight: _InFlight) -> None:
        conversation = in_flight.state.conversation
        # The trailing placeholder is not part of the request.
        history = conversation.turns[:-1]
        terminal_seen = False
        try:
            async for event in self.relay.stream(
                history,
                system=conversation.system,
                model=conversation.model,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            ):
                if in_flight.canceled:
                    break
                self._apply(in_flight, event)
                if is_terminal(event):
                    terminal_seen = True
                    break
            if not terminal_seen and not in_flight.canceled:
                self._apply(in_flight, ErrorEvent(error=CONNECTION_CLOSED_MESSAGE))
        except (httpx.HTTPError, RelayRequestError) as e:
            if not in_flight.canceled:
                logger.warning(
                    "stream_request_failed",
                    conversation_id=in_flight.conversation_id,
                    error=str(e),
                )
                self._apply(in_flight, ErrorEvent(error=str(e) or type(e).__name__))
        finally:
            if self._in_flight.get(in_flight.conversation_id) is in_flight:
                del self._in_flight[in_flight.conversation_id]

    def _apply(self, in_flight: _InFlight, event: RelayEvent) -> None:
        state = reduce(in_flight.state, event)
        in_flight.state = state
        self._commit(in_flight)

        phase = state.phase
        if not phase.terminal or in_flight.canceled:
            return
        self._last_phase[in_flight.conversation_id] = phase
        logger.info(
            "stream_finished",
            conversation_id=in_flight.conversation_id,
            phase=phase.value,
        )
        if phase is Phase.SETTLED:
            current = self.conversations.get(in_flight.conversation_id)
            if current is not None:
                self._put(current.touched())
            if self.store is not None:
                self.store.append_turns(in_flight.conversation_id, finished_pair(state))

    # -- helpers ---------------------------------------------------------

    def _commit(self, in_flight: _InFlight) -> None:
        """Copy a stream's turns into the local conversation.

        Metadata edited while the stream ran is kept.
        """
        current = self.conversations.get(in_flight.conversation_id)
        if current is None:
            return
        self._put(
            current.model_copy(update={"turns": in_flight.state.conversation.turns})
        )

    def _edit(self, conversation_id: str, **fields: str) -> None:
        conversation = self.get(conversation_id)
        self._put(conversation.model_copy(update=fields).touched())
        if self.store is not None:
            self.store.update_conversation(conversation_id, **fields)

    def _switch_to(self, conversation_id: str) -> None:
        if self.active_id is not None and self.active_id != conversation_id:
            self.cancel(self.active_id)
        self.active_id = conversation_id

    def _put(self, conversation: Conversation) -> None:
        self.conversations[conversation.id] = conversation
        if self.on_change is not None:
            self.on_change(conversation)
