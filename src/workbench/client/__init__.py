"""Client library: conversation state, relay transport and store sync."""

from workbench.client.context import ClientContext, login
from workbench.client.errors import (
    AuthenticationError,
    ConversationBusyError,
    ConversationNotFoundError,
    ConversationNotLoadedError,
    RelayRequestError,
    WorkbenchClientError,
)
from workbench.client.relay import RelayClient
from workbench.client.session import ChatSession
from workbench.client.state import (
    Conversation,
    Phase,
    StreamState,
    begin_stream,
    cancel_stream,
    reduce,
    title_from_turns,
)
from workbench.client.store import StoreSync

__all__ = [
    "AuthenticationError",
    "ChatSession",
    "ClientContext",
    "Conversation",
    "ConversationBusyError",
    "ConversationNotFoundError",
    "ConversationNotLoadedError",
    "Phase",
    "RelayClient",
    "RelayRequestError",
    "StoreSync",
    "StreamState",
    "WorkbenchClientError",
    "begin_stream",
    "cancel_stream",
    "login",
    "reduce",
    "title_from_turns",
]
