"""Database module for conversation persistence."""

from workbench.db.models import Conversation, Message
from workbench.db.repository import (
    ConversationRepository,
    MessageRepository,
    get_engine,
    get_session,
    init_db,
)

__all__ = [
    "Conversation",
    "Message",
    "ConversationRepository",
    "MessageRepository",
    "get_engine",
    "get_session",
    "init_db",
]
