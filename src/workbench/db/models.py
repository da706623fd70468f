"""SQLModel models for conversation persistence.

Schema:
- Table names: snake_case plural (conversations, messages)
- Rows are scoped to the owning username
- Foreign keys: {table_singular}_id
"""

from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, Relationship, SQLModel

# Type alias for message role
MessageRole = Literal["user", "assistant"]

DEFAULT_TITLE = "New conversation"


def generate_id() -> str:
    """Generate a UUID-based ID for database records."""
    return str(uuid4())


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class Conversation(SQLModel, table=True):
    """Conversation model representing a chat thread.

    Attributes:
        id: Client-chosen or UUID-based primary key
        username: Owner of the conversation
        title: Conversation title
        model: Completion model selected for the conversation
        system: System prompt text
        created_at: When the conversation was created
        updated_at: When the conversation or one of its messages last changed
    """

    __tablename__ = "conversations"
    __table_args__ = {"extend_existing": True}

    id: str = Field(default_factory=generate_id, primary_key=True)
    username: str = Field(index=True)
    title: str = DEFAULT_TITLE
    model: str
    system: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    # Relationship to messages
    messages: list["Message"] = Relationship(back_populates="conversation")


class Message(SQLModel, table=True):
    """Message model representing one finished turn in a conversation.

    Attributes:
        id: UUID-based primary key
        conversation_id: Foreign key to parent conversation
        username: Owner of the message
        role: Message role (user or assistant)
        content: Message text content
        usage: Token accounting reported for assistant messages
        position: Zero-based order of the message within its conversation
        created_at: When the message was created
    """

    __tablename__ = "messages"
    __table_args__ = {"extend_existing": True}

    id: str = Field(default_factory=generate_id, primary_key=True)
    conversation_id: str = Field(foreign_key="conversations.id", index=True)
    username: str
    role: str  # "user" or "assistant" - stored as string in DB
    content: str
    usage: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    position: int = Field(default=0, index=True)
    created_at: datetime = Field(default_factory=utc_now)

    # Relationship to conversation
    conversation: Conversation | None = Relationship(back_populates="messages")
