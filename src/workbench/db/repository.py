"""Repository layer for database operations.

Provides CRUD operations for Conversation and Message entities.
Uses SQLite for local persistence (data/workbench.db by default).
"""

from collections.abc import Generator
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, func, select

from workbench.core.config import settings
from workbench.db.models import (
    DEFAULT_TITLE,
    Conversation,
    Message,
    generate_id,
    utc_now,
)


def _enable_sqlite_fk(dbapi_connection, connection_record):
    """Enable foreign key constraints for SQLite connections."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# Module-level engine (initialized on first use)
_engine = None


def get_engine(db_path: Path | None = None):
    """Get or create the database engine.

    Args:
        db_path: Optional custom database path. Defaults to the configured db_path

    Returns:
        SQLModel engine instance
    """
    global _engine
    if _engine is None:
        path = db_path or settings.db_path
        path.parent.mkdir(parents=True, exist_ok=True)
        database_url = f"sqlite:///{path}"
        _engine = create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
        )
        # Enable foreign key constraints for SQLite
        event.listen(_engine, "connect", _enable_sqlite_fk)
    return _engine


def init_db(db_path: Path | None = None) -> None:
    """Initialize the database by creating all tables.

    Args:
        db_path: Optional custom database path
    """
    engine = get_engine(db_path)
    SQLModel.metadata.create_all(engine)


def get_session() -> Generator[Session, None, None]:
    """Get a database session.

    Yields:
        Database session bound to the module engine
    """
    engine = get_engine()
    with Session(engine) as session:
        yield session


class ConversationRepository:
    """Repository for Conversation CRUD operations."""

    def __init__(self, session: Session):
        """Initialize repository with a database session.

        Args:
            session: SQLModel session for database operations
        """
        self.session = session

    def create(
        self,
        username: str,
        model: str,
        title: str | None = None,
        system: str | None = None,
        conversation_id: str | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> Conversation:
        """Create a new conversation.

        Args:
            username: Owner of the conversation
            model: Selected completion model
            title: Optional title, defaults to "New conversation"
            system: Optional system prompt, defaults to ""
            conversation_id: Client-chosen ID, generated when omitted
            created_at: Client-side creation time
            updated_at: Client-side update time

        Returns:
            Created Conversation instance
        """
        now = utc_now()
        conversation = Conversation(
            id=conversation_id or generate_id(),
            username=username,
            title=title or DEFAULT_TITLE,
            model=model,
            system=system or "",
            created_at=created_at or now,
            updated_at=updated_at or now,
        )
        self.session.add(conversation)
        self.session.commit()
        self.session.refresh(conversation)
        return conversation

    def get(
        self, conversation_id: str, username: str | None = None
    ) -> Conversation | None:
        """Get a conversation by ID.

        Args:
            conversation_id: The conversation ID
            username: When given, only a conversation owned by this user matches

        Returns:
            Conversation if found, None otherwise
        """
        conversation = self.session.get(Conversation, conversation_id)
        if conversation is None:
            return None
        if username is not None and conversation.username != username:
            return None
        return conversation

    def list_for_user(
        self, username: str, limit: int = 50, offset: int = 0
    ) -> list[Conversation]:
        """List a user's conversations ordered by updated_at descending.

        Args:
            username: Owner whose conversations to list
            limit: Maximum number of conversations to return
            offset: Number of conversations to skip

        Returns:
            List of Conversation instances
        """
        statement = (
            select(Conversation)
            .where(Conversation.username == username)
            .order_by(Conversation.updated_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.session.exec(statement).all())

    def count_for_user(self, username: str) -> int:
        """Count a user's conversations."""
        statement = (
            select(func.count())
            .select_from(Conversation)
            .where(Conversation.username == username)
        )
        return self.session.exec(statement).one()

    def update(
        self,
        conversation_id: str,
        username: str | None = None,
        title: str | None = None,
        model: str | None = None,
        system: str | None = None,
    ) -> Conversation | None:
        """Update conversation metadata.

        Fields left as None keep their current value. updated_at is always
        bumped.

        Args:
            conversation_id: The conversation ID
            username: When given, only a conversation owned by this user matches
            title: New title
            model: New model
            system: New system prompt

        Returns:
            Updated Conversation if found, None otherwise
        """
        conversation = self.get(conversation_id, username)
        if conversation is None:
            return None

        if title is not None:
            conversation.title = title
        if model is not None:
            conversation.model = model
        if system is not None:
            conversation.system = system
        conversation.updated_at = utc_now()

        self.session.add(conversation)
        self.session.commit()
        self.session.refresh(conversation)
        return conversation

    def touch(self, conversation_id: str) -> Conversation | None:
        """Update the updated_at timestamp of a conversation.

        Args:
            conversation_id: The conversation ID

        Returns:
            Updated Conversation if found, None otherwise
        """
        return self.update(conversation_id)

    def delete(self, conversation_id: str, username: str | None = None) -> bool:
        """Delete a conversation and all its messages.

        Args:
            conversation_id: The conversation ID
            username: When given, only a conversation owned by this user matches

        Returns:
            True if deleted, False if not found
        """
        conversation = self.get(conversation_id, username)
        if conversation is None:
            return False

        # Delete all messages first (cascade)
        statement = select(Message).where(Message.conversation_id == conversation_id)
        messages = self.session.exec(statement).all()
        for message in messages:
            self.session.delete(message)

        self.session.delete(conversation)
        self.session.commit()
        return True


class MessageRepository:
    """Repository for Message CRUD operations."""

    def __init__(self, session: Session):
        """Initialize repository with a database session.

        Args:
            session: SQLModel session for database operations
        """
        self.session = session

    def create(
        self,
        conversation_id: str,
        username: str,
        role: Literal["user", "assistant"],
        content: str,
        usage: dict[str, Any] | None = None,
    ) -> Message:
        """Append a message to a conversation.

        Args:
            conversation_id: Parent conversation ID
            username: Owner of the message
            role: Message role (user or assistant)
            content: Message text content
            usage: Token accounting for assistant messages

        Returns:
            Created Message instance
        """
        position = self.session.exec(
            select(func.count())
            .select_from(Message)
            .where(Message.conversation_id == conversation_id)
        ).one()
        message = Message(
            id=generate_id(),
            conversation_id=conversation_id,
            username=username,
            role=role,
            content=content,
            usage=usage,
            position=position,
            created_at=utc_now(),
        )
        self.session.add(message)
        self.session.commit()
        self.session.refresh(message)

        # Update conversation's updated_at
        conversation_repo = ConversationRepository(self.session)
        conversation_repo.touch(conversation_id)

        return message

    def get(self, message_id: str) -> Message | None:
        """Get a message by ID.

        Args:
            message_id: The message ID

        Returns:
            Message if found, None otherwise
        """
        return self.session.get(Message, message_id)

    def list_by_conversation(
        self, conversation_id: str, limit: int | None = None, offset: int = 0
    ) -> list[Message]:
        """List messages for a conversation in append order.

        Args:
            conversation_id: The conversation ID
            limit: Maximum number of messages to return, all when None
            offset: Number of messages to skip

        Returns:
            List of Message instances
        """
        statement = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.position.asc(), Message.created_at.asc())
            .offset(offset)
        )
        if limit is not None:
            statement = statement.limit(limit)
        return list(self.session.exec(statement).all())
