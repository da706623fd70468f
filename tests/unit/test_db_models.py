"""Unit tests for database models."""

import pytest
from datetime import datetime, timezone

from workbench.db.models import (
    DEFAULT_TITLE,
    Conversation,
    Message,
    generate_id,
    utc_now,
)


class TestGenerateId:
    """Tests for generate_id function."""

    def test_returns_uuid_format(self):
        """Should return a valid UUID format."""
        result = generate_id()
        parts = result.split("-")
        assert [len(p) for p in parts] == [8, 4, 4, 4, 12]

    def test_returns_unique_values(self):
        """Should return unique values each call."""
        ids = [generate_id() for _ in range(100)]
        assert len(set(ids)) == 100


class TestUtcNow:
    """Tests for utc_now function."""

    def test_returns_utc_timezone(self):
        """Should return a datetime with UTC timezone."""
        result = utc_now()
        assert isinstance(result, datetime)
        assert result.tzinfo == timezone.utc


class TestConversationModel:
    """Tests for Conversation model."""

    def test_create_conversation_with_defaults(self):
        """Should create conversation with default values."""
        conv = Conversation(username="alice", model="claude-test")
        assert conv.id is not None
        assert conv.title == DEFAULT_TITLE
        assert conv.system == ""
        assert conv.created_at is not None
        assert conv.updated_at is not None

    def test_create_conversation_with_metadata(self):
        """Should keep title, model and system prompt."""
        conv = Conversation(
            id="c-1",
            username="alice",
            title="Planning",
            model="claude-test",
            system="Be terse.",
        )
        assert conv.id == "c-1"
        assert conv.title == "Planning"
        assert conv.model == "claude-test"
        assert conv.system == "Be terse."

    def test_conversation_has_messages_relationship(self):
        """Should have messages relationship attribute."""
        conv = Conversation(username="alice", model="claude-test")
        assert hasattr(conv, "messages")


class TestMessageModel:
    """Tests for Message model."""

    def test_create_user_message(self):
        """Should create user message without usage."""
        msg = Message(
            conversation_id="test-conv-id",
            username="alice",
            role="user",
            content="Hello",
        )
        assert msg.id is not None
        assert msg.conversation_id == "test-conv-id"
        assert msg.role == "user"
        assert msg.content == "Hello"
        assert msg.usage is None

    def test_create_assistant_message_with_usage(self):
        """Should keep the usage record."""
        usage = {"input_tokens": 100, "output_tokens": 2}
        msg = Message(
            conversation_id="test-conv-id",
            username="alice",
            role="assistant",
            content="Hi there!",
            usage=usage,
        )
        assert msg.role == "assistant"
        assert msg.usage == usage

    @pytest.mark.parametrize("role", ["user", "assistant"])
    def test_message_roles(self, role):
        """Should accept 'user' and 'assistant' roles."""
        msg = Message(conversation_id="c", username="alice", role=role, content="x")
        assert msg.role == role
