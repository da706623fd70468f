"""End-to-end tests: client session against the in-process API."""

import pytest
from pathlib import Path
from tempfile import TemporaryDirectory

import httpx

import workbench.db.repository as repo_module
from workbench.api.chat import get_llm_service
from workbench.client import (
    AuthenticationError,
    ChatSession,
    RelayClient,
    StoreSync,
    login,
)
from workbench.client.state import Phase
from workbench.core.config import settings
from workbench.db import init_db
from workbench.llm.base import BaseLLM, UpstreamError, Usage
from workbench.main import app

PASSWORD = "correct horse"
BASE_URL = "http://test"

HELLO_FRAMES = [
    {"type": "message_start", "message": {"usage": {"input_tokens": 100}}},
    {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hel"}},
    {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "lo"}},
    {"type": "message_delta", "usage": {"output_tokens": 2}},
    {"type": "message_stop"},
]


class ScriptedLLM(BaseLLM):
    """LLM double answering every request with the same frames."""

    def __init__(self, frames=(), error: Exception | None = None):
        self.frames = list(frames)
        self.error = error
        self.requests: list[list[dict]] = []

    async def stream_frames(self, messages, system=None, model=None, temperature=None, max_tokens=None):
        self.requests.append(list(messages))
        for frame in self.frames:
            yield frame
        if self.error is not None:
            raise self.error


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    original_engine = repo_module._engine
    repo_module._engine = None

    with TemporaryDirectory() as tmpdir:
        init_db(Path(tmpdir) / "test.db")
        yield
        repo_module._engine.dispose()
        repo_module._engine = original_engine


@pytest.fixture
def llm(monkeypatch):
    scripted = ScriptedLLM(HELLO_FRAMES)
    monkeypatch.setattr(settings, "app_password", PASSWORD)
    app.dependency_overrides[get_llm_service] = lambda: scripted
    yield scripted
    app.dependency_overrides.pop(get_llm_service, None)


@pytest.fixture
async def http(temp_db, llm):
    """Async client wired to the app in-process."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as client:
        yield client


@pytest.fixture
async def session(http):
    context = await login(http, BASE_URL, PASSWORD, username="Alice")
    store = StoreSync(context, http_client=http)
    yield ChatSession(RelayClient(context, http_client=http), store, default_model="claude-test")
    await store.aclose()


class TestLogin:
    """Tests for the client login call."""

    @pytest.mark.asyncio
    async def test_login_returns_context(self, http):
        context = await login(http, BASE_URL, PASSWORD, username="Alice")
        assert context.username == "alice"
        assert context.headers["x-auth-token"] == context.token

    @pytest.mark.asyncio
    async def test_wrong_password_raises(self, http):
        with pytest.raises(AuthenticationError):
            await login(http, BASE_URL, "wrong")


class TestClientFlow:
    """Tests for a full send through relay and store."""

    @pytest.mark.asyncio
    async def test_send_streams_and_persists(self, session):
        """Should settle 'Hello' locally and persist both turns."""
        await session.send("hi")
        await session.store.drain()

        conversation = session.active
        trailing = conversation.trailing_turn
        assert conversation.title == "hi"
        assert trailing.content == "Hello"
        assert trailing.streaming is False
        assert trailing.usage == Usage(input_tokens=100, output_tokens=2)
        assert session.last_phase(conversation.id) is Phase.SETTLED

        stored = await session.store.fetch_conversation(conversation.id)
        assert stored is not None
        assert stored.title == "hi"
        assert [(t.role, t.text) for t in stored.turns] == [("user", "hi"), ("assistant", "Hello")]
        assert stored.turns[1].usage == Usage(input_tokens=100, output_tokens=2)

    @pytest.mark.asyncio
    async def test_reload_restores_conversations(self, session, http):
        """Should list persisted conversations in a fresh session."""
        await session.send("hi")
        session.rename(session.active_id, "Greeting")
        await session.store.drain()

        fresh = ChatSession(session.relay, StoreSync(session.store.context, http_client=http))
        loaded = await fresh.load()
        assert [c.title for c in loaded] == ["Greeting"]

        opened = await fresh.open(loaded[0].id)
        assert [t.text for t in opened.turns] == ["hi", "Hello"]

    @pytest.mark.asyncio
    async def test_send_after_reload_continues_conversation(self, session, http, llm):
        """Should send the stored history and keep the stored title."""
        await session.send("first question")
        await session.store.drain()

        fresh_store = StoreSync(session.store.context, http_client=http)
        fresh = ChatSession(session.relay, fresh_store, default_model="claude-test")
        await fresh.load()
        await fresh.send("follow up")
        await fresh_store.drain()

        assert llm.requests[-1] == [
            {"role": "user", "content": "first question"},
            {"role": "assistant", "content": "Hello"},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "follow up", "cache_control": {"type": "ephemeral"}}
                ],
            },
        ]
        assert fresh.active.title == "first question"

        stored = await fresh_store.fetch_conversation(fresh.active_id)
        assert stored.title == "first question"
        assert [t.text for t in stored.turns] == ["first question", "Hello", "follow up", "Hello"]

    @pytest.mark.asyncio
    async def test_upstream_error_shows_in_turn_and_is_not_persisted(self, session, llm):
        llm.frames = []
        llm.error = UpstreamError("Overloaded", 529)

        await session.send("hi")
        await session.store.drain()

        assert session.active.trailing_turn.content == "⚠️ Error: Overloaded"
        assert session.last_phase(session.active_id) is Phase.ERRORED
        stored = await session.store.fetch_conversation(session.active_id)
        assert stored.turns == []

    @pytest.mark.asyncio
    async def test_delete_removes_from_store(self, session):
        await session.send("hi")
        conversation_id = session.active_id
        session.delete(conversation_id)
        await session.store.drain()

        assert session.active is None
        assert await session.store.fetch_conversation(conversation_id) is None
