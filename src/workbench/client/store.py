"""Best-effort persistence of client conversations to the remote store.

Writes are scheduled as background tasks after local state has already
changed. A failed write is logged and dropped; nothing is retried. Writes
for the same conversation run one at a time, in the order submitted.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import httpx

from workbench.client.context import ClientContext
from workbench.client.state import Conversation
from workbench.core.logging import get_logger
from workbench.llm.base import Turn

logger = get_logger(__name__)


def turn_to_record(turn: Turn) -> dict[str, Any]:
    """Store representation of a finished turn."""
    return {
        "role": turn.role,
        "content": turn.text,
        "usage": turn.usage.model_dump(exclude_none=True) if turn.usage else None,
    }


class StoreSync:
    """Mirrors conversation changes to the server's conversation store."""

    def __init__(
        self,
        context: ClientContext,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.context = context
        self._client = http_client
        self._owns_client = http_client is None
        self._locks: dict[str, asyncio.Lock] = {}
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    def _submit(
        self,
        operation: str,
        conversation_id: str,
        call: Callable[[], Awaitable[httpx.Response]],
        release_lock: bool = False,
    ) -> asyncio.Task[None]:
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())

        async def run() -> None:
            async with lock:
                try:
                    response = await call()
                    response.raise_for_status()
                    logger.debug(
                        "store_sync_ok",
                        operation=operation,
                        conversation_id=conversation_id,
                    )
                except Exception as e:
                    logger.warning(
                        "store_sync_failed",
                        operation=operation,
                        conversation_id=conversation_id,
                        error=str(e),
                    )
            # A deleted conversation takes no further writes
            if release_lock and self._locks.get(conversation_id) is lock:
                del self._locks[conversation_id]

        task = asyncio.create_task(run())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def create_conversation(self, conversation: Conversation) -> asyncio.Task[None]:
        body = {
            "id": conversation.id,
            "title": conversation.title,
            "model": conversation.model,
            "system": conversation.system,
            "created_at": conversation.created_at.isoformat(),
            "updated_at": conversation.updated_at.isoformat(),
        }
        return self._submit(
            "create_conversation",
            conversation.id,
            lambda: self.client.post(
                self.context.url("/api/conversations"),
                headers=self.context.headers,
                json=body,
            ),
        )

    def update_conversation(
        self,
        conversation_id: str,
        title: str | None = None,
        model: str | None = None,
        system: str | None = None,
    ) -> asyncio.Task[None]:
        body = {
            key: value
            for key, value in (("title", title), ("model", model), ("system", system))
            if value is not None
        }
        return self._submit(
            "update_conversation",
            conversation_id,
            lambda: self.client.patch(
                self.context.url(f"/api/conversations/{conversation_id}"),
                headers=self.context.headers,
                json=body,
            ),
        )

    def delete_conversation(self, conversation_id: str) -> asyncio.Task[None]:
        return self._submit(
            "delete_conversation",
            conversation_id,
            lambda: self.client.delete(
                self.context.url(f"/api/conversations/{conversation_id}"),
                headers=self.context.headers,
            ),
            release_lock=True,
        )

    def append_turns(
        self, conversation_id: str, turns: Sequence[Turn]
    ) -> asyncio.Task[None]:
        """Append finished turns in order, stopping at the first failure."""
        records = [turn_to_record(turn) for turn in turns]
        url = self.context.url(f"/api/conversations/{conversation_id}/messages")

        async def post_all() -> httpx.Response:
            response = None
            for record in records:
                response = await self.client.post(
                    url, headers=self.context.headers, json=record
                )
                response.raise_for_status()
            return response

        return self._submit("append_turns", conversation_id, post_all)

    async def list_conversations(self) -> list[Conversation]:
        """Fetch conversation summaries, newest first.

        Returns an empty list when the store is unavailable.
        """
        try:
            response = await self.client.get(
                self.context.url("/api/conversations"),
                headers=self.context.headers,
            )
            response.raise_for_status()
            return [
                Conversation.model_validate({**item, "hydrated": False})
                for item in response.json()["data"]
            ]
        except Exception as e:
            logger.warning("store_list_failed", error=str(e))
            return []

    async def fetch_conversation(self, conversation_id: str) -> Conversation | None:
        """Fetch one conversation with its turns, or None if unavailable."""
        try:
            response = await self.client.get(
                self.context.url(f"/api/conversations/{conversation_id}"),
                headers=self.context.headers,
            )
            if response.status_code == 404:
                return None
            response.raise_for_status()
            data = response.json()
            turns = [
                Turn(role=msg["role"], content=msg["content"], usage=msg.get("usage"))
                for msg in data.pop("messages", [])
            ]
            return Conversation.model_validate({**data, "turns": turns})
        except Exception as e:
            logger.warning(
                "store_fetch_failed", conversation_id=conversation_id, error=str(e)
            )
            return None

    async def drain(self) -> None:
        """Wait for every write submitted so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def aclose(self) -> None:
        await self.drain()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
