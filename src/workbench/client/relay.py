"""HTTP transport reading relay events from the chat endpoint."""

from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx
from pydantic import ValidationError

from workbench.client.context import ClientContext
from workbench.client.errors import RelayRequestError
from workbench.core.logging import get_logger
from workbench.llm.base import Turn
from workbench.relay.events import SSE_DATA_PREFIX, RelayEvent, decode_event, is_terminal

logger = get_logger(__name__)


class RelayClient:
    """Posts chat requests and yields the relay events streamed back."""

    def __init__(
        self,
        context: ClientContext,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self.context = context
        self._client = http_client
        self._owns_client = http_client is None
        self.timeout = timeout

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=10.0)
            )
        return self._client

    async def stream(
        self,
        turns: Sequence[Turn],
        system: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[RelayEvent]:
        """Stream relay events for one completion.

        Iteration stops after the first terminal event. Frames that do not
        decode as relay events are skipped.

        Raises:
            RelayRequestError: If the endpoint answers with a non-success status.
            httpx.HTTPError: If the connection fails.
        """
        payload: dict[str, Any] = {
            "messages": [turn.model_dump(mode="json", exclude_none=True) for turn in turns],
            "system": system or "",
        }
        if model is not None:
            payload["model"] = model
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        async with self.client.stream(
            "POST",
            self.context.url("/api/chat"),
            headers=self.context.headers,
            json=payload,
        ) as response:
            if not response.is_success:
                await response.aread()
                logger.warning("relay_request_failed", status_code=response.status_code)
                raise RelayRequestError(
                    f"Request failed ({response.status_code})",
                    status_code=response.status_code,
                )

            async for line in response.aiter_lines():
                if not line.startswith(SSE_DATA_PREFIX):
                    continue
                try:
                    event = decode_event(line[len(SSE_DATA_PREFIX) :])
                except ValidationError:
                    logger.debug("relay_frame_skipped", line=line[:100])
                    continue
                yield event
                if is_terminal(event):
                    return

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
