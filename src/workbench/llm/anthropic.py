"""Streaming client for the Anthropic Messages API."""

import json
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx

from workbench.core.config import settings
from workbench.core.logging import get_logger
from workbench.llm.base import BaseLLM, UpstreamError
from workbench.llm.normalizer import cacheable_text_block

logger = get_logger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"
GENERIC_ERROR_MESSAGE = "API error"


def extract_error_message(body: bytes) -> str:
    """Pull ``error.message`` out of an error response body.

    Falls back to a generic message when the body is not the expected JSON.
    """
    try:
        payload = json.loads(body)
    except ValueError:
        return GENERIC_ERROR_MESSAGE
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            if isinstance(message, str) and message:
                return message
    return GENERIC_ERROR_MESSAGE


class AnthropicLLM(BaseLLM):
    """Anthropic Messages API client that streams raw SSE frames.

    Example usage:
        llm = AnthropicLLM(api_key=os.getenv("ANTHROPIC_API_KEY"))
        async for frame in llm.stream_frames(messages, system="Be brief."):
            print(frame["type"])
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        api_version: str | None = None,
        beta: str | None = None,
        default_model: str | None = None,
        default_max_tokens: int | None = None,
        default_temperature: float | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Provider API key. Defaults to the configured key.
            base_url: API root, without the ``/v1/messages`` path.
            api_version: Value of the ``anthropic-version`` header.
            beta: Optional ``anthropic-beta`` header value.
            default_model: Model used when a request names none.
            default_max_tokens: Output ceiling used when a request sets none.
            default_temperature: Temperature used when a request sets none.
            timeout: Read timeout in seconds for the streaming response.
            http_client: Pre-built client to use instead of creating one.
        """
        self.api_key = api_key or settings.anthropic_api_key
        self.base_url = (base_url or settings.anthropic_base_url).rstrip("/")
        self.api_version = api_version or settings.anthropic_version
        self.beta = beta if beta is not None else settings.anthropic_beta
        self.default_model = default_model or settings.default_model
        self.default_max_tokens = default_max_tokens or settings.default_max_tokens
        self.default_temperature = (
            default_temperature
            if default_temperature is not None
            else settings.default_temperature
        )
        self.timeout = timeout or settings.upstream_timeout_seconds

        self._client = http_client
        self._owns_client = http_client is None

        logger.info(
            "llm_client_initialized",
            base_url=self.base_url,
            default_model=self.default_model,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        """The HTTP client, created on first use."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=10.0)
            )
        return self._client

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/v1/messages"

    def build_headers(self) -> dict[str, str]:
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
        }
        if self.beta:
            headers["anthropic-beta"] = self.beta
        return headers

    def build_request_body(
        self,
        messages: Sequence[dict[str, Any]],
        system: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        """Assemble the JSON body for a streaming request."""
        body: dict[str, Any] = {
            "model": model or self.default_model,
            "max_tokens": max_tokens or self.default_max_tokens,
            "temperature": (
                temperature if temperature is not None else self.default_temperature
            ),
            "stream": True,
            "messages": list(messages),
        }
        if system and system.strip():
            body["system"] = [cacheable_text_block(system)]
        return body

    async def stream_frames(
        self,
        messages: Sequence[dict[str, Any]],
        system: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Stream decoded SSE frames from the Messages API.

        Args:
            messages: Normalized wire messages.
            system: Optional system prompt; omitted when blank.
            model: Model identifier.
            temperature: Sampling temperature.
            max_tokens: Output ceiling.

        Yields:
            dict: One decoded ``data:`` frame. Malformed frames are skipped
            and the ``[DONE]`` sentinel ends the stream without being yielded.

        Raises:
            UpstreamError: For a non-success status or a transport failure.
        """
        body = self.build_request_body(messages, system, model, temperature, max_tokens)

        logger.info(
            "llm_stream_start",
            model=body["model"],
            message_count=len(body["messages"]),
            has_system="system" in body,
        )

        try:
            async with self.client.stream(
                "POST",
                self.messages_url,
                headers=self.build_headers(),
                json=body,
            ) as response:
                if not response.is_success:
                    error_body = await response.aread()
                    message = extract_error_message(error_body)
                    logger.warning(
                        "llm_upstream_error",
                        status_code=response.status_code,
                        error=message,
                    )
                    raise UpstreamError(message, status_code=response.status_code)

                async for line in response.aiter_lines():
                    if not line.startswith(DATA_PREFIX):
                        continue
                    payload = line[len(DATA_PREFIX) :]
                    if payload.strip() == DONE_SENTINEL:
                        logger.debug("llm_stream_done_sentinel")
                        return
                    try:
                        frame = json.loads(payload)
                    except ValueError:
                        logger.debug("llm_frame_malformed", payload=payload[:100])
                        continue
                    if not isinstance(frame, dict):
                        logger.debug("llm_frame_not_object", payload=payload[:100])
                        continue
                    yield frame

        except httpx.HTTPError as e:
            logger.error("llm_transport_error", error=str(e), kind=type(e).__name__)
            raise UpstreamError(str(e) or type(e).__name__) from e

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
