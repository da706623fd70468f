"""Streaming chat relay endpoint"""

import threading
from collections.abc import AsyncIterator
from contextlib import aclosing

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from workbench.core.logging import get_logger
from workbench.llm import AnthropicLLM, BaseLLM, Turn, normalize_turns
from workbench.relay import encode_sse, transcode

router = APIRouter()
logger = get_logger(__name__)

# Global LLM service instance (lazy loaded, thread-safe)
_llm_service: AnthropicLLM | None = None
_llm_service_lock = threading.Lock()


def get_llm_service() -> BaseLLM:
    """Get or create the global LLM service instance (thread-safe)."""
    global _llm_service
    if _llm_service is None:
        with _llm_service_lock:
            # Double-check locking pattern
            if _llm_service is None:
                logger.info("initializing_llm_service")
                _llm_service = AnthropicLLM()
    return _llm_service


async def close_llm_service() -> None:
    """Close the global LLM service if it was created."""
    global _llm_service
    if _llm_service is not None:
        await _llm_service.aclose()
        _llm_service = None


class ChatRequest(BaseModel):
    """Request body for a streamed completion."""

    messages: list[Turn]
    system: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


async def relay_stream(llm: BaseLLM, request: ChatRequest) -> AsyncIterator[str]:
    """Produce the SSE body for one chat request.

    Every outcome, including upstream failures, is encoded in-band; the
    stream always ends with a ``done`` or ``error`` frame.
    """
    messages = normalize_turns(request.messages)
    frames = llm.stream_frames(
        messages,
        system=request.system,
        model=request.model,
        temperature=request.temperature,
        max_tokens=request.max_tokens,
    )
    async with aclosing(frames):
        async for event in transcode(frames):
            yield encode_sse(event)


@router.post("/api/chat")
async def chat(
    body: ChatRequest,
    llm: BaseLLM = Depends(get_llm_service),
) -> StreamingResponse:
    """Relay a streaming completion as server-sent events.

    Args:
        body: Conversation turns and sampling options.

    Returns:
        A ``text/event-stream`` response of relay events.
    """
    logger.info(
        "chat_request",
        turn_count=len(body.messages),
        model=body.model,
        has_system=bool(body.system and body.system.strip()),
    )
    return StreamingResponse(
        relay_stream(llm, body),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
