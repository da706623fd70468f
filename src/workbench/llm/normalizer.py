"""Conversion of client-held turns into upstream wire messages."""

from collections.abc import Sequence
from typing import Any

from workbench.llm.base import Turn

CACHE_CONTROL = {"type": "ephemeral"}


def cacheable_text_block(text: str) -> dict[str, Any]:
    """A single text block carrying the prompt-cache boundary marker."""
    return {"type": "text", "text": text, "cache_control": dict(CACHE_CONTROL)}


def normalize_turns(turns: Sequence[Turn]) -> list[dict[str, Any]]:
    """Build the message list the upstream API accepts.

    Streaming placeholders and empty turns are dropped. Structured content
    is flattened to one string. The last remaining turn, when it is a user
    turn, is sent as a single cache-marked block so successive requests in
    a conversation share a cached prefix.

    Args:
        turns: Turns in conversation order, possibly with a trailing
            in-flight assistant placeholder.

    Returns:
        Wire messages in the same order as ``turns``.
    """
    kept = [turn for turn in turns if not turn.streaming and not turn.is_empty]

    messages: list[dict[str, Any]] = []
    for index, turn in enumerate(kept):
        text = turn.text
        if turn.role == "user" and index == len(kept) - 1:
            messages.append({"role": "user", "content": [cacheable_text_block(text)]})
        else:
            messages.append({"role": turn.role, "content": text})
    return messages
