"""LLM service layer for Workbench."""

from workbench.llm.anthropic import AnthropicLLM
from workbench.llm.base import BaseLLM, TextBlock, Turn, UpstreamError, Usage
from workbench.llm.normalizer import normalize_turns

__all__ = [
    "AnthropicLLM",
    "BaseLLM",
    "TextBlock",
    "Turn",
    "UpstreamError",
    "Usage",
    "normalize_turns",
]
