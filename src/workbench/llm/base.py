"""Base classes for the upstream LLM layer."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

Role = Literal["user", "assistant"]


class Usage(BaseModel):
    """Token accounting for one completion.

    Provider-specific keys beyond the four counters are kept as extras.
    """

    model_config = ConfigDict(extra="allow")

    input_tokens: int | None = None
    output_tokens: int | None = None
    cache_read_input_tokens: int | None = None
    cache_creation_input_tokens: int | None = None

    def merge(self, other: "Usage") -> "Usage":
        """Return the field union of both records, ``other`` winning on conflicts.

        None values never overwrite.
        """
        merged = self.model_dump(exclude_none=True)
        merged.update(other.model_dump(exclude_none=True))
        return Usage.model_validate(merged)

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class TextBlock(BaseModel):
    """One block of structured message content."""

    model_config = ConfigDict(extra="allow")

    type: str = "text"
    text: str | None = None


class Turn(BaseModel):
    """One role-tagged message as held by a client.

    UI-only annotations sent along with a turn are ignored.
    """

    model_config = ConfigDict(extra="ignore")

    role: Role
    content: str | list[TextBlock] | None = ""
    usage: Usage | None = None
    streaming: bool = False

    @property
    def text(self) -> str:
        """Content flattened to a single string."""
        if isinstance(self.content, str):
            return self.content
        if not self.content:
            return ""
        return "".join(block.text or "" for block in self.content)

    @property
    def is_empty(self) -> bool:
        return not self.content


class UpstreamError(Exception):
    """The upstream provider could not deliver a completion.

    Raised once per stream, for a non-success status or a transport failure.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class BaseLLM(ABC):
    """Abstract base class for streaming completion providers.

    Implementations yield raw provider frames as decoded JSON objects.
    """

    @abstractmethod
    async def stream_frames(
        self,
        messages: Sequence[dict[str, Any]],
        system: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Stream raw protocol frames for one completion.

        Args:
            messages: Normalized wire messages.
            system: Optional system prompt.
            model: Model identifier; provider default when None.
            temperature: Sampling temperature; provider default when None.
            max_tokens: Output ceiling; provider default when None or 0.

        Yields:
            dict: One decoded upstream frame.

        Raises:
            UpstreamError: On a non-success response or transport failure.
        """
        pass
        # Make this an async generator
        yield {}  # pragma: no cover

    async def aclose(self) -> None:
        """Release network resources held by the provider."""
