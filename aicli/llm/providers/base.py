"""Abstract streaming interface the core talks to."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

from aicli.llm.types import Message, ModelProfile, StreamChunk


class Provider(ABC):
    """
    A provider encapsulates access to a single model endpoint.

    Implementations must support:
      - Streaming chat completions (``chat``).
      - Reporting the ``ModelProfile`` they are bound to.
    """

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Start a streaming chat completion.

        Yields ``StreamChunk`` objects.  The last chunk has ``done=True``.
        Raises ``aicli.llm.errors.TransportError`` (or a subclass) when the
        request fails and ``DecodeError`` on a malformed chunk.
        """
        ...
        # Make the method an async generator so sub-classes can ``yield``.
        if False:  # pragma: no cover
            yield StreamChunk()  # type: ignore[misc]

    @property
    @abstractmethod
    def profile(self) -> ModelProfile:
        """The model profile this provider sends requests through."""
        ...

    @property
    def name(self) -> str:
        return self.profile.name

    @property
    def max_context_tokens(self) -> int:
        return self.profile.capacity
