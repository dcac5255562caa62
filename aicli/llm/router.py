"""
LLM Router -- holds the model providers and turns their streams into events.

The router is the entry point for the orchestrator when it needs a model
response.  It:

  1. Streams ``StreamChunk`` objects from the active provider.
  2. Feeds them into a ``ToolCallAssembler``.
  3. Yields the resulting ``StreamEvent``s in arrival order, ending with a
     ``RoundComplete`` or a ``StreamError``.

Transport failures (``TransportError`` and subclasses) propagate to the
caller; a malformed chunk or an expired deadline becomes a ``StreamError``
event so partial text stays usable.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, AsyncIterator

from aicli.llm.errors import DecodeError, StreamTimeout
from aicli.llm.providers.base import Provider
from aicli.llm.token_counter import TokenCounter
from aicli.llm.tool_call_assembler import ToolCallAssembler
from aicli.llm.types import (
    AssembledRound,
    Message,
    RoundComplete,
    StreamChunk,
    StreamError,
    StreamErrorKind,
    StreamEvent,
    TextDelta,
    ToolCallEnd,
    Usage,
)

if TYPE_CHECKING:
    from aicli.orchestrator.cancellation import CancelToken

logger = logging.getLogger(__name__)


class LLMRouter:
    """
    Routes chat requests to a named provider and assembles the response.
    """

    def __init__(self, counter: TokenCounter | None = None) -> None:
        self._providers: dict[str, Provider] = {}
        self._active: str | None = None
        self._counter = counter or TokenCounter()

    # ------------------------------------------------------------------
    # Provider management
    # ------------------------------------------------------------------

    def register_provider(self, name: str, provider: Provider) -> None:
        """Register a provider under *name*.  Overwrites any existing entry."""
        self._providers[name] = provider
        if self._active is None:
            self._active = name

    def set_active(self, name: str) -> None:
        """
        Switch the active provider.

        Raises ``KeyError`` if *name* has not been registered.
        """
        if name not in self._providers:
            raise KeyError(
                f"Unknown provider {name!r}. "
                f"Registered: {list(self._providers)}"
            )
        self._active = name

    @property
    def active_name(self) -> str | None:
        return self._active

    @property
    def active_provider(self) -> Provider:
        """
        Return the active ``Provider`` instance.

        Raises ``RuntimeError`` if no provider is active.
        """
        if self._active is None or self._active not in self._providers:
            raise RuntimeError("No active LLM provider")
        return self._providers[self._active]

    # ------------------------------------------------------------------
    # Streaming chat
    # ------------------------------------------------------------------

    async def stream_round(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        cancel: CancelToken | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Run one round against the active provider and yield its events.

        The cancel token is polled between chunks; when it fires the stream
        is closed and a ``StreamError(cancelled)`` is the last event.
        """
        provider = self.active_provider
        assembler = ToolCallAssembler()
        stream = provider.chat(messages, tools=tools, timeout=timeout)
        try:
            while True:
                try:
                    chunk = await _next_chunk(stream, cancel)
                except StopAsyncIteration:
                    break
                if chunk is None:
                    yield StreamError(StreamErrorKind.CANCELLED, "interrupted by user")
                    return
                for event in assembler.feed(chunk):
                    yield event
                if chunk.done:
                    break
        except DecodeError as exc:
            logger.warning("Decode error from %s: %s", provider.name, exc)
            yield StreamError(StreamErrorKind.DECODE, str(exc))
            return
        except StreamTimeout as exc:
            logger.warning("Stream timeout from %s: %s", provider.name, exc)
            yield StreamError(StreamErrorKind.TIMEOUT, str(exc))
            return
        finally:
            await stream.aclose()

        if cancel is not None and cancel.is_set():
            yield StreamError(StreamErrorKind.CANCELLED, "interrupted by user")
            return

        estimate = Usage.estimate(
            self._counter.count_messages(messages, tools),
            self._counter.count_text(assembler.text),
        )
        for event in assembler.finish(estimate):
            yield event

    async def chat_complete(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        cancel: CancelToken | None = None,
        timeout: float | None = None,
    ) -> AssembledRound:
        """
        Consume a whole round and return an ``AssembledRound``.

        Used for tool-less requests such as compaction summaries.
        """
        content: list[str] = []
        calls = []
        usage: Usage | None = None
        error: StreamError | None = None

        async for event in self.stream_round(messages, tools, cancel=cancel, timeout=timeout):
            if isinstance(event, ToolCallEnd):
                calls.append(event.call)
            elif isinstance(event, RoundComplete):
                usage = event.usage
            elif isinstance(event, StreamError):
                error = event
            elif isinstance(event, TextDelta):
                content.append(event.text)

        metadata: dict = {}
        if self._active:
            metadata["provider"] = self._active
        return AssembledRound(
            content="".join(content),
            tool_calls=[] if error else calls,
            usage=usage,
            partial=error is not None,
            error=error,
            metadata=metadata,
        )


async def _next_chunk(
    stream: AsyncIterator[StreamChunk],
    cancel: CancelToken | None,
) -> StreamChunk | None:
    """
    Await the next chunk, or ``None`` as soon as *cancel* fires.

    Raises ``StopAsyncIteration`` when the stream is exhausted.
    """
    if cancel is None:
        return await stream.__anext__()
    if cancel.is_set():
        return None

    nxt = asyncio.ensure_future(_anext(stream))
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({nxt, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
    if nxt.done():
        return nxt.result()
    nxt.cancel()
    await asyncio.gather(nxt, return_exceptions=True)
    return None


async def _anext(stream: AsyncIterator[StreamChunk]) -> StreamChunk:
    return await stream.__anext__()
