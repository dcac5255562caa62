"""
Mock LLM providers for testing.

Provides canned responses so tests can exercise the router, assembler and
orchestrator without hitting real endpoints.
"""

from __future__ import annotations

import asyncio
import json
from typing import AsyncIterator, Union

from aicli.llm.providers.base import Provider
from aicli.llm.types import Message, ModelProfile, ProviderKind, RawToolDelta, StreamChunk, Usage


def mock_profile(
    name: str = "mock-model",
    max_ctx: int = 4096,
    max_out: int = 1024,
) -> ModelProfile:
    return ModelProfile(
        name=name,
        endpoint="https://mock.invalid",
        deployment=name,
        kind=ProviderKind.OTHER,
        context_window=max_ctx,
        max_tokens=max_out,
    )


Step = Union[list[Union[StreamChunk, Exception]], Exception]


class ScriptedProvider(Provider):
    """
    A provider that plays one scripted round per ``chat`` call.

    Each script step is either a list of chunks or an exception to raise
    before the first chunk.  A chunk list may contain ``HANG``, after which
    the stream blocks until cancelled, or an exception, which is raised
    mid-stream once the chunks before it have been yielded.

    Parameters
    ----------
    steps:
        One entry per expected round, consumed in order.
    chunk_delay:
        Seconds to sleep before each chunk.
    """

    def __init__(
        self,
        steps: list[Step],
        model_name: str = "mock-scripted",
        max_ctx: int = 8192,
        max_out: int = 1024,
        chunk_delay: float = 0.0,
    ) -> None:
        self._steps = list(steps)
        self._profile = mock_profile(model_name, max_ctx, max_out)
        self.chunk_delay = chunk_delay
        self.requests: list[list[Message]] = []
        self.tools_seen: list[list[dict] | None] = []

    @property
    def profile(self) -> ModelProfile:
        return self._profile

    @property
    def call_count(self) -> int:
        return len(self.requests)

    async def chat(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        self.requests.append(list(messages))
        self.tools_seen.append(tools)
        if not self._steps:
            raise AssertionError("ScriptedProvider ran out of steps")
        step = self._steps.pop(0)
        if isinstance(step, Exception):
            raise step
        for chunk in step:
            if isinstance(chunk, Exception):
                raise chunk
            if chunk is HANG:
                await asyncio.Event().wait()
            if self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)
            yield chunk


HANG = StreamChunk(delta="\x00hang")


# ---------------------------------------------------------------------------
# Chunk builders
# ---------------------------------------------------------------------------

def text_chunks(text: str, usage: Usage | None = None) -> list[StreamChunk]:
    """Stream *text* one word at a time and finish."""
    words = text.split(" ")
    chunks: list[StreamChunk] = []
    for i, word in enumerate(words):
        suffix = " " if i < len(words) - 1 else ""
        chunks.append(StreamChunk(delta=word + suffix))
    chunks.append(StreamChunk(usage=usage, done=True))
    return chunks


def tool_call_chunks(
    calls: list[tuple[str, dict, str]],
    content_prefix: str = "",
    usage: Usage | None = None,
) -> list[StreamChunk]:
    """
    Stream several tool calls with names and arguments split into fragments.

    *calls* is a list of ``(tool_name, tool_args, call_id)`` tuples.
    """
    chunks: list[StreamChunk] = []
    if content_prefix:
        chunks.append(StreamChunk(delta=content_prefix))

    for idx, (tool_name, tool_args, call_id) in enumerate(calls):
        half = len(tool_name) // 2
        chunks.append(
            StreamChunk(tool_deltas=[RawToolDelta(call_index=idx, id=call_id, name_delta=tool_name[:half])])
        )
        chunks.append(
            StreamChunk(tool_deltas=[RawToolDelta(call_index=idx, name_delta=tool_name[half:])])
        )
        args_json = json.dumps(tool_args)
        third = max(1, len(args_json) // 3)
        for part in (args_json[:third], args_json[third : 2 * third], args_json[2 * third :]):
            if part:
                chunks.append(StreamChunk(tool_deltas=[RawToolDelta(call_index=idx, args_delta=part)]))

    chunks.append(
        StreamChunk(
            tool_deltas=[RawToolDelta(call_index=i, done=True) for i in range(len(calls))],
            usage=usage,
            done=True,
        )
    )
    return chunks


def malformed_tool_call_chunks() -> list[StreamChunk]:
    """
    Stream a tool call whose arguments are not valid JSON.

    The assembler should still emit the call, with ``parse_error`` set.
    """
    return [
        StreamChunk(
            tool_deltas=[RawToolDelta(call_index=0, id="call_bad", name_delta="broken_tool")]
        ),
        StreamChunk(
            tool_deltas=[RawToolDelta(call_index=0, args_delta='{"key": INVALID_JSON')]
        ),
        StreamChunk(
            tool_deltas=[RawToolDelta(call_index=0, done=True)],
            done=True,
        ),
    ]
