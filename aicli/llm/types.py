"""Core types for the LLM subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union


class ProviderKind(str, Enum):
    """Closed set of wire formats the endpoint adapter knows how to speak."""

    CLAUDE = "claude"
    GPT = "gpt"
    DEEPSEEK = "deepseek"
    OTHER = "other"


DEFAULT_CONTEXT_WINDOWS: dict[ProviderKind, int] = {
    ProviderKind.CLAUDE: 200_000,
    ProviderKind.GPT: 128_000,
    ProviderKind.DEEPSEEK: 64_000,
    ProviderKind.OTHER: 32_000,
}


def detect_kind(deployment: str) -> ProviderKind:
    """Guess the provider kind from a deployment / model identifier."""
    lower = deployment.lower()
    if "claude" in lower or "anthropic" in lower:
        return ProviderKind.CLAUDE
    if "gpt" in lower or "o1" in lower or "o3" in lower:
        return ProviderKind.GPT
    if "deepseek" in lower or "r1" in lower:
        return ProviderKind.DEEPSEEK
    return ProviderKind.OTHER


@dataclass(frozen=True)
class ModelProfile:
    """
    A resolved model endpoint.

    Immutable for the lifetime of a session; the config layer builds these
    and the orchestrator only reads them.
    """

    name: str
    endpoint: str
    deployment: str
    kind: ProviderKind = ProviderKind.OTHER
    context_window: int = 0
    max_tokens: int = 4096
    temperature: float = 0.7
    api_key: str = field(default="", repr=False)
    api_version: str = ""
    timeout: float = 120.0

    @property
    def capacity(self) -> int:
        """Context capacity in tokens, falling back to the per-kind default."""
        return self.context_window or DEFAULT_CONTEXT_WINDOWS[self.kind]


@dataclass
class ToolCall:
    """A resolved tool call with parsed arguments."""

    id: str
    name: str
    arguments: dict
    message_index: int | None = None
    raw_arguments: str = ""
    parse_error: str | None = None


@dataclass(frozen=True)
class Message:
    """A single message in a conversation."""

    role: str  # "user", "assistant", "system", "tool"
    content: str
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None
    partial: bool = False


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated: bool = False

    @classmethod
    def estimate(cls, prompt_tokens: int, completion_tokens: int) -> Usage:
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            estimated=True,
        )


@dataclass
class RawToolDelta:
    """
    An incremental delta for a streaming tool call.

    Providers emit these as tool-call fragments arrive.  The ToolCallAssembler
    accumulates them and produces finished ToolCall objects.
    """

    call_index: int
    id: str | None = None
    name_delta: str = ""
    args_delta: str = ""
    done: bool = False


@dataclass
class StreamChunk:
    """
    A single provider-agnostic chunk yielded while streaming a completion.

    *delta* carries new text content.
    *tool_deltas* carries incremental tool-call fragments.
    *usage* is set when the provider reported token counters.
    *done* is ``True`` on the final chunk.
    """

    delta: str = ""
    tool_deltas: list[RawToolDelta] | None = None
    usage: Usage | None = None
    done: bool = False


# ---------------------------------------------------------------------------
# Stream events (assembler output, consumed by the orchestrator)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallStart:
    id: str
    name: str


@dataclass(frozen=True)
class ToolCallArgDelta:
    id: str
    fragment: str


@dataclass(frozen=True)
class ToolCallEnd:
    id: str
    call: ToolCall


@dataclass(frozen=True)
class RoundComplete:
    usage: Usage


class StreamErrorKind:
    DECODE = "decode"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StreamError:
    kind: str
    message: str = ""


StreamEvent = Union[
    TextDelta, ToolCallStart, ToolCallArgDelta, ToolCallEnd, RoundComplete, StreamError
]


@dataclass
class AssembledRound:
    """
    Everything one round produced, after the stream has been consumed.

    ``partial`` is set when the stream was interrupted or aborted before the
    provider finished; in that case ``tool_calls`` is always empty.
    """

    content: str
    tool_calls: list[ToolCall]
    usage: Usage | None = None
    partial: bool = False
    error: StreamError | None = None
    metadata: dict = field(default_factory=dict)
