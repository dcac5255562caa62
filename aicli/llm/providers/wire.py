"""
Wire formats for each ``ProviderKind``.

Each kind maps to a ``WireFormat``: a ``build_request`` function that turns
the provider-agnostic conversation into a URL, headers and JSON body, and a
``parse_event`` function that turns one decoded SSE ``data`` payload into a
``StreamChunk``.  ``gpt``, ``deepseek`` and ``other`` all speak the OpenAI
chat-completions dialect; ``claude`` speaks the Anthropic Messages dialect.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Callable, NamedTuple

from aicli.llm.errors import DecodeError, TransportError
from aicli.llm.types import (
    Message,
    ModelProfile,
    ProviderKind,
    RawToolDelta,
    StreamChunk,
    Usage,
)

ANTHROPIC_VERSION = "2023-06-01"
FOUNDRY_API_VERSION = "2024-05-01-preview"
AZURE_OPENAI_API_VERSION = "2024-02-15-preview"
# First classic Azure OpenAI api-version that accepts stream_options.
AZURE_STREAM_USAGE_VERSION = "2024-09-01"


@dataclass
class WireRequest:
    url: str
    headers: dict[str, str]
    body: dict


@dataclass
class StreamState:
    """Per-round decoding state.  Create a fresh one for every request."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    # content-block index -> tool call index (claude only)
    tool_blocks: dict[int, int] = field(default_factory=dict)

    def usage(self) -> Usage | None:
        if self.prompt_tokens is None and self.completion_tokens is None:
            return None
        prompt = self.prompt_tokens or 0
        completion = self.completion_tokens or 0
        return Usage(prompt, completion, prompt + completion)


class WireFormat(NamedTuple):
    build_request: Callable[[ModelProfile, list[Message], list[dict] | None], WireRequest]
    parse_event: Callable[[dict, StreamState], StreamChunk | None]


# ---------------------------------------------------------------------------
# OpenAI dialect (gpt, deepseek, other)
# ---------------------------------------------------------------------------


def _openai_url(profile: ModelProfile) -> str:
    base = profile.endpoint.rstrip("/")
    if "/models" in base or "services.ai.azure.com" in base:
        if base.endswith("/models"):
            base = base[: -len("/models")]
        version = profile.api_version or FOUNDRY_API_VERSION
        return f"{base}/models/chat/completions?api-version={version}"
    if "openai.azure.com" in base:
        version = profile.api_version or AZURE_OPENAI_API_VERSION
        return (
            f"{base}/openai/deployments/{profile.deployment}"
            f"/chat/completions?api-version={version}"
        )
    if base.endswith("/chat/completions"):
        return base
    return f"{base}/chat/completions"


def _wants_stream_usage(profile: ModelProfile) -> bool:
    """
    Whether to ask for ``stream_options.include_usage``.

    Classic Azure OpenAI rejects the field with a 400 before
    ``AZURE_STREAM_USAGE_VERSION``; usage is then estimated locally.
    """
    base = profile.endpoint.rstrip("/")
    if "/models" in base or "services.ai.azure.com" in base:
        return True
    if "openai.azure.com" in base:
        version = profile.api_version or AZURE_OPENAI_API_VERSION
        return version[:10] >= AZURE_STREAM_USAGE_VERSION
    return True


def _openai_messages(messages: list[Message]) -> list[dict]:
    wire: list[dict] = []
    for msg in messages:
        m: dict = {"role": msg.role, "content": msg.content}
        if msg.tool_calls:
            m["content"] = msg.content or None
            m["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {
                        "name": tc.name,
                        "arguments": json.dumps(tc.arguments),
                    },
                }
                for tc in msg.tool_calls
            ]
        if msg.tool_call_id:
            m["tool_call_id"] = msg.tool_call_id
        wire.append(m)
    return wire


def build_openai_request(
    profile: ModelProfile,
    messages: list[Message],
    tools: list[dict] | None,
) -> WireRequest:
    headers = {
        "Content-Type": "application/json",
        "Accept": "text/event-stream",
    }
    if profile.api_key:
        headers["api-key"] = profile.api_key
        headers["Authorization"] = f"Bearer {profile.api_key}"

    body: dict = {
        "model": profile.deployment,
        "messages": _openai_messages(messages),
        "max_tokens": profile.max_tokens,
        "temperature": profile.temperature,
        "stream": True,
    }
    if _wants_stream_usage(profile):
        body["stream_options"] = {"include_usage": True}
    if tools:
        body["tools"] = tools
        body["tool_choice"] = "auto"
    return WireRequest(_openai_url(profile), headers, body)


def parse_openai_event(data: dict, state: StreamState) -> StreamChunk | None:
    """Convert one OpenAI ``chat.completion.chunk`` payload."""
    if "error" in data:
        err = data["error"]
        message = err.get("message", str(err)) if isinstance(err, dict) else str(err)
        raise TransportError(f"Provider error: {message}", code="provider_error")

    usage = data.get("usage")
    if isinstance(usage, dict):
        state.prompt_tokens = int(usage.get("prompt_tokens") or 0)
        state.completion_tokens = int(usage.get("completion_tokens") or 0)

    choices = data.get("choices")
    if choices is None and usage is None:
        raise DecodeError("chunk has neither choices nor usage", raw=json.dumps(data)[:200])
    if not isinstance(choices, list) or not choices:
        return StreamChunk(usage=state.usage()) if usage else None

    choice = choices[0]
    delta = choice.get("delta") or {}
    finish_reason = choice.get("finish_reason")

    tool_deltas: list[RawToolDelta] | None = None
    raw_tcs = delta.get("tool_calls")
    if raw_tcs:
        tool_deltas = []
        for raw_tc in raw_tcs:
            func = raw_tc.get("function") or {}
            tool_deltas.append(
                RawToolDelta(
                    call_index=raw_tc.get("index", 0),
                    id=raw_tc.get("id"),
                    name_delta=func.get("name") or "",
                    args_delta=func.get("arguments") or "",
                    # A finish_reason in the same chunk closes these calls.
                    done=finish_reason is not None,
                )
            )

    return StreamChunk(
        delta=delta.get("content") or "",
        tool_deltas=tool_deltas,
        usage=state.usage() if usage else None,
    )


# ---------------------------------------------------------------------------
# Anthropic dialect (claude)
# ---------------------------------------------------------------------------


def _claude_url(profile: ModelProfile) -> str:
    base = profile.endpoint.rstrip("/")
    if "services.ai.azure.com" in base:
        return f"{base}/anthropic/v1/messages"
    if base.endswith("/v1/messages"):
        return base
    if base.endswith("/v1"):
        return f"{base}/messages"
    return f"{base}/v1/messages"


def _claude_blocks(msg: Message) -> list[dict]:
    if msg.role == "tool":
        return [{
            "type": "tool_result",
            "tool_use_id": msg.tool_call_id or "",
            "content": msg.content,
        }]
    blocks: list[dict] = []
    if msg.content:
        blocks.append({"type": "text", "text": msg.content})
    for tc in msg.tool_calls or []:
        blocks.append({
            "type": "tool_use",
            "id": tc.id,
            "name": tc.name,
            "input": tc.arguments,
        })
    return blocks


def _claude_messages(messages: list[Message]) -> tuple[str, list[dict]]:
    """
    Convert to Anthropic's format.

    System messages are hoisted into the ``system`` field, tool results ride
    in user messages, and consecutive same-role messages are merged because
    the API requires alternating roles.
    """
    system_parts: list[str] = []
    converted: list[dict] = []
    for msg in messages:
        if msg.role == "system":
            if msg.content:
                system_parts.append(msg.content)
            continue
        role = "user" if msg.role == "tool" else msg.role
        blocks = _claude_blocks(msg)
        if not blocks:
            continue
        if converted and converted[-1]["role"] == role:
            converted[-1]["content"].extend(blocks)
        else:
            converted.append({"role": role, "content": blocks})
    return "\n\n".join(system_parts), converted


def _claude_tools(tools: list[dict] | None) -> list[dict]:
    converted = []
    for tool in tools or []:
        func = tool.get("function", tool)
        converted.append({
            "name": func["name"],
            "description": func.get("description", ""),
            "input_schema": func.get("parameters", {"type": "object"}),
        })
    return converted


def build_claude_request(
    profile: ModelProfile,
    messages: list[Message],
    tools: list[dict] | None,
) -> WireRequest:
    headers = {
        "Content-Type": "application/json",
        "Accept": "text/event-stream",
        "anthropic-version": ANTHROPIC_VERSION,
    }
    if profile.api_key:
        headers["x-api-key"] = profile.api_key
        headers["api-key"] = profile.api_key

    system, converted = _claude_messages(messages)
    body: dict = {
        "model": profile.deployment,
        "max_tokens": profile.max_tokens,
        "temperature": profile.temperature,
        "messages": converted,
        "stream": True,
    }
    if system:
        body["system"] = system
    claude_tools = _claude_tools(tools)
    if claude_tools:
        body["tools"] = claude_tools
    return WireRequest(_claude_url(profile), headers, body)


def parse_claude_event(data: dict, state: StreamState) -> StreamChunk | None:
    """Convert one Anthropic streaming event."""
    event_type = data.get("type")
    if event_type is None:
        raise DecodeError("event has no type", raw=json.dumps(data)[:200])

    if event_type == "error":
        err = data.get("error") or {}
        raise TransportError(
            f"Provider error: {err.get('message', 'unknown error')}",
            code=err.get("type", "provider_error"),
        )

    if event_type == "message_start":
        usage = (data.get("message") or {}).get("usage") or {}
        state.prompt_tokens = int(usage.get("input_tokens") or 0)
        if "output_tokens" in usage:
            state.completion_tokens = int(usage["output_tokens"] or 0)
        return StreamChunk(usage=state.usage())

    if event_type == "content_block_start":
        block = data.get("content_block") or {}
        idx = data.get("index", 0)
        if block.get("type") == "tool_use":
            call_index = len(state.tool_blocks)
            state.tool_blocks[idx] = call_index
            return StreamChunk(tool_deltas=[
                RawToolDelta(
                    call_index=call_index,
                    id=block.get("id"),
                    name_delta=block.get("name", ""),
                )
            ])
        if block.get("type") == "text" and block.get("text"):
            return StreamChunk(delta=block["text"])
        return None

    if event_type == "content_block_delta":
        delta = data.get("delta") or {}
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            return StreamChunk(delta=delta.get("text", ""))
        if delta_type == "input_json_delta":
            idx = data.get("index", 0)
            if idx not in state.tool_blocks:
                raise DecodeError(f"input_json_delta for unknown content block {idx}")
            return StreamChunk(tool_deltas=[
                RawToolDelta(
                    call_index=state.tool_blocks[idx],
                    args_delta=delta.get("partial_json", ""),
                )
            ])
        return None

    if event_type == "content_block_stop":
        idx = data.get("index", 0)
        if idx in state.tool_blocks:
            return StreamChunk(tool_deltas=[
                RawToolDelta(call_index=state.tool_blocks[idx], done=True)
            ])
        return None

    if event_type == "message_delta":
        usage = data.get("usage") or {}
        if "output_tokens" in usage:
            state.completion_tokens = int(usage["output_tokens"] or 0)
            return StreamChunk(usage=state.usage())
        return None

    if event_type == "message_stop":
        return StreamChunk(usage=state.usage(), done=True)

    # ping and future event types
    return None


WIRE_FORMATS: dict[ProviderKind, WireFormat] = {
    ProviderKind.CLAUDE: WireFormat(build_claude_request, parse_claude_event),
    ProviderKind.GPT: WireFormat(build_openai_request, parse_openai_event),
    ProviderKind.DEEPSEEK: WireFormat(build_openai_request, parse_openai_event),
    ProviderKind.OTHER: WireFormat(build_openai_request, parse_openai_event),
}


def wire_format_for(kind: ProviderKind) -> WireFormat:
    return WIRE_FORMATS[kind]
