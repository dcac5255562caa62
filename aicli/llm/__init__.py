"""LLM subsystem -- endpoint adapter, routing, and streaming tool-call assembly."""

from aicli.llm.types import (
    AssembledRound,
    Message,
    ModelProfile,
    ProviderKind,
    RawToolDelta,
    StreamChunk,
    ToolCall,
    Usage,
)
from aicli.llm.router import LLMRouter
from aicli.llm.tool_call_assembler import ToolCallAssembler
from aicli.llm.token_counter import TokenCounter

__all__ = [
    "AssembledRound",
    "LLMRouter",
    "Message",
    "ModelProfile",
    "ProviderKind",
    "RawToolDelta",
    "StreamChunk",
    "TokenCounter",
    "ToolCall",
    "ToolCallAssembler",
    "Usage",
]
