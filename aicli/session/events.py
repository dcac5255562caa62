"""
Core event model.

Everything the orchestrator reports to the UI during a turn is a
``CoreEvent``.  Events are transient: they are rendered and dropped, never
persisted.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from aicli.llm.types import ToolCall, Usage
from aicli.types import ToolResult


# ---------------------------------------------------------------------------
# Base event
# ---------------------------------------------------------------------------


@dataclass
class CoreEvent:
    """
    A single event emitted while a turn runs.

    Attributes
    ----------
    event_type:
        One of the ``EVENT_*`` constants below.
    payload:
        Event-specific data as a JSON-compatible dict.
    turn_id:
        Groups events that belong to the same user turn.
    event_id:
        Unique identifier for the event (UUID4).
    timestamp:
        UTC timestamp of event creation.
    """

    event_type: str
    payload: dict[str, Any]
    turn_id: str = ""
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d


# ---------------------------------------------------------------------------
# Core event types
# ---------------------------------------------------------------------------

EVENT_TEXT_DELTA = "text_delta"
EVENT_TOOL_CALL_STARTED = "tool_call_started"
EVENT_TOOL_CALL_RESULT = "tool_call_result"
EVENT_ROUND_COMPLETE = "round_complete"
EVENT_COMPACTION = "compaction"
EVENT_WARNING = "warning"
EVENT_ERROR = "error"
EVENT_DONE = "done"


# ---------------------------------------------------------------------------
# Factory helpers
# ---------------------------------------------------------------------------


def text_delta_event(turn_id: str, text: str) -> CoreEvent:
    return CoreEvent(EVENT_TEXT_DELTA, {"text": text}, turn_id=turn_id)


def tool_call_started_event(turn_id: str, call: ToolCall) -> CoreEvent:
    """Create a ``tool_call_started`` event once the call's arguments are complete."""
    return CoreEvent(
        EVENT_TOOL_CALL_STARTED,
        {
            "tool_call_id": call.id,
            "tool_name": call.name,
            "arguments": call.arguments,
        },
        turn_id=turn_id,
    )


def tool_call_result_event(
    turn_id: str,
    tool_call_id: str,
    tool_name: str,
    result: ToolResult,
) -> CoreEvent:
    return CoreEvent(
        EVENT_TOOL_CALL_RESULT,
        {
            "tool_call_id": tool_call_id,
            "tool_name": tool_name,
            "success": result.success,
            "content": result.content,
            "error": result.error,
            "error_code": result.error_code,
            "metadata": result.metadata,
        },
        turn_id=turn_id,
    )


def round_complete_event(
    turn_id: str,
    round_index: int,
    usage: Usage | None,
    used_tokens: int,
    capacity: int,
) -> CoreEvent:
    """Create a ``round_complete`` event carrying the context-window snapshot."""
    return CoreEvent(
        EVENT_ROUND_COMPLETE,
        {
            "round": round_index,
            "usage": asdict(usage) if usage is not None else None,
            "used_tokens": used_tokens,
            "capacity": capacity,
            "fraction_used": (used_tokens / capacity) if capacity else 0.0,
        },
        turn_id=turn_id,
    )


def compaction_event(
    turn_id: str,
    messages_replaced: int,
    tokens_before: int,
    tokens_after: int,
) -> CoreEvent:
    return CoreEvent(
        EVENT_COMPACTION,
        {
            "messages_replaced": messages_replaced,
            "tokens_before": tokens_before,
            "tokens_after": tokens_after,
        },
        turn_id=turn_id,
    )


def warning_event(turn_id: str, message: str, code: str = "") -> CoreEvent:
    return CoreEvent(EVENT_WARNING, {"message": message, "code": code}, turn_id=turn_id)


def error_event(
    turn_id: str,
    message: str,
    code: str = "",
    details: dict[str, Any] | None = None,
) -> CoreEvent:
    payload: dict[str, Any] = {"message": message, "code": code}
    if details is not None:
        payload["details"] = details
    return CoreEvent(EVENT_ERROR, payload, turn_id=turn_id)


def done_event(
    turn_id: str,
    status: str,
    rounds: int,
    content: str = "",
) -> CoreEvent:
    """
    Create the terminal ``done`` event.

    *status* is ``completed``, ``interrupted``, ``failed`` or
    ``round_limit``.
    """
    return CoreEvent(
        EVENT_DONE,
        {"status": status, "rounds": rounds, "content": content},
        turn_id=turn_id,
    )
