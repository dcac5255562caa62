"""Session state: conversation, context accounting, compaction, events."""

from aicli.session.compaction import CompactionError, CompactionResult, Compactor
from aicli.session.context import ContextState, ContextTracker
from aicli.session.conversation import Conversation
from aicli.session.events import (
    EVENT_COMPACTION,
    EVENT_DONE,
    EVENT_ERROR,
    EVENT_ROUND_COMPLETE,
    EVENT_TEXT_DELTA,
    EVENT_TOOL_CALL_RESULT,
    EVENT_TOOL_CALL_STARTED,
    EVENT_WARNING,
    CoreEvent,
    compaction_event,
    done_event,
    error_event,
    round_complete_event,
    text_delta_event,
    tool_call_result_event,
    tool_call_started_event,
    warning_event,
)

__all__ = [
    "CompactionError",
    "CompactionResult",
    "Compactor",
    "ContextState",
    "ContextTracker",
    "Conversation",
    "CoreEvent",
    # Event type constants
    "EVENT_COMPACTION",
    "EVENT_DONE",
    "EVENT_ERROR",
    "EVENT_ROUND_COMPLETE",
    "EVENT_TEXT_DELTA",
    "EVENT_TOOL_CALL_RESULT",
    "EVENT_TOOL_CALL_STARTED",
    "EVENT_WARNING",
    # Factory functions
    "compaction_event",
    "done_event",
    "error_event",
    "round_complete_event",
    "text_delta_event",
    "tool_call_result_event",
    "tool_call_started_event",
    "warning_event",
]
