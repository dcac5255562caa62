"""
Deterministic token estimation.

Providers do not always report usage (and never for a conversation that has
not been sent yet), so compaction decisions rely on this estimator.  It is a
plain character heuristic, roughly 4 characters per token, so the same
conversation always produces the same count.
"""

from __future__ import annotations

import json

CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD = 4


class TokenCounter:
    """Estimate token counts for text and message lists."""

    def __init__(self, chars_per_token: int = CHARS_PER_TOKEN) -> None:
        self.chars_per_token = chars_per_token

    def count_text(self, text: str) -> int:
        """Return the estimated token count for a plain string."""
        if not text:
            return 0
        return max(1, len(text) // self.chars_per_token)

    def count_message(self, msg) -> int:
        """Estimate a single message: role overhead, content and tool calls."""
        total = MESSAGE_OVERHEAD
        total += self.count_text(getattr(msg, "content", None) or "")

        tool_calls = getattr(msg, "tool_calls", None)
        if tool_calls:
            for tc in tool_calls:
                total += self.count_text(tc.name)
                total += self.count_text(tc.raw_arguments or json.dumps(tc.arguments))

        tool_call_id = getattr(msg, "tool_call_id", None)
        if tool_call_id:
            total += self.count_text(tool_call_id)
        return total

    def count_messages(
        self,
        messages: list,
        tools: list[dict] | None = None,
    ) -> int:
        """
        Estimate the total token count for a conversation.

        If *tools* are provided their JSON representation is counted as
        well -- the model "sees" them in the prompt.
        """
        total = sum(self.count_message(m) for m in messages)
        if tools:
            total += self.count_text(json.dumps(tools))
        return total
