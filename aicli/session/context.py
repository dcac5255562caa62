"""
Context-window accounting.

:class:`ContextTracker` keeps a running ``used_tokens`` figure for the
conversation against the model's capacity and decides when the orchestrator
must compact.

The figure is reconciled after every round from two sources:

1.  The deterministic local estimate of the full request
    (:class:`~aicli.llm.token_counter.TokenCounter`).
2.  Provider-reported usage, when the round reported any.

The larger of the two wins, and within a turn the figure never decreases.
Only :meth:`ContextTracker.reset_after_compaction` and :meth:`reset` lower
it.
"""

from __future__ import annotations

from dataclasses import dataclass

from aicli.llm.token_counter import TokenCounter
from aicli.llm.types import Message, Usage

DEFAULT_COMPACT_THRESHOLD = 0.85


@dataclass
class ContextState:
    used_tokens: int = 0
    capacity: int = 0
    compaction_marker: int = 0


class ContextTracker:
    """
    Parameters
    ----------
    capacity:
        Context window of the active model, in tokens.
    counter:
        Token estimator.  Defaults to a fresh ``TokenCounter``.
    threshold:
        Fraction of ``capacity`` at which compaction is due.
    """

    def __init__(
        self,
        capacity: int,
        counter: TokenCounter | None = None,
        threshold: float = DEFAULT_COMPACT_THRESHOLD,
    ) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.counter = counter or TokenCounter()
        self.threshold = threshold
        self.state = ContextState(capacity=capacity)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def used_tokens(self) -> int:
        return self.state.used_tokens

    @property
    def capacity(self) -> int:
        return self.state.capacity

    @property
    def compaction_marker(self) -> int:
        return self.state.compaction_marker

    def fraction_used(self) -> float:
        """Share of the window in use, clamped to ``[0.0, 1.0]``."""
        return min(1.0, max(0.0, self.state.used_tokens / self.state.capacity))

    def should_compact(self) -> bool:
        return self.fraction_used() >= self.threshold

    def estimate(self, messages: list[Message], tools: list[dict] | None = None) -> int:
        return self.counter.count_messages(messages, tools)

    def update(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        usage: Usage | None = None,
    ) -> int:
        """Reconcile ``used_tokens`` after a round and return it."""
        observed = self.estimate(messages, tools)
        if usage is not None and not usage.estimated:
            observed = max(observed, usage.prompt_tokens + usage.completion_tokens)
        self.state.used_tokens = max(self.state.used_tokens, observed)
        return self.state.used_tokens

    def reset_after_compaction(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        *,
        marker: int,
    ) -> int:
        """
        Recompute from the compacted conversation.

        *marker* is the conversation index just past the summary, where the
        verbatim messages start.
        """
        self.state.used_tokens = self.estimate(messages, tools)
        self.state.compaction_marker = marker
        return self.state.used_tokens

    def set_capacity(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.state.capacity = capacity

    def reset(self) -> None:
        self.state.used_tokens = 0
        self.state.compaction_marker = 0
