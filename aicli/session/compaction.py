"""
Conversation compaction.

Replaces an older prefix of the conversation with a single ``system``
message summarising it, keeping the most recent ``keep_tail`` messages
verbatim.  The prefix/tail boundary never separates an assistant tool-call
message from its tool results.

Two strategies:

``model``
    A dedicated, tool-less round asks the active model for the summary.
``local``
    A deterministic digest of the prefix (role plus the first 200
    characters of each message).  No network round.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from aicli.llm.errors import LLMError
from aicli.llm.token_counter import TokenCounter
from aicli.llm.types import Message

if TYPE_CHECKING:
    from aicli.llm.router import LLMRouter
    from aicli.orchestrator.cancellation import CancelToken

logger = logging.getLogger(__name__)

DEFAULT_KEEP_TAIL = 4
SUMMARY_HEADER = "[Conversation Summary - {count} earlier messages]"
SUMMARY_FOOTER = "[End of Summary]"
_TRANSCRIPT_MESSAGE_CHARS = 4000
_DIGEST_MESSAGE_CHARS = 200

SUMMARY_INSTRUCTIONS = (
    "You are compacting a conversation between a user and an AI assistant "
    "that uses tools on the user's computer. Summarise the transcript below "
    "so the assistant can continue the work without it. Keep: the user's "
    "goals and constraints, decisions made, files read or changed (with "
    "paths), commands run and their important results, and any open "
    "questions. Be concise. Reply with the summary only."
)


class CompactionError(Exception):
    """Compaction could not be performed; the caller skips it this round."""


@dataclass
class CompactionResult:
    messages: list[Message]
    replaced: int
    tokens_before: int
    tokens_after: int
    summary: str


class Compactor:
    """
    Parameters
    ----------
    router:
        Used for the summary round.  Required for the ``model`` strategy.
    counter:
        Token estimator used to check that compaction actually helped.
    keep_tail:
        Number of most recent messages kept verbatim.
    strategy:
        ``"model"`` or ``"local"``.
    """

    def __init__(
        self,
        router: LLMRouter | None = None,
        counter: TokenCounter | None = None,
        keep_tail: int = DEFAULT_KEEP_TAIL,
        strategy: str = "model",
    ) -> None:
        if strategy not in ("model", "local"):
            raise ValueError(f"Unknown compaction strategy: {strategy!r}")
        if strategy == "model" and router is None:
            raise ValueError("the model compaction strategy needs a router")
        self.router = router
        self.counter = counter or TokenCounter()
        self.keep_tail = keep_tail
        self.strategy = strategy

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def split_point(self, messages: list[Message]) -> int:
        """
        Index of the first message kept verbatim.

        Starts ``keep_tail`` messages from the end and moves backwards past
        tool-result messages, so their assistant tool-call message stays in
        the tail with them.
        """
        boundary = max(0, len(messages) - self.keep_tail)
        while 0 < boundary < len(messages) and messages[boundary].role == "tool":
            boundary -= 1
        return boundary

    async def compact(
        self,
        messages: list[Message],
        cancel: CancelToken | None = None,
    ) -> CompactionResult:
        """
        Build the compacted message list.

        Raises ``CompactionError`` when there is nothing to compact, the
        summary round fails, or the result is not smaller than the input.
        """
        boundary = self.split_point(messages)
        prefix, tail = messages[:boundary], messages[boundary:]
        if not prefix:
            raise CompactionError("nothing to compact: the whole conversation is in the kept tail")

        if self.strategy == "model":
            body = await self._summarise_with_model(prefix, cancel)
        else:
            body = self._digest(prefix)

        summary = "\n".join([
            SUMMARY_HEADER.format(count=len(prefix)),
            body.strip(),
            SUMMARY_FOOTER,
        ])
        compacted = [Message(role="system", content=summary)] + tail

        before = self.counter.count_messages(messages)
        after = self.counter.count_messages(compacted)
        if after >= before:
            raise CompactionError(
                f"summary did not reduce the context ({before} -> {after} tokens)"
            )
        logger.info(
            "Compacted %d messages: %d -> %d tokens (strategy=%s)",
            len(prefix), before, after, self.strategy,
        )
        return CompactionResult(
            messages=compacted,
            replaced=len(prefix),
            tokens_before=before,
            tokens_after=after,
            summary=summary,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _summarise_with_model(
        self,
        prefix: list[Message],
        cancel: CancelToken | None,
    ) -> str:
        request = [
            Message(role="system", content=SUMMARY_INSTRUCTIONS),
            Message(role="user", content=render_transcript(prefix)),
        ]
        try:
            result = await self.router.chat_complete(request, tools=None, cancel=cancel)
        except LLMError as e:
            raise CompactionError(f"summary round failed: {e}") from e
        if result.error is not None:
            raise CompactionError(f"summary round failed: {result.error.kind}: {result.error.message}")
        if not result.content.strip():
            raise CompactionError("summary round returned no text")
        return result.content

    @staticmethod
    def _digest(prefix: list[Message]) -> str:
        lines = []
        for msg in prefix:
            content = msg.content
            if len(content) > _DIGEST_MESSAGE_CHARS:
                content = content[:_DIGEST_MESSAGE_CHARS] + "..."
            lines.append(f"[{msg.role.capitalize()}]: {content}")
        return "\n".join(lines)


def render_transcript(messages: list[Message]) -> str:
    """Plain-text transcript of *messages* for the summary request."""
    parts: list[str] = []
    for msg in messages:
        content = msg.content
        if len(content) > _TRANSCRIPT_MESSAGE_CHARS:
            content = content[:_TRANSCRIPT_MESSAGE_CHARS] + "\n[...truncated]"
        if msg.role == "tool":
            parts.append(f"TOOL RESULT ({msg.name or msg.tool_call_id}):\n{content}")
            continue
        header = msg.role.upper()
        if msg.partial:
            header += " (interrupted)"
        block = f"{header}:\n{content}" if content else f"{header}:"
        for tc in msg.tool_calls or []:
            block += f"\n-> called {tc.name}({json.dumps(tc.arguments)})"
        parts.append(block)
    return "\n\n".join(parts)
