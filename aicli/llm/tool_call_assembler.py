"""
Assembles provider-agnostic stream chunks into ordered ``StreamEvent``s.

Design goals:
  - Emit text and tool-call fragments in arrival order.
  - Accumulate ``RawToolDelta`` fragments keyed by ``call_index``; several
    calls may be open at once.
  - On ``done=True`` (or at ``finish()``), parse the accumulated argument
    string.  A call whose arguments do not parse is still emitted, with
    ``parse_error`` set, so the dispatcher can answer it with an
    ``invalid_arguments`` result and the round keeps its id correlation.
"""

from __future__ import annotations

import json
import logging
from enum import Enum

from aicli.llm.types import (
    RawToolDelta,
    RoundComplete,
    StreamChunk,
    StreamEvent,
    TextDelta,
    ToolCall,
    ToolCallArgDelta,
    ToolCallEnd,
    ToolCallStart,
    Usage,
)

logger = logging.getLogger(__name__)


class CallState(str, Enum):
    STARTED = "started"
    ACCUMULATING_ARGS = "accumulating_args"
    COMPLETED = "completed"


class _Buffer:
    __slots__ = ("index", "id", "name", "args", "state", "announced")

    def __init__(self, index: int) -> None:
        self.index = index
        self.id: str | None = None
        self.name = ""
        self.args = ""
        self.state = CallState.STARTED
        self.announced = False

    @property
    def call_id(self) -> str:
        return self.id or f"call_{self.index}"


class ToolCallAssembler:
    """Turns ``StreamChunk``s into ``StreamEvent``s for a single round."""

    def __init__(self) -> None:
        self._buf: dict[int, _Buffer] = {}
        self._completed: list[tuple[int, ToolCall]] = []
        self._text: list[str] = []
        self.usage: Usage | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def text(self) -> str:
        return "".join(self._text)

    @property
    def calls(self) -> list[ToolCall]:
        """Completed calls in request (stream index) order."""
        return [tc for _, tc in sorted(self._completed, key=lambda item: item[0])]

    @property
    def has_open_calls(self) -> bool:
        return any(b.state is not CallState.COMPLETED for b in self._buf.values())

    def state_of(self, call_index: int) -> CallState | None:
        buf = self._buf.get(call_index)
        return buf.state if buf else None

    def feed(self, chunk: StreamChunk) -> list[StreamEvent]:
        """Feed one chunk; returns the events it produced, in order."""
        events: list[StreamEvent] = []
        if chunk.delta:
            self._text.append(chunk.delta)
            events.append(TextDelta(chunk.delta))
        if chunk.tool_deltas:
            for td in chunk.tool_deltas:
                events.extend(self.feed_delta(td))
        if chunk.usage is not None:
            self.usage = chunk.usage
        return events

    def feed_delta(self, delta: RawToolDelta) -> list[StreamEvent]:
        """
        Feed a single ``RawToolDelta``.

        ``ToolCallStart`` is held back until the first argument fragment (or
        completion) so that a name split across deltas is announced whole.
        """
        buf = self._buf.get(delta.call_index)
        if buf is None or buf.state is CallState.COMPLETED:
            buf = _Buffer(delta.call_index)
            self._buf[delta.call_index] = buf

        if delta.id and not buf.id:
            buf.id = delta.id
        if delta.name_delta:
            buf.name += delta.name_delta

        events: list[StreamEvent] = []
        if delta.args_delta:
            events.extend(self._announce(buf))
            buf.state = CallState.ACCUMULATING_ARGS
            buf.args += delta.args_delta
            events.append(ToolCallArgDelta(buf.call_id, delta.args_delta))

        if delta.done:
            events.extend(self._complete(buf))
        return events

    def finish(self, estimate: Usage | None = None) -> list[StreamEvent]:
        """
        Close every call still open (in index order) and emit the terminal
        ``RoundComplete``.  *estimate* is used when the provider reported no
        usage.
        """
        events: list[StreamEvent] = []
        for idx in sorted(self._buf):
            buf = self._buf[idx]
            if buf.state is not CallState.COMPLETED:
                events.extend(self._complete(buf))
        usage = self.usage or estimate or Usage(estimated=True)
        events.append(RoundComplete(usage))
        return events

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _announce(self, buf: _Buffer) -> list[StreamEvent]:
        if buf.announced:
            return []
        buf.announced = True
        return [ToolCallStart(buf.call_id, buf.name.strip())]

    def _complete(self, buf: _Buffer) -> list[StreamEvent]:
        events = self._announce(buf)
        buf.state = CallState.COMPLETED

        raw_args = buf.args
        args: dict = {}
        parse_error: str | None = None
        try:
            parsed = json.loads(raw_args) if raw_args.strip() else {}
        except (json.JSONDecodeError, ValueError) as exc:
            parse_error = f"arguments are not valid JSON: {exc}"
        else:
            if isinstance(parsed, dict):
                args = parsed
            else:
                parse_error = f"arguments must be a JSON object, got {type(parsed).__name__}"

        if parse_error:
            logger.warning(
                "Tool call %s (%s) has malformed arguments: %s",
                buf.call_id, buf.name, parse_error,
            )

        call = ToolCall(
            id=buf.call_id,
            name=buf.name.strip(),
            arguments=args,
            raw_arguments=raw_args,
            parse_error=parse_error,
        )
        self._completed.append((buf.index, call))
        events.append(ToolCallEnd(call.id, call))
        return events
