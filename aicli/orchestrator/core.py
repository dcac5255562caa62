"""
Orchestrator core -- the round loop that ties everything together.

For one user message the orchestrator:
1. Appends the user message (with any attached file context)
2. Compacts the conversation first if the context window is too full
3. Streams a round from the model via the router, forwarding events
4. Executes the round's tool calls through the dispatcher
5. Appends one tool-result message per call, in request order
6. Loops until the model answers with no tool calls, the round limit is
   hit, the user interrupts, or the endpoint fails

Every path ends back in ``TurnState.IDLE``.  Transport, decode and tool
failures become events; only programming errors propagate.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator

from aicli.llm.errors import LLMError, RateLimitError
from aicli.llm.router import LLMRouter
from aicli.llm.types import (
    Message,
    RoundComplete,
    StreamError,
    StreamErrorKind,
    TextDelta,
    ToolCall,
    ToolCallArgDelta,
    ToolCallEnd,
    ToolCallStart,
    Usage,
)
from aicli.orchestrator.cancellation import CancelToken
from aicli.session.compaction import CompactionError, Compactor
from aicli.session.context import ContextTracker
from aicli.session.conversation import Conversation
from aicli.session.events import (
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
from aicli.tools.dispatcher import ToolDispatcher, cancelled_result
from aicli.types import FileExcerpt, ToolResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROUNDS = 25
DEFAULT_RATE_LIMIT_BACKOFF = 2.0
MAX_RATE_LIMIT_BACKOFF = 30.0


class TurnState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    STREAMING_TEXT = "streaming_text"
    STREAMING_TOOL_CALLS = "streaming_tool_calls"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"


class TurnInProgress(RuntimeError):
    """``submit_user_message`` was called while another turn is running."""


def compose_user_content(text: str, file_context: list[FileExcerpt] | None = None) -> str:
    """The user message text with attached file excerpts appended."""
    if not file_context:
        return text
    return f"{text}\n\nFile context:" + "".join(e.render() for e in file_context)


@dataclass
class _Round:
    """What one streamed round produced."""

    text: list[str] = field(default_factory=list)
    calls: list[ToolCall] = field(default_factory=list)
    usage: Usage | None = None
    error: StreamError | None = None

    @property
    def content(self) -> str:
        return "".join(self.text)


class Orchestrator:
    """
    Main orchestrator loop.

    Parameters
    ----------
    router : LLMRouter
        Model provider router.  Its active provider serves every round.
    dispatcher : ToolDispatcher
        Validates and executes tool calls.
    tracker : ContextTracker
        Context-window accounting for the active model.
    compactor : Compactor
        Performs compaction when the tracker says it is due.  ``None``
        disables compaction.
    system_prompt : str
        Sent as the first message of every round.
    max_rounds : int
        Max model rounds per user turn.
    rate_limit_backoff : float
        Seconds to wait before the single retry of a rate-limited request
        when the endpoint gives no ``Retry-After``.
    request_timeout : float
        Per-request deadline; ``None`` uses the model profile's timeout.
    """

    def __init__(
        self,
        router: LLMRouter,
        dispatcher: ToolDispatcher,
        tracker: ContextTracker,
        compactor: Compactor | None = None,
        system_prompt: str = "",
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        rate_limit_backoff: float = DEFAULT_RATE_LIMIT_BACKOFF,
        request_timeout: float | None = None,
    ) -> None:
        self.router = router
        self.dispatcher = dispatcher
        self.tracker = tracker
        self.compactor = compactor
        self.system_prompt = system_prompt
        self.max_rounds = max_rounds
        self.rate_limit_backoff = rate_limit_backoff
        self.request_timeout = request_timeout
        self.conversation = Conversation()
        self.state = TurnState.IDLE
        self.state_history: list[TurnState] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def history(self) -> list[Message]:
        return self.conversation.messages

    def tool_schema(self) -> list[dict]:
        policy = self.dispatcher.policy
        max_risk = policy.max_risk if policy is not None else None
        return self.dispatcher.registry.definitions(max_risk)

    def request_messages(self) -> list[Message]:
        """The message list sent to the model: system prompt plus conversation."""
        messages = self.conversation.messages
        if self.system_prompt:
            messages = [Message(role="system", content=self.system_prompt)] + messages
        return messages

    def clear(self) -> None:
        """Drop the conversation and reset context accounting."""
        if self.state is not TurnState.IDLE:
            raise TurnInProgress("cannot clear while a turn is running")
        self.conversation.clear()
        self.tracker.reset()

    def switch_profile(self, name: str) -> None:
        """
        Make the provider registered as *name* active.

        Raises ``KeyError`` for an unknown profile.
        """
        if self.state is not TurnState.IDLE:
            raise TurnInProgress("cannot switch models while a turn is running")
        self.router.set_active(name)
        self.tracker.set_capacity(self.router.active_provider.max_context_tokens)
        self.tracker.update(self.request_messages(), self.tool_schema())

    async def submit_user_message(
        self,
        text: str,
        file_context: list[FileExcerpt] | None = None,
        cancel: CancelToken | None = None,
    ) -> AsyncIterator[CoreEvent]:
        """
        Run one user turn and yield ``CoreEvent``s as it progresses.

        The last event is always ``done``.
        """
        if self.state is not TurnState.IDLE:
            raise TurnInProgress("a turn is already running")
        cancel = cancel or CancelToken()
        turn_id = str(uuid.uuid4())
        tools = self.tool_schema()
        self.state_history = []
        self._set_state(TurnState.AWAITING_MODEL)

        user_msg = Message(role="user", content=compose_user_content(text, file_context))
        self.conversation.append(user_msg)
        self.tracker.update(self.request_messages(), tools)

        rounds = 0
        compaction_blocked = False
        try:
            while True:
                if rounds >= self.max_rounds:
                    msg = (
                        f"Stopped: reached the maximum of {self.max_rounds} model rounds "
                        "for one message. Ask me to continue if more work is needed."
                    )
                    logger.warning("Turn %s hit the round limit (%d)", turn_id, self.max_rounds)
                    self.conversation.append(Message(role="assistant", content=msg))
                    yield error_event(turn_id, msg, code="round_limit")
                    yield done_event(turn_id, "round_limit", rounds, msg)
                    return

                if cancel.is_set():
                    yield done_event(turn_id, "interrupted", rounds)
                    return

                if not compaction_blocked and self.tracker.should_compact():
                    event = await self._compact(turn_id, tools, cancel)
                    if cancel.is_set():
                        if event.event_type != EVENT_WARNING:
                            yield event
                        yield done_event(turn_id, "interrupted", rounds)
                        return
                    if event.event_type == EVENT_WARNING:
                        compaction_blocked = True
                    yield event

                rounds += 1
                rnd = _Round()
                try:
                    async for event in self._stream_round(turn_id, tools, cancel, rnd):
                        yield event
                except LLMError as e:
                    logger.error("Round %d failed: %s", rounds, e)
                    if rnd.text or rnd.calls:
                        # The user has seen this output; keep the text.
                        if rnd.content:
                            self.conversation.append(
                                Message(role="assistant", content=rnd.content, partial=True)
                            )
                    elif rounds == 1 and self.conversation.last is user_msg:
                        # The round produced nothing; drop the message so a
                        # retry does not send it twice.
                        self.conversation.truncate(len(self.conversation) - 1)
                    yield error_event(turn_id, str(e), code=e.code)
                    yield done_event(turn_id, "failed", rounds, rnd.content)
                    return

                if rnd.error is not None:
                    for event in self._finish_aborted_round(turn_id, rnd):
                        yield event
                    status = "interrupted" if rnd.error.kind == StreamErrorKind.CANCELLED else "failed"
                    yield done_event(turn_id, status, rounds, rnd.content)
                    return

                if not rnd.content and not rnd.calls:
                    yield warning_event(turn_id, "The model returned an empty response", code="empty_response")
                else:
                    index = self.conversation.append(
                        Message(role="assistant", content=rnd.content, tool_calls=rnd.calls or None)
                    )
                    for call in rnd.calls:
                        call.message_index = index

                self.tracker.update(self.request_messages(), tools, rnd.usage)
                yield round_complete_event(
                    turn_id, rounds, rnd.usage, self.tracker.used_tokens, self.tracker.capacity
                )

                if not rnd.calls:
                    self._set_state(TurnState.DONE)
                    yield done_event(turn_id, "completed", rounds, rnd.content)
                    return

                self._set_state(TurnState.EXECUTING_TOOLS)
                if cancel.is_set():
                    results = [cancelled_result(call) for call in rnd.calls]
                else:
                    results = await self.dispatcher.dispatch_batch(rnd.calls, cancel)
                for event in self._append_results(turn_id, rnd.calls, results):
                    yield event
                self.tracker.update(self.request_messages(), tools)

                if cancel.is_set():
                    yield done_event(turn_id, "interrupted", rounds)
                    return
        finally:
            self._set_state(TurnState.IDLE)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_state(self, state: TurnState) -> None:
        if state is not self.state:
            logger.debug("Turn state %s -> %s", self.state.value, state.value)
        self.state = state
        self.state_history.append(state)

    async def _stream_round(
        self,
        turn_id: str,
        tools: list[dict],
        cancel: CancelToken,
        rnd: _Round,
    ) -> AsyncIterator[CoreEvent]:
        """
        Stream one round into *rnd*, retrying once on a rate limit.

        Other ``TransportError``s propagate to the turn loop.
        """
        for attempt in range(2):
            self._set_state(TurnState.AWAITING_MODEL)
            try:
                async for ev in self.router.stream_round(
                    self.request_messages(),
                    tools or None,
                    cancel=cancel,
                    timeout=self.request_timeout,
                ):
                    if isinstance(ev, TextDelta):
                        if self.state is TurnState.AWAITING_MODEL:
                            self._set_state(TurnState.STREAMING_TEXT)
                        rnd.text.append(ev.text)
                        yield text_delta_event(turn_id, ev.text)
                    elif isinstance(ev, (ToolCallStart, ToolCallArgDelta)):
                        if self.state is not TurnState.STREAMING_TOOL_CALLS:
                            self._set_state(TurnState.STREAMING_TOOL_CALLS)
                    elif isinstance(ev, ToolCallEnd):
                        rnd.calls.append(ev.call)
                        yield tool_call_started_event(turn_id, ev.call)
                    elif isinstance(ev, RoundComplete):
                        rnd.usage = ev.usage
                    elif isinstance(ev, StreamError):
                        rnd.error = ev
                return
            except RateLimitError as e:
                if attempt > 0 or rnd.text or rnd.calls:
                    raise
                delay = min(e.retry_after or self.rate_limit_backoff, MAX_RATE_LIMIT_BACKOFF)
                logger.warning("Rate limited; retrying once in %.1fs", delay)
                yield warning_event(
                    turn_id, f"Rate limited by the endpoint; retrying in {delay:.0f}s", code="rate_limited"
                )
                await asyncio.sleep(delay)

    def _finish_aborted_round(self, turn_id: str, rnd: _Round) -> list[CoreEvent]:
        """
        Commit what an interrupted or failed round produced.

        Received text is kept as a ``partial`` assistant message.  Tool calls
        completed before an interrupt are kept with ``cancelled`` results so
        every call still has exactly one result; after a decode or timeout
        failure they are dropped with the rest of the round.
        """
        events: list[CoreEvent] = []
        interrupted = rnd.error.kind == StreamErrorKind.CANCELLED
        calls = rnd.calls if interrupted else []
        if rnd.content or calls:
            index = self.conversation.append(
                Message(
                    role="assistant",
                    content=rnd.content,
                    tool_calls=calls or None,
                    partial=True,
                )
            )
            for call in calls:
                call.message_index = index
        if calls:
            events.extend(
                self._append_results(turn_id, calls, [cancelled_result(c) for c in calls])
            )
        if not interrupted:
            logger.warning("Round aborted: %s: %s", rnd.error.kind, rnd.error.message)
            events.append(error_event(turn_id, rnd.error.message, code=rnd.error.kind))
        return events

    def _append_results(
        self,
        turn_id: str,
        calls: list[ToolCall],
        results: list[ToolResult],
    ) -> list[CoreEvent]:
        events: list[CoreEvent] = []
        for call, result in zip(calls, results):
            self.conversation.append(
                Message(
                    role="tool",
                    content=result.to_message_content(),
                    tool_call_id=call.id,
                    name=call.name,
                )
            )
            events.append(tool_call_result_event(turn_id, call.id, call.name, result))
        return events

    async def _compact(
        self,
        turn_id: str,
        tools: list[dict],
        cancel: CancelToken,
    ) -> CoreEvent:
        percent = round(self.tracker.fraction_used() * 100)
        if self.compactor is None:
            return warning_event(
                turn_id, f"Context {percent}% full and compaction is disabled", code="compaction_skipped"
            )
        try:
            result = await self.compactor.compact(self.conversation.messages, cancel=cancel)
        except CompactionError as e:
            logger.warning("Compaction skipped: %s", e)
            return warning_event(
                turn_id, f"Context {percent}% full; compaction skipped: {e}", code="compaction_failed"
            )

        summary = result.messages[:1]
        self.conversation.replace_prefix(result.replaced, summary)
        before = self.tracker.used_tokens
        after = self.tracker.reset_after_compaction(
            self.request_messages(), tools, marker=len(summary)
        )
        return compaction_event(turn_id, result.replaced, before, after)
