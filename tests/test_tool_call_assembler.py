"""Tests for aicli.llm.tool_call_assembler.ToolCallAssembler."""

from __future__ import annotations

import json

from aicli.llm.tool_call_assembler import CallState, ToolCallAssembler
from aicli.llm.types import (
    RawToolDelta,
    RoundComplete,
    StreamChunk,
    TextDelta,
    ToolCall,
    ToolCallArgDelta,
    ToolCallEnd,
    ToolCallStart,
    Usage,
)


def _ends(events) -> list[ToolCall]:
    return [e.call for e in events if isinstance(e, ToolCallEnd)]


class TestSingleToolCall:
    """Assemble a single tool call from incremental deltas."""

    def test_basic_assembly(self):
        asm = ToolCallAssembler()

        # Name fragments are held back until the name is complete.
        assert asm.feed_delta(RawToolDelta(call_index=0, id="call_1", name_delta="read_")) == []
        assert asm.feed_delta(RawToolDelta(call_index=0, name_delta="file")) == []
        assert asm.state_of(0) is CallState.STARTED

        events = asm.feed_delta(RawToolDelta(call_index=0, args_delta='{"path": '))
        assert events == [
            ToolCallStart("call_1", "read_file"),
            ToolCallArgDelta("call_1", '{"path": '),
        ]
        assert asm.state_of(0) is CallState.ACCUMULATING_ARGS

        events = asm.feed_delta(RawToolDelta(call_index=0, args_delta='"/etc/hosts"}'))
        assert events == [ToolCallArgDelta("call_1", '"/etc/hosts"}')]

        events = asm.feed_delta(RawToolDelta(call_index=0, done=True))
        calls = _ends(events)
        assert len(calls) == 1

        tc = calls[0]
        assert tc.id == "call_1"
        assert tc.name == "read_file"
        assert tc.arguments == {"path": "/etc/hosts"}
        assert tc.raw_arguments == '{"path": "/etc/hosts"}'
        assert tc.parse_error is None
        assert asm.state_of(0) is CallState.COMPLETED

    def test_single_delta_with_everything(self):
        """A provider may send all data in one delta with done=True."""
        asm = ToolCallAssembler()
        events = asm.feed_delta(
            RawToolDelta(
                call_index=0,
                id="call_x",
                name_delta="ping",
                args_delta='{"host": "localhost"}',
                done=True,
            )
        )
        assert [type(e) for e in events] == [ToolCallStart, ToolCallArgDelta, ToolCallEnd]
        assert events[-1].call.arguments == {"host": "localhost"}

    def test_arguments_round_trip(self):
        args = {"text": 'quote " and \\ backslash', "nested": {"list": [1, 2.5, None, True]}, "ü": "ñ"}
        asm = ToolCallAssembler()
        raw = json.dumps(args)
        for i in range(0, len(raw), 5):
            asm.feed_delta(RawToolDelta(call_index=0, id="rt", name_delta="t" if i == 0 else "",
                                        args_delta=raw[i:i + 5]))
        calls = _ends(asm.feed_delta(RawToolDelta(call_index=0, done=True)))
        assert calls[0].arguments == args


class TestMultipleConcurrentToolCalls:
    """Two or more tool calls assembled in parallel (different call_index)."""

    def test_two_parallel_calls(self):
        asm = ToolCallAssembler()

        asm.feed_delta(RawToolDelta(call_index=0, id="c0", name_delta="alpha"))
        asm.feed_delta(RawToolDelta(call_index=1, id="c1", name_delta="beta"))
        asm.feed_delta(RawToolDelta(call_index=0, args_delta='{"x": 1}'))
        asm.feed_delta(RawToolDelta(call_index=1, args_delta='{"y": 2}'))
        assert asm.has_open_calls

        r0 = _ends(asm.feed_delta(RawToolDelta(call_index=0, done=True)))
        assert r0[0].name == "alpha"
        assert r0[0].arguments == {"x": 1}

        r1 = _ends(asm.feed_delta(RawToolDelta(call_index=1, done=True)))
        assert r1[0].name == "beta"
        assert r1[0].arguments == {"y": 2}
        assert not asm.has_open_calls

    def test_calls_property_keeps_stream_index_order(self):
        asm = ToolCallAssembler()
        for idx in (2, 0, 1):
            asm.feed_delta(RawToolDelta(call_index=idx, id=f"c{idx}", name_delta=f"tool_{idx}"))
        # Complete out of order.
        for idx in (1, 2, 0):
            asm.feed_delta(RawToolDelta(call_index=idx, args_delta=json.dumps({"idx": idx}), done=True))

        assert [tc.id for tc in asm.calls] == ["c0", "c1", "c2"]

    def test_events_preserve_interleaved_arrival_order(self):
        asm = ToolCallAssembler()
        events = []
        events += asm.feed(StreamChunk(delta="Let me look. "))
        events += asm.feed(StreamChunk(tool_deltas=[
            RawToolDelta(call_index=0, id="a", name_delta="ls", args_delta='{"p":'),
            RawToolDelta(call_index=1, id="b", name_delta="cat", args_delta='{"f":'),
        ]))
        events += asm.feed(StreamChunk(tool_deltas=[
            RawToolDelta(call_index=1, args_delta='"x"}', done=True),
            RawToolDelta(call_index=0, args_delta='"."}', done=True),
        ]))

        assert events[0] == TextDelta("Let me look. ")
        assert [e.id for e in events if isinstance(e, ToolCallStart)] == ["a", "b"]
        assert [e.id for e in events if isinstance(e, ToolCallEnd)] == ["b", "a"]


class TestMalformedJSON:
    """Malformed argument strings still produce a call carrying parse_error."""

    def test_invalid_json_on_done(self):
        asm = ToolCallAssembler()
        asm.feed_delta(RawToolDelta(call_index=0, id="bad", name_delta="broken"))
        asm.feed_delta(RawToolDelta(call_index=0, args_delta="NOT VALID JSON {{{"))
        calls = _ends(asm.feed_delta(RawToolDelta(call_index=0, done=True)))

        assert len(calls) == 1
        assert calls[0].id == "bad"
        assert calls[0].arguments == {}
        assert calls[0].raw_arguments == "NOT VALID JSON {{{"
        assert "not valid JSON" in calls[0].parse_error

    def test_non_object_json(self):
        asm = ToolCallAssembler()
        calls = _ends(asm.feed_delta(
            RawToolDelta(call_index=0, id="arr", name_delta="t", args_delta="[1, 2]", done=True)
        ))
        assert "must be a JSON object" in calls[0].parse_error

    def test_malformed_does_not_block_valid_calls(self):
        asm = ToolCallAssembler()

        asm.feed_delta(RawToolDelta(call_index=0, id="bad", name_delta="broken"))
        asm.feed_delta(RawToolDelta(call_index=0, args_delta="{BAD"))
        r0 = _ends(asm.feed_delta(RawToolDelta(call_index=0, done=True)))
        assert r0[0].parse_error

        asm.feed_delta(RawToolDelta(call_index=1, id="good", name_delta="ok"))
        asm.feed_delta(RawToolDelta(call_index=1, args_delta='{"a": 1}'))
        r1 = _ends(asm.feed_delta(RawToolDelta(call_index=1, done=True)))
        assert r1[0].name == "ok"
        assert r1[0].parse_error is None


class TestFinish:
    """finish() closes open calls and ends the round."""

    def test_finish_completes_open_buffer(self):
        asm = ToolCallAssembler()
        asm.feed_delta(RawToolDelta(call_index=0, id="f0", name_delta="flush_me"))
        asm.feed_delta(RawToolDelta(call_index=0, args_delta='{"done": true}'))

        events = asm.finish()
        calls = _ends(events)
        assert len(calls) == 1
        assert calls[0].arguments == {"done": True}
        assert isinstance(events[-1], RoundComplete)

    def test_finish_prefers_reported_usage(self):
        asm = ToolCallAssembler()
        reported = Usage(prompt_tokens=10, completion_tokens=5, total_tokens=15)
        asm.feed(StreamChunk(delta="hi", usage=reported))
        events = asm.finish(Usage.estimate(1, 1))
        assert events[-1].usage is reported

    def test_finish_falls_back_to_estimate(self):
        asm = ToolCallAssembler()
        estimate = Usage.estimate(7, 3)
        events = asm.finish(estimate)
        assert events == [RoundComplete(estimate)]
        assert events[0].usage.estimated

    def test_finish_multiple_buffers_in_index_order(self):
        asm = ToolCallAssembler()
        asm.feed_delta(RawToolDelta(call_index=1, id="b", name_delta="beta", args_delta='{"v": 2}'))
        asm.feed_delta(RawToolDelta(call_index=0, id="a", name_delta="alpha", args_delta='{"v": 1}'))

        calls = _ends(asm.finish())
        assert [c.name for c in calls] == ["alpha", "beta"]


class TestEmptyArgs:
    """Empty or absent arguments should default to ``{}``."""

    def test_no_args_delta(self):
        asm = ToolCallAssembler()
        calls = _ends(asm.feed_delta(
            RawToolDelta(call_index=0, id="no_args", name_delta="simple", done=True)
        ))
        assert calls[0].arguments == {}
        assert calls[0].parse_error is None

    def test_empty_string_args(self):
        asm = ToolCallAssembler()
        asm.feed_delta(RawToolDelta(call_index=0, id="empty", name_delta="tool"))
        asm.feed_delta(RawToolDelta(call_index=0, args_delta=""))
        calls = _ends(asm.feed_delta(RawToolDelta(call_index=0, done=True)))
        assert calls[0].arguments == {}



class TestIdFallback:
    def test_missing_id_uses_call_index(self):
        asm = ToolCallAssembler()
        calls = _ends(asm.feed_delta(
            RawToolDelta(call_index=7, name_delta="no_id", args_delta="{}", done=True)
        ))
        assert calls[0].id == "call_7"


class TestNameStripping:
    def test_whitespace_in_name(self):
        asm = ToolCallAssembler()
        asm.feed_delta(RawToolDelta(call_index=0, id="ws", name_delta="  spaced "))
        asm.feed_delta(RawToolDelta(call_index=0, name_delta=" tool  "))
        calls = _ends(asm.feed_delta(RawToolDelta(call_index=0, args_delta="{}", done=True)))
        assert calls[0].name == "spaced  tool"
