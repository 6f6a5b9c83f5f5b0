"""Unit tests for the stream reassembly state machine."""

import threading

import pytest

from misanthropy.content import TextBlock, ThinkingBlock, ToolUseBlock
from misanthropy.errors import (
    DecodeError,
    ProtocolViolation,
    RateLimitExceeded,
    ToolInputParseError,
    UpstreamError,
)
from misanthropy.events import decode_event
from misanthropy.streaming import StreamingResponse, StreamState
from tests.conftest import (
    block_stop,
    error_frame,
    feed_all,
    hello_frames,
    json_delta,
    message_delta,
    message_start,
    message_stop,
    ping,
    signature_delta,
    text_delta,
    text_start,
    thinking_delta,
    thinking_start,
    tool_frames,
    tool_start,
)


# ---------------------------------------------------------------------------
# Happy paths
# ---------------------------------------------------------------------------

class TestReassembly:
    def test_hello_scenario(self):
        stream = feed_all(hello_frames())
        response = stream.response()

        assert stream.state == StreamState.COMPLETED
        assert response.content == [TextBlock(text="Hello")]
        assert response.stop_reason == "end_turn"
        assert response.usage.input_tokens == 10
        assert response.usage.output_tokens == 2
        assert response.id == "msg_1"
        assert response.model == "claude-test"

    def test_thinking_text_and_tool_use(self):
        response = feed_all(tool_frames()).response()

        assert response.content == [
            ThinkingBlock(
                thinking="The user wants the weather.", signature="sig-abc",
            ),
            TextBlock(text="Let me check."),
            ToolUseBlock(
                id="toolu_1", name="get_weather", input={"location": "Paris"},
            ),
        ]
        assert response.stop_reason == "tool_use"

    def test_message_delta_usage_keeps_unreported_counters(self):
        response = feed_all(tool_frames()).response()
        # message_start reported input=10, the delta only output=42
        assert response.usage.input_tokens == 10
        assert response.usage.output_tokens == 42

    def test_two_usage_reports_leave_only_the_second(self):
        frames = hello_frames()
        frames.insert(-1, message_delta("end_turn", input_tokens=10, output_tokens=7))
        response = feed_all(frames).response()
        assert response.usage.output_tokens == 7

    def test_tool_use_without_input_keeps_seed_input(self):
        stream = feed_all([
            message_start(),
            tool_start(0, name="now"),
            block_stop(0),
            message_delta("tool_use"),
            message_stop(),
        ])
        assert stream.response().content[0].input == {}

    def test_pings_and_unknown_frames_are_ignored(self):
        frames = hello_frames()
        frames.insert(0, ping())
        frames.insert(3, {"type": "shiny_new_event", "payload": 1})
        frames.append(ping())
        stream = feed_all(frames)
        assert stream.response().content == [TextBlock(text="Hello")]

    def test_redacted_thinking_arrives_whole(self, started_stream):
        started_stream.feed({
            "type": "content_block_start",
            "index": 0,
            "content_block": {"type": "redacted_thinking", "data": "opaque"},
        })
        started_stream.feed(block_stop(0))
        started_stream.feed(message_stop())
        assert started_stream.response().content[0].data == "opaque"

    def test_feed_returns_decoded_event(self, stream):
        event = stream.feed(message_start())
        assert event.type == "message_start"

    def test_from_events(self):
        events = [decode_event(f) for f in hello_frames()]
        stream = StreamingResponse.from_events(events)
        assert stream.is_complete

    def test_interleaved_blocks_stop_in_start_order(self, started_stream):
        for frame in [
            text_start(0),
            text_start(1),
            text_delta(1, "second"),
            text_delta(0, "first"),
            block_stop(0),
            block_stop(1),
            message_stop(),
        ]:
            started_stream.feed(frame)
        texts = [b.text for b in started_stream.response().content]
        assert texts == ["first", "second"]


# ---------------------------------------------------------------------------
# Partial reads
# ---------------------------------------------------------------------------

class TestSnapshot:
    def test_snapshot_shows_partial_text(self, started_stream):
        started_stream.feed(text_start(0))
        started_stream.feed(text_delta(0, "Hel"))

        snap = started_stream.snapshot()
        assert snap.content == [TextBlock(text="Hel")]
        assert started_stream.state == StreamState.IN_PROGRESS
        assert started_stream.open_indices == [0]

    def test_snapshot_is_a_copy(self, started_stream):
        started_stream.feed(text_start(0))
        started_stream.feed(text_delta(0, "Hel"))
        snap = started_stream.snapshot()
        started_stream.feed(text_delta(0, "lo"))

        assert snap.content[0].text == "Hel"
        assert started_stream.snapshot().content[0].text == "Hello"

    def test_snapshot_hides_unparseable_tool_input(self, started_stream):
        started_stream.feed(text_start(0))
        started_stream.feed(text_delta(0, "Checking"))
        started_stream.feed(block_stop(0))
        started_stream.feed(tool_start(1))
        started_stream.feed(json_delta(1, '{"location": "Pa'))

        assert started_stream.snapshot().content == [TextBlock(text="Checking")]

        started_stream.feed(json_delta(1, 'ris"}'))
        snap = started_stream.snapshot()
        assert snap.content[1].input == {"location": "Paris"}

    def test_response_before_completion_is_a_violation(self, started_stream):
        with pytest.raises(ProtocolViolation):
            started_stream.response()
        # reading does not break the stream
        assert started_stream.state == StreamState.IN_PROGRESS

    def test_fresh_snapshot_is_empty(self, stream):
        snap = stream.snapshot()
        assert snap.content == []
        assert snap.usage.total() == 0

    def test_snapshots_from_another_thread_see_whole_deltas(self, started_stream):
        started_stream.feed(text_start(0))
        seen = []
        done = threading.Event()

        def reader():
            while True:
                snap = started_stream.snapshot()
                seen.append(snap.content[0].text)
                if done.is_set():
                    break

        thread = threading.Thread(target=reader)
        thread.start()
        try:
            for _ in range(2000):
                started_stream.feed(text_delta(0, "ab"))
        finally:
            done.set()
            thread.join()
        started_stream.feed(block_stop(0))
        started_stream.feed(message_stop())

        assert seen
        assert all(text == "ab" * (len(text) // 2) for text in seen)
        lengths = [len(text) for text in seen]
        assert lengths == sorted(lengths)
        assert started_stream.response().content[0].text == "ab" * 2000


# ---------------------------------------------------------------------------
# Protocol violations
# ---------------------------------------------------------------------------

class TestViolations:
    def test_delta_for_unknown_index(self, started_stream):
        with pytest.raises(ProtocolViolation, match="never started"):
            started_stream.feed(text_delta(0, "x"))
        assert started_stream.state == StreamState.ERRORED

    def test_delta_for_closed_index(self, started_stream):
        started_stream.feed(text_start(0))
        started_stream.feed(block_stop(0))
        with pytest.raises(ProtocolViolation, match="already stopped"):
            started_stream.feed(text_delta(0, "late"))

    def test_skipped_start_index(self, started_stream):
        started_stream.feed(text_start(0))
        with pytest.raises(ProtocolViolation, match="expected 1"):
            started_stream.feed(text_start(2))

    def test_start_index_must_begin_at_zero(self, started_stream):
        with pytest.raises(ProtocolViolation):
            started_stream.feed(text_start(1))

    def test_message_stop_with_open_slot(self, started_stream):
        started_stream.feed(text_start(0))
        with pytest.raises(ProtocolViolation, match="open content blocks"):
            started_stream.feed(message_stop())

    def test_message_start_twice(self, started_stream):
        with pytest.raises(ProtocolViolation, match="twice"):
            started_stream.feed(message_start())

    def test_event_before_message_start(self, stream):
        with pytest.raises(ProtocolViolation, match="before message_start"):
            stream.feed(text_start(0))

    def test_stop_before_start(self, started_stream):
        with pytest.raises(ProtocolViolation):
            started_stream.feed(block_stop(0))

    def test_out_of_order_stop_is_rejected(self, started_stream):
        # Interleaved stops are treated as a violation: block 1 may not
        # stop while block 0 is still open.
        started_stream.feed(text_start(0))
        started_stream.feed(text_start(1))
        with pytest.raises(ProtocolViolation, match="still open"):
            started_stream.feed(block_stop(1))

    @pytest.mark.parametrize(
        "start,bad_delta",
        [
            (text_start, json_delta(0, "{}")),
            (text_start, signature_delta(0, "sig")),
            (thinking_start, text_delta(0, "x")),
            (tool_start, thinking_delta(0, "x")),
        ],
        ids=["json-on-text", "signature-on-text", "text-on-thinking", "thinking-on-tool"],
    )
    def test_delta_of_wrong_kind(self, started_stream, start, bad_delta):
        started_stream.feed(start(0))
        with pytest.raises(ProtocolViolation, match="cannot apply"):
            started_stream.feed(bad_delta)

    def test_events_after_completion(self):
        stream = feed_all(hello_frames())
        with pytest.raises(ProtocolViolation, match="after stream completed"):
            stream.feed(text_start(1))

    def test_ping_after_completion_is_fine(self):
        stream = feed_all(hello_frames())
        stream.feed(ping())
        assert stream.is_complete

    def test_partial_content_survives_violation(self, started_stream):
        started_stream.feed(text_start(0))
        started_stream.feed(text_delta(0, "kept"))
        with pytest.raises(ProtocolViolation):
            started_stream.feed(text_delta(5, "bad"))

        assert started_stream.snapshot().content == [TextBlock(text="kept")]
        assert isinstance(started_stream.error, ProtocolViolation)

    def test_errored_stream_rejects_further_events(self, started_stream):
        with pytest.raises(ProtocolViolation):
            started_stream.feed(block_stop(3))
        with pytest.raises(ProtocolViolation, match="after stream errored"):
            started_stream.feed(text_start(0))
        # the first error is the one remembered
        assert "never started" in str(started_stream.error)


# ---------------------------------------------------------------------------
# Tool input parsing
# ---------------------------------------------------------------------------

class TestToolInput:
    def test_truncated_json_fails_at_stop(self, started_stream):
        started_stream.feed(tool_start(0))
        started_stream.feed(json_delta(0, '{"location": "Paris"'))
        with pytest.raises(ToolInputParseError) as exc_info:
            started_stream.feed(block_stop(0))

        assert exc_info.value.index == 0
        assert exc_info.value.buffer == '{"location": "Paris"'
        assert started_stream.state == StreamState.ERRORED

    def test_complete_json_decodes_to_mapping(self, started_stream):
        started_stream.feed(tool_start(0))
        started_stream.feed(json_delta(0, '{"location": "Paris"}'))
        started_stream.feed(block_stop(0))
        assert started_stream.snapshot().content[0].input == {"location": "Paris"}

    def test_non_object_json_is_rejected(self, started_stream):
        started_stream.feed(tool_start(0))
        started_stream.feed(json_delta(0, "[1, 2]"))
        with pytest.raises(ToolInputParseError, match="JSON object"):
            started_stream.feed(block_stop(0))

    def test_parse_failure_keeps_finished_blocks(self, started_stream):
        started_stream.feed(text_start(0))
        started_stream.feed(text_delta(0, "Looking it up"))
        started_stream.feed(block_stop(0))
        started_stream.feed(tool_start(1))
        started_stream.feed(json_delta(1, "{nope"))
        with pytest.raises(ToolInputParseError):
            started_stream.feed(block_stop(1))

        assert started_stream.snapshot().content == [
            TextBlock(text="Looking it up")
        ]


# ---------------------------------------------------------------------------
# Upstream and decode errors
# ---------------------------------------------------------------------------

class TestErrors:
    def test_rate_limit_error_event(self, started_stream):
        with pytest.raises(RateLimitExceeded) as exc_info:
            started_stream.feed(error_frame("rate_limit_error", "slow down"))

        assert exc_info.value.kind == "rate_limit_error"
        assert started_stream.state == StreamState.ERRORED
        assert started_stream.error is exc_info.value

    def test_generic_error_event(self, started_stream):
        with pytest.raises(UpstreamError) as exc_info:
            started_stream.feed(error_frame("overloaded_error", "Overloaded"))

        assert not isinstance(exc_info.value, RateLimitExceeded)
        assert "Overloaded" in str(exc_info.value)

    def test_decode_error_halts_stream(self, started_stream):
        with pytest.raises(DecodeError):
            started_stream.feed({"type": "content_block_delta", "index": 0})
        assert started_stream.state == StreamState.ERRORED
        assert isinstance(started_stream.error, DecodeError)

    def test_boolean_index_does_not_address_a_block(self, started_stream):
        started_stream.feed(text_start(0))
        started_stream.feed(text_start(1))
        with pytest.raises(DecodeError):
            started_stream.feed({
                "type": "content_block_delta",
                "index": True,
                "delta": {"type": "text_delta", "text": "x"},
            })
        assert [b.text for b in started_stream.snapshot().content] == ["", ""]

    def test_apply_rejects_foreign_objects(self, stream):
        with pytest.raises(TypeError):
            stream.apply(object())
