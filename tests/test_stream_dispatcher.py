"""
Tests for the cancellable token stream dispatcher.

Tests the per-stream lifecycle (one start, tokens with exactly one final,
exactly one terminal), supersession of a user's previous stream, and that
nothing is emitted for a stream after it was cancelled.

Run with: python -m pytest tests/test_stream_dispatcher.py -v
"""

import threading

import pytest

from orvion.brain.stream_dispatcher import (
    STREAM_CANCELLED,
    STREAM_END,
    STREAM_START,
    STREAM_TOKEN,
    StreamDispatcher,
    split_batches,
)


@pytest.fixture
def dispatcher():
    return StreamDispatcher(batch_words=5, delay_ms=0)


class TestSplitBatches:
    def test_batches_of_five(self):
        text = "one two three four five six seven"
        assert split_batches(text, 5) == ["one two three four five ", "six seven"]

    def test_concatenation_equals_words(self):
        text = "a  b   c d e f g h i j k"
        assert "".join(split_batches(text, 3)) == " ".join(text.split())

    def test_empty(self):
        assert split_batches("", 5) == []
        assert split_batches("   ", 5) == []


class TestLifecycle:
    def test_full_stream_order(self, dispatcher, recorder):
        stream = dispatcher.start_stream("u1", "m1", recorder)
        sent = dispatcher.stream_text(stream, "one two three four five six seven")
        dispatcher.end_stream(stream)

        assert sent == 2
        assert recorder.names() == [STREAM_START, STREAM_TOKEN, STREAM_TOKEN, STREAM_END]
        start = recorder.payloads(STREAM_START)[0]
        assert start["messageId"] == "m1"
        assert start["status"] == "acknowledged"
        tokens = recorder.payloads(STREAM_TOKEN)
        assert [t["index"] for t in tokens] == [0, 5]
        assert [t["final"] for t in tokens] == [False, True]
        assert recorder.text() == "one two three four five six seven"
        assert "totalLatency" in recorder.payloads(STREAM_END)[0]

    def test_empty_text_sends_single_final_token(self, dispatcher, recorder):
        stream = dispatcher.start_stream("u1", None, recorder)
        assert dispatcher.stream_text(stream, "") == 1
        assert recorder.payloads(STREAM_TOKEN) == [{"content": "", "index": 0, "final": True}]

    def test_no_tokens_after_final(self, dispatcher, recorder):
        stream = dispatcher.start_stream("u1", None, recorder)
        dispatcher.stream_text(stream, "hello")
        assert dispatcher.stream_text(stream, "again") == 0
        assert len(recorder.payloads(STREAM_TOKEN)) == 1

    def test_single_terminal(self, dispatcher, recorder):
        stream = dispatcher.start_stream("u1", None, recorder)
        assert dispatcher.end_stream(stream)
        assert not dispatcher.end_stream(stream)
        assert not dispatcher.fail_stream(stream, "late")
        assert not dispatcher.cancel_stream(stream.stream_id)
        assert recorder.names().count(STREAM_END) == 1
        assert "stream-error" not in recorder.names()

    def test_side_events_only_before_terminal(self, dispatcher, recorder):
        stream = dispatcher.start_stream("u1", None, recorder)
        assert dispatcher.emit_event(stream, "thinking", status="processing")
        dispatcher.end_stream(stream)
        assert not dispatcher.emit_event(stream, "sources", sources=[])
        assert recorder.side_events("thinking") == [{"type": "thinking", "status": "processing"}]
        assert recorder.side_events("sources") == []

    def test_fail_stream(self, dispatcher, recorder):
        stream = dispatcher.start_stream("u1", None, recorder)
        dispatcher.fail_stream(stream, "boom")
        assert recorder.payloads("stream-error")[0]["message"] == "boom"
        assert dispatcher.active_stream_for("u1") is None

    def test_notice_rejects_lifecycle_names(self, dispatcher, recorder):
        stream = dispatcher.start_stream("u1", None, recorder)
        with pytest.raises(ValueError):
            dispatcher.send_notice(stream, STREAM_END, {})
        assert dispatcher.send_notice(stream, "acknowledgment", {"text": "On it"})
        assert recorder.payloads("acknowledgment")[0]["streamId"] == stream.stream_id

    def test_sink_exception_does_not_break_stream(self, dispatcher):
        calls = []

        def flaky(event, payload):
            calls.append(event)
            if event == STREAM_TOKEN:
                raise RuntimeError("socket closed")

        stream = dispatcher.start_stream("u1", None, flaky)
        dispatcher.stream_text(stream, "a b c d e f", batch_size=2)
        assert dispatcher.end_stream(stream)
        assert calls == [STREAM_START, STREAM_TOKEN, STREAM_TOKEN, STREAM_TOKEN, STREAM_END]


class TestCancellation:
    def test_cancel_emits_exactly_one_cancelled_and_no_more_tokens(self, dispatcher, recorder):
        stream = dispatcher.start_stream("u1", None, recorder)
        dispatcher.stream_text(stream, "first batch", batch_size=5)
        assert dispatcher.cancel_stream(stream.stream_id)
        assert not dispatcher.cancel_stream(stream.stream_id)
        assert dispatcher.stream_text(stream, "more words here") == 0
        assert not dispatcher.end_stream(stream)
        assert recorder.names().count(STREAM_CANCELLED) == 1
        assert recorder.names()[-1] == STREAM_CANCELLED
        assert stream.cancel_event.is_set()
        assert not stream.active

    def test_cancel_before_final_stops_tokens(self, dispatcher, recorder):
        stream = dispatcher.start_stream("u1", None, recorder)
        dispatcher.cancel_user("u1")
        assert dispatcher.stream_text(stream, "one two three") == 0
        assert recorder.payloads(STREAM_TOKEN) == []

    def test_new_stream_supersedes_previous(self, dispatcher, recorder):
        first = dispatcher.start_stream("u1", None, recorder)
        second = dispatcher.start_stream("u1", None, recorder)
        assert first.cancelled
        assert not second.cancelled
        cancelled = recorder.payloads(STREAM_CANCELLED)
        assert cancelled == [{"streamId": first.stream_id, "reason": "superseded"}]
        assert dispatcher.active_stream_for("u1") is second
        assert dispatcher.active_stream_count() == 1

    def test_other_users_unaffected(self, dispatcher, recorder):
        a = dispatcher.start_stream("a", None, recorder)
        dispatcher.start_stream("b", None, recorder)
        assert not a.cancelled
        assert dispatcher.active_stream_count() == 2

    def test_sink_can_cancel_from_inside_delivery(self, dispatcher, recorder):
        def cancelling_sink(event, payload):
            recorder(event, payload)
            if event == STREAM_TOKEN and payload["index"] == 1:
                dispatcher.cancel_user("u1", reason="client")

        stream = dispatcher.start_stream("u1", None, cancelling_sink)
        producer = threading.Thread(target=dispatcher.stream_text, args=(stream, "a b c d"), kwargs={"batch_size": 1})
        producer.start()
        producer.join(timeout=2)

        assert not producer.is_alive()
        assert recorder.names() == [STREAM_START, STREAM_TOKEN, STREAM_TOKEN, STREAM_CANCELLED]
        assert recorder.payloads(STREAM_CANCELLED)[0]["reason"] == "client"
        assert not dispatcher.end_stream(stream)
        assert dispatcher.active_stream_for("u1") is None

    def test_cancel_unknown(self, dispatcher):
        assert not dispatcher.cancel_stream("nope")
        assert not dispatcher.cancel_user("nobody")

    def test_cancel_interrupts_delay(self, recorder):
        dispatcher = StreamDispatcher(batch_words=1, delay_ms=200)
        stream = dispatcher.start_stream("u1", None, recorder)
        timer = threading.Timer(0.05, dispatcher.cancel_stream, args=(stream.stream_id,))
        timer.start()
        sent = dispatcher.stream_text(stream, "one two three four five six seven eight")
        timer.join()
        assert sent < 8
        assert recorder.names()[-1] == STREAM_CANCELLED
        # Nothing after the terminal
        assert recorder.names().count(STREAM_CANCELLED) == 1

    def test_concurrent_cancel_and_stream_keep_order(self, recorder):
        dispatcher = StreamDispatcher(batch_words=1, delay_ms=1)
        stream = dispatcher.start_stream("u1", None, recorder)
        words = " ".join(f"w{i}" for i in range(50))
        producer = threading.Thread(target=dispatcher.stream_text, args=(stream, words))
        producer.start()
        dispatcher.cancel_user("u1")
        producer.join()
        names = recorder.names()
        assert names[0] == STREAM_START
        assert names[-1] == STREAM_CANCELLED
        assert names.count(STREAM_CANCELLED) == 1
        finals = [p for p in recorder.payloads(STREAM_TOKEN) if p["final"]]
        assert len(finals) <= 1
