"""
End-to-end tests for the command orchestrator and the per-session worker.

The reasoning service is a MagicMock; everything else is real.

Run with: python -m pytest tests/test_orchestrator.py -v
"""

import json
import random
import threading
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from orvion.brain.acknowledgments import Acknowledger
from orvion.brain.response_parser import MALFORMED_REPLY
from orvion.brain.stream_dispatcher import STREAM_CANCELLED, STREAM_END, STREAM_START, StreamDispatcher
from orvion.cache.response_cache import ResponseCache
from orvion.core.errors import RemoteServiceFailure
from orvion.core.handlers import ActionDispatcher
from orvion.core.intent_classifier import IntentClassifier
from orvion.core.intents import IntentType
from orvion.core.orchestrator import APOLOGY, CommandOrchestrator, SessionWorker
from orvion.core.scheduler import SweepScheduler
from orvion.core.state import Session
from orvion.memory.conversation_store import ConversationStore
from orvion.policy.dialog_state import DialogStateManager
from orvion.policy.disambiguation import Disambiguator
from orvion.policy.safety_confirmation import EXPIRED_MESSAGE, SafetyConfirmation
from orvion.telemetry.diagnostics import DiagnosticRecorder
from orvion.telemetry.latency_tracker import LatencyTracker

FIXED_NOW = datetime(2024, 3, 15, 14, 5)


# ============================================================================
# FIXTURES
# ============================================================================

def remote_reply(**fields):
    return json.dumps(fields)


@pytest.fixture
def reasoning():
    return MagicMock()


@pytest.fixture
def orchestrator(reasoning, clock):
    return CommandOrchestrator(
        classifier=IntentClassifier(rng=random.Random(0), clock=lambda: FIXED_NOW),
        dialog=DialogStateManager(SafetyConfirmation(clock=clock), Disambiguator(clock=clock)),
        cache=ResponseCache(clock=clock),
        dispatcher=StreamDispatcher(batch_words=5, delay_ms=0),
        reasoning=reasoning,
        actions=ActionDispatcher(clock=lambda: FIXED_NOW),
        acknowledger=Acknowledger(rng=random.Random(0)),
        remote_enabled=True,
    )


@pytest.fixture
def session():
    return Session(id="s1", user_id="u1", user_name="Sam")


def assert_single_terminal(recorder, terminal=STREAM_END):
    names = recorder.names()
    assert names[0] == STREAM_START
    assert names[-1] == terminal
    assert sum(n in (STREAM_END, "stream-error", STREAM_CANCELLED) for n in names) == 1


# ============================================================================
# FAST / SLOW / OFFLINE PATHS
# ============================================================================

class TestPaths:
    def test_fast_path_skips_reasoning(self, orchestrator, reasoning, session, recorder):
        outcome = orchestrator.handle_utterance(session, "what's the time", recorder)

        assert outcome.path == "fast"
        assert outcome.intent.type == IntentType.GET_TIME
        assert outcome.reply == "The current time is 02:05 PM"
        assert recorder.text() == outcome.reply
        reasoning.resolve.assert_not_called()
        assert_single_terminal(recorder)
        assert recorder.side_events("intent-detected")[0]["source"] == "fast"
        assert recorder.side_events("thinking") == []
        assert recorder.payloads("acknowledgment") == []

    def test_remote_reply(self, orchestrator, reasoning, session, recorder):
        reasoning.resolve.return_value = remote_reply(
            type="general", response="Rainbows form when sunlight is refracted.", confidence=0.9,
        )
        outcome = orchestrator.handle_utterance(session, "explain how rainbows form", recorder)

        assert outcome.path == "remote"
        assert outcome.reply == "Rainbows form when sunlight is refracted."
        assert recorder.side_events("thinking") == [{"type": "thinking", "status": "processing"}]
        assert recorder.payloads("acknowledgment")[0]["streamId"] == outcome.stream_id
        assert recorder.side_events("voice-metadata")[0]["metadata"]["language"] == "en"
        assert_single_terminal(recorder)

        args, kwargs = reasoning.resolve.call_args
        assert args[0] == "explain how rainbows form"
        assert args[2] == "Sam"
        assert isinstance(kwargs["cancel_event"], threading.Event)

    def test_remote_failure_falls_back_offline(self, orchestrator, reasoning, session, recorder):
        reasoning.resolve.side_effect = RemoteServiceFailure("down", status=503)
        outcome = orchestrator.handle_utterance(session, "capital of France?", recorder)

        assert outcome.path == "offline"
        assert outcome.reply == "The capital of France is Paris."
        assert outcome.errors == ["RemoteServiceFailure: down"]
        assert_single_terminal(recorder)

    def test_remote_failure_without_offline_match(self, orchestrator, reasoning, session, recorder):
        reasoning.resolve.side_effect = RemoteServiceFailure("timed out")
        outcome = orchestrator.handle_utterance(session, "zxqv blorp frobnicate", recorder)

        assert outcome.path == "error"
        assert outcome.intent.type == IntentType.ERROR
        assert outcome.reply == APOLOGY
        assert recorder.payloads("clarification-request") == []
        assert_single_terminal(recorder)

    def test_remote_disabled_uses_offline(self, reasoning, session, recorder):
        orchestrator = CommandOrchestrator(
            dispatcher=StreamDispatcher(batch_words=5, delay_ms=0),
            reasoning=reasoning,
            remote_enabled=False,
        )
        outcome = orchestrator.handle_utterance(session, "capital of France?", recorder)
        assert outcome.path == "offline"
        reasoning.resolve.assert_not_called()

    def test_malformed_reply(self, orchestrator, reasoning, session, recorder):
        reasoning.resolve.return_value = '{"type": "general", "response": }'
        outcome = orchestrator.handle_utterance(session, "explain how rainbows form", recorder)

        assert outcome.reply == MALFORMED_REPLY
        assert outcome.errors[0].startswith("MalformedResponse")
        assert len(orchestrator.cache) == 0

    def test_unexpected_failure_becomes_stream_error(self, orchestrator, session, recorder, monkeypatch):
        def explode(_intent):
            raise RuntimeError("bug")

        monkeypatch.setattr(orchestrator.dialog, "requires_confirmation", explode)
        outcome = orchestrator.handle_utterance(session, "what's the time", recorder)
        assert outcome.path == "error"
        assert recorder.payloads("stream-error")[0]["message"] == APOLOGY
        assert_single_terminal(recorder, terminal="stream-error")


# ============================================================================
# CACHE
# ============================================================================

class TestCaching:
    def test_second_identical_query_is_cached(self, orchestrator, reasoning, session):
        reasoning.resolve.return_value = remote_reply(
            type="general", response="Rainbows form when sunlight is refracted.", confidence=0.9,
        )
        first = orchestrator.handle_utterance(session, "explain how rainbows form", lambda e, p: None)
        second_events = []
        second = orchestrator.handle_utterance(
            session, "Explain how rainbows form?", lambda e, p: second_events.append((e, p))
        )

        assert not first.cached
        assert second.cached
        assert second.path == "cache"
        assert second.reply == first.reply
        assert reasoning.resolve.call_count == 1
        detected = [p for e, p in second_events if e == "stream-event" and p["type"] == "intent-detected"]
        assert detected[0]["source"] == "cache"
        assert orchestrator.diagnostics.recent(1)[0].provenance == "cache"

    def test_time_is_not_cached(self, orchestrator, session, recorder):
        orchestrator.handle_utterance(session, "what's the time", recorder)
        assert len(orchestrator.cache) == 0


# ============================================================================
# SAFETY CONFIRMATION
# ============================================================================

class TestConfirmationFlow:
    def test_payment_needs_confirmation_then_runs(self, orchestrator, session, recorder):
        first = orchestrator.handle_utterance(session, "pay 500 rupees using phonepe", recorder)

        assert first.path == "confirmation"
        request = recorder.payloads("confirmation-request")[0]
        assert request["intent"] == "payment-phonepe"
        assert request["timeout"] == 30
        assert "500 rupees" in request["message"]
        assert request["streamId"] == first.stream_id
        assert recorder.side_events("action") == []

        second = orchestrator.handle_utterance(session, "yes confirm", recorder)
        assert second.path == "confirmed"
        assert second.action.action == "phonepe-payment"
        actions = recorder.side_events("action")
        assert actions[0]["action"] == "phonepe-payment"
        assert actions[0]["metadata"]["amount"] == "500"
        assert len(orchestrator.cache) == 0

    def test_cancel_reply(self, orchestrator, session, recorder):
        orchestrator.handle_utterance(session, "pay 500 rupees using phonepe", recorder)
        outcome = orchestrator.handle_utterance(session, "no, cancel that", recorder)
        assert outcome.path == "dialog"
        assert outcome.reply == "Okay, cancelled."
        assert recorder.side_events("action") == []

    def test_unclear_reply_reasks(self, orchestrator, session, recorder):
        orchestrator.handle_utterance(session, "pay 500 rupees using phonepe", recorder)
        outcome = orchestrator.handle_utterance(session, "hmm what", recorder)
        assert outcome.path == "dialog"
        assert len(recorder.payloads("confirmation-request")) == 2
        assert orchestrator.dialog.confirmation.has_pending(session.id)

    def test_expired_confirmation_never_runs(self, orchestrator, session, recorder, clock):
        orchestrator.handle_utterance(session, "pay 500 rupees using phonepe", recorder)
        clock.advance(31)
        outcome = orchestrator.handle_utterance(session, "yes confirm", recorder)

        assert outcome.reply == EXPIRED_MESSAGE
        assert outcome.errors == ["ConfirmationExpired: payment-phonepe"]
        assert recorder.side_events("action") == []
        assert not orchestrator.dialog.confirmation.has_pending(session.id)


# ============================================================================
# CLARIFICATION
# ============================================================================

class TestClarificationFlow:
    @pytest.fixture(autouse=True)
    def unsure_reply(self, reasoning):
        reasoning.resolve.return_value = remote_reply(
            type="play-music", response="Playing", confidence=0.4, alternatives=["youtube-play"],
        )

    def test_low_confidence_asks(self, orchestrator, session, recorder):
        outcome = orchestrator.handle_utterance(session, "play that thing", recorder)

        assert outcome.path == "clarification"
        request = recorder.payloads("clarification-request")[0]
        assert request["kind"] == "choice"
        assert request["options"] == ["play-music", "youtube-play"]
        assert outcome.reply == request["question"]
        assert orchestrator.diagnostics.recent(1)[0].needs_clarification

    def test_choice_executes(self, orchestrator, reasoning, session, recorder):
        orchestrator.handle_utterance(session, "play that thing", recorder)
        outcome = orchestrator.handle_utterance(session, "the first one", recorder)

        assert outcome.path == "clarified"
        assert outcome.intent.type == IntentType.PLAY_MUSIC
        assert recorder.side_events("action")[-1]["action"] == "play-music"
        assert reasoning.resolve.call_count == 1

    def test_unclear_reply_retries(self, orchestrator, session, recorder):
        orchestrator.handle_utterance(session, "play that thing", recorder)
        outcome = orchestrator.handle_utterance(session, "banana", recorder)
        assert outcome.path == "dialog"
        assert outcome.reply.startswith("I didn't understand.")
        assert len(recorder.payloads("clarification-request")) == 2


# ============================================================================
# CANCELLATION
# ============================================================================

class TestCancellation:
    def test_cancel_during_remote_call(self, orchestrator, reasoning, session, recorder):
        def resolve(text, *args, cancel_event=None):
            orchestrator.cancel(session.user_id)
            assert cancel_event.is_set()
            raise RemoteServiceFailure("request cancelled", cancelled=True)

        reasoning.resolve.side_effect = resolve
        outcome = orchestrator.handle_utterance(session, "explain how rainbows form", recorder)

        assert outcome.cancelled
        assert recorder.payloads("stream-token") == []
        assert recorder.payloads(STREAM_CANCELLED) == [{"streamId": outcome.stream_id, "reason": "user"}]
        assert_single_terminal(recorder, terminal=STREAM_CANCELLED)
        assert orchestrator.conversations.message_count(session.user_id) == 0

    def test_abort_without_dispatcher_cancel_still_terminates(self, orchestrator, reasoning, session, recorder):
        reasoning.resolve.side_effect = RemoteServiceFailure("aborted", cancelled=True)
        outcome = orchestrator.handle_utterance(session, "explain how rainbows form", recorder)
        assert outcome.cancelled
        assert_single_terminal(recorder, terminal=STREAM_CANCELLED)


# ============================================================================
# BOOKKEEPING
# ============================================================================

class TestBookkeeping:
    def test_conversation_and_diagnostics(self, orchestrator, session, recorder):
        orchestrator.handle_utterance(session, "what's the time", recorder)

        ctx = orchestrator.conversations.get_context(session.user_id)
        assert [m["role"] for m in ctx["messages"]] == ["user", "assistant"]
        assert ctx["context"]["last_intent"] == "get-time"

        record = orchestrator.diagnostics.recent(1)[0]
        assert record.intent == "get-time"
        assert record.provenance == "fast"
        assert record.session_id == "s1"
        assert "complete" in record.latencies_ms

    def test_conversation_context_sent_to_reasoning(self, orchestrator, reasoning, session, recorder):
        orchestrator.handle_utterance(session, "what's the time", recorder)
        reasoning.resolve.return_value = remote_reply(type="general", response="Sure.", confidence=0.9)
        orchestrator.handle_utterance(session, "explain how rainbows form", recorder)
        context = reasoning.resolve.call_args[0][3]
        assert "what's the time" in context["context_string"]

    def test_partial_acknowledgment(self, orchestrator):
        assert orchestrator.acknowledge_partial("play music") is not None
        assert orchestrator.acknowledge_partial("play") is None

    def test_keeps_injected_services_even_when_empty(self, reasoning, clock):
        cache = ResponseCache(clock=clock)
        diagnostics = DiagnosticRecorder()
        latency = LatencyTracker()
        conversations = ConversationStore()
        confirmation = SafetyConfirmation(clock=clock)
        dialog = DialogStateManager(confirmation, Disambiguator(clock=clock))
        orch = CommandOrchestrator(
            dialog=dialog, cache=cache, diagnostics=diagnostics, latency=latency,
            conversations=conversations, reasoning=reasoning, remote_enabled=True,
        )
        assert orch.cache is cache
        assert orch.diagnostics is diagnostics
        assert orch.latency is latency
        assert orch.conversations is conversations
        assert orch.dialog is dialog
        assert orch.dialog.confirmation is confirmation

    def test_cache_shared_across_orchestrators(self, reasoning, clock, recorder):
        shared = ResponseCache(clock=clock)
        reasoning.resolve.return_value = remote_reply(type="general", response="Rainbows are refracted light.", confidence=0.9)
        first = CommandOrchestrator(cache=shared, reasoning=reasoning, dispatcher=StreamDispatcher(5, 0), remote_enabled=True)
        second = CommandOrchestrator(cache=shared, reasoning=reasoning, dispatcher=StreamDispatcher(5, 0), remote_enabled=True)

        first.handle_utterance(Session(id="a", user_id="u1"), "explain how rainbows form", recorder)
        outcome = second.handle_utterance(Session(id="b", user_id="u1"), "explain how rainbows form", recorder)

        assert reasoning.resolve.call_count == 1
        assert outcome.path == "cache"

    def test_register_sweeps(self, orchestrator, clock):
        scheduler = SweepScheduler(clock=clock)
        orchestrator.register_sweeps(scheduler)
        assert {job.name for job in scheduler.jobs()} == {
            "cache-expired", "confirmation-expired", "clarification-idle", "latency-sessions",
        }


# ============================================================================
# SESSION WORKER
# ============================================================================

class TestSessionWorker:
    def test_utterances_handled_in_order(self, orchestrator, session, recorder):
        worker = SessionWorker(orchestrator, session, recorder)
        worker.start()
        try:
            worker.submit("what's the time")
            worker.join_idle()
            worker.submit("what's the date")
            worker.join_idle()
        finally:
            worker.stop()
        assert [o.intent.type for o in worker.outcomes] == [IntentType.GET_TIME, IntentType.GET_DATE]

    def test_new_utterance_cancels_in_flight(self, orchestrator, reasoning, session, recorder):
        started = threading.Event()
        calls = []

        def resolve(text, *args, cancel_event=None):
            calls.append(text)
            if len(calls) == 1:
                started.set()
                cancel_event.wait(5)
                raise RemoteServiceFailure("request cancelled", cancelled=True)
            return remote_reply(type="general", response="Tides follow the moon.", confidence=0.9)

        reasoning.resolve.side_effect = resolve
        worker = SessionWorker(orchestrator, session, recorder)
        worker.start()
        try:
            worker.submit("explain how rainbows form")
            assert started.wait(2)
            worker.submit("explain how tides work")
            worker.join_idle()
        finally:
            worker.stop()

        first, second = worker.outcomes
        assert first.cancelled
        assert second.reply == "Tides follow the moon."
        assert recorder.payloads(STREAM_CANCELLED) == [{"streamId": first.stream_id, "reason": "user"}]
        assert len(recorder.payloads(STREAM_END)) == 1
