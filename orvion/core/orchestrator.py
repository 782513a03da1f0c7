"""
Command orchestrator for Orvion.

Per utterance:
  0. Start a stream (cancels the user's previous request end to end)
  1. Dialog gate: a pending confirmation, then a pending clarification,
     consumes the reply
  2. Response cache
  3. Fast path: local intent with confidence above the fast-path bar
  4. Slow path: remote reasoning (cancellable), else offline best-effort,
     else a fixed apology
  5. Confirmation check, clarification check, then the action handler
  6. Stream the reply; cache, conversation log, latency and diagnostics

handle_utterance() never raises for per-request failures.
"""
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from orvion.brain.acknowledgments import Acknowledger, Acknowledgment
from orvion.brain.reasoning_client import ReasoningClient
from orvion.brain.response_parser import malformed_fallback, parse_reasoning_reply
from orvion.brain.stream_dispatcher import EventSink, StreamDispatcher, StreamSession
from orvion.brain.voice_metadata import voice_metadata
from orvion.cache.response_cache import ResponseCache
from orvion.core.config import Config
from orvion.core.errors import (
    ConfirmationExpired,
    DisambiguationExhausted,
    MalformedResponse,
    RemoteServiceFailure,
)
from orvion.core.handlers import ActionDispatcher, ActionResult
from orvion.core.intent_classifier import IntentClassifier
from orvion.core.intents import IntentResult, IntentType, Provenance
from orvion.core.logger import get_logger
from orvion.core.scheduler import SweepScheduler
from orvion.core.state import Session
from orvion.memory.conversation_store import ConversationStore
from orvion.policy.dialog_state import DialogStateManager
from orvion.telemetry import latency_tracker as lt
from orvion.telemetry.diagnostics import DiagnosticRecord, DiagnosticRecorder
from orvion.telemetry.latency_tracker import LatencyTracker

APOLOGY = "I'm sorry, I couldn't process that right now. Please try again in a moment."

# Intents whose answer text benefits from "topics" context on follow-ups
_KNOWLEDGE_INTENTS = frozenset({
    IntentType.WIKIPEDIA_QUERY,
    IntentType.WEB_SEARCH,
    IntentType.QUICK_ANSWER,
    IntentType.GOOGLE_SEARCH,
})


@dataclass
class OrchestrationOutcome:
    """What happened to one utterance (returned to the caller, mostly for tests and the CLI)."""
    stream_id: str
    path: str  # cache / fast / remote / offline / error / confirmation / clarification / dialog
    reply: str = ""
    intent: Optional[IntentResult] = None
    action: Optional[ActionResult] = None
    cached: bool = False
    cancelled: bool = False
    errors: List[str] = field(default_factory=list)


class _Request:
    """Mutable per-request bookkeeping."""

    def __init__(self, session: Session, stream: StreamSession, text: str):
        self.session = session
        self.stream = stream
        self.text = text
        self.errors: List[str] = []
        self.needs_clarification = False


class CommandOrchestrator:
    """Wires classifier, dialog policy, cache, reasoning and streaming together."""

    def __init__(
        self,
        classifier: Optional[IntentClassifier] = None,
        dialog: Optional[DialogStateManager] = None,
        cache: Optional[ResponseCache] = None,
        dispatcher: Optional[StreamDispatcher] = None,
        reasoning: Optional[ReasoningClient] = None,
        conversations: Optional[ConversationStore] = None,
        latency: Optional[LatencyTracker] = None,
        diagnostics: Optional[DiagnosticRecorder] = None,
        actions: Optional[ActionDispatcher] = None,
        acknowledger: Optional[Acknowledger] = None,
        remote_enabled: Optional[bool] = None,
        mode: str = "voice",
    ):
        self.logger = get_logger()
        self.classifier = classifier if classifier is not None else IntentClassifier()
        self.dialog = dialog if dialog is not None else DialogStateManager()
        self.cache = cache if cache is not None else ResponseCache()
        self.dispatcher = dispatcher if dispatcher is not None else StreamDispatcher()
        self.remote_enabled = Config.remote_enabled() if remote_enabled is None else remote_enabled
        self.reasoning = reasoning if reasoning is not None else (ReasoningClient() if self.remote_enabled else None)
        self.conversations = conversations if conversations is not None else ConversationStore()
        self.latency = latency if latency is not None else LatencyTracker()
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticRecorder()
        self.actions = actions if actions is not None else ActionDispatcher()
        self.acknowledger = acknowledger if acknowledger is not None else Acknowledger()
        self.mode = mode

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def handle_utterance(
        self,
        session: Session,
        text: str,
        sink: EventSink,
        fast_intent: Optional[IntentResult] = None,
        message_id: Optional[str] = None,
    ) -> OrchestrationOutcome:
        """Resolve and answer one utterance on the calling (session) thread."""
        session.touch()
        stream = self.dispatcher.start_stream(session.user_id, message_id, sink)
        trace_id = stream.stream_id
        self.latency.start_session(trace_id)
        self.latency.record(trace_id, lt.TRANSCRIPT_READY, transcript=text)
        req = _Request(session, stream, text)

        try:
            outcome = self._process(req, fast_intent)
        except Exception as e:
            # Last line of defence; per-request failures never escape
            self.logger.error(f"[ORCH] unexpected failure: {type(e).__name__}: {e}")
            req.errors.append(f"{type(e).__name__}: {e}")
            self.dispatcher.fail_stream(stream, APOLOGY)
            outcome = OrchestrationOutcome(trace_id, "error", reply=APOLOGY)

        outcome.errors = list(req.errors)
        if stream.cancelled and not outcome.cancelled:
            outcome.cancelled = True
        self._finish(req, outcome)
        return outcome

    def acknowledge_partial(self, prefix_text: str) -> Optional[Acknowledgment]:
        """Instant acknowledgment from an incomplete utterance, if confident enough."""
        partial = self.classifier.detect_partial_intent(prefix_text)
        if partial is not None:
            self.logger.debug(f"[PARTIAL] '{prefix_text}' -> {partial.type.value} ({partial.confidence:.2f})")
        return self.acknowledger.acknowledge_partial(partial)

    def cancel(self, user_id: str) -> bool:
        """Explicit cancel request from the client."""
        return self.dispatcher.cancel_user(user_id, reason="user")

    def register_sweeps(self, scheduler: SweepScheduler) -> None:
        """Periodic cleanup jobs for the shared services."""
        scheduler.register("cache-expired", Config.CACHE_SWEEP_SEC, self.cache.clear_expired)
        scheduler.register("confirmation-expired", Config.CONFIRMATION_SWEEP_SEC, self.dialog.sweep_confirmations)
        scheduler.register("clarification-idle", Config.DISAMBIGUATION_SWEEP_SEC, self.dialog.sweep_disambiguations)
        scheduler.register("latency-sessions", Config.CACHE_SWEEP_SEC, self.latency.cleanup)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _process(self, req: _Request, fast_intent: Optional[IntentResult]) -> OrchestrationOutcome:
        gated = self._dialog_gate(req)
        if gated is not None:
            return gated

        cached = self._from_cache(req)
        if cached is not None:
            return cached

        intent = fast_intent if fast_intent is not None else self.classifier.detect_intent(req.text)
        if intent is not None and intent.confidence > Config.FAST_PATH_MIN_CONFIDENCE:
            self.logger.info(f"[ORCH] fast path {intent.type.value} conf={intent.confidence:.2f}")
            return self._route(req, intent, path="fast")

        intent, path = self._resolve_slow(req)
        if intent is None:
            return OrchestrationOutcome(req.stream.stream_id, path, cancelled=True)
        return self._route(req, intent, path=path)

    def _dialog_gate(self, req: _Request) -> Optional[OrchestrationOutcome]:
        gate = self.dialog.handle_reply(req.session.id, req.text)
        if gate is None:
            return None

        if gate.kind == "confirmation":
            result = gate.confirmation
            if result.status == "confirmed":
                return self._route(req, result.pending.payload, path="confirmed", confirmed=True)
            if result.status == "expired":
                req.errors.append(f"{ConfirmationExpired.__name__}: {result.pending.intent_type.value}")
            if result.status == "unclear":
                self.dispatcher.send_notice(req.stream, "confirmation-request", {
                    "message": result.pending.prompt,
                    "intent": result.pending.intent_type.value,
                    "timeout": int(result.pending.timeout),
                })
            if result.status == "none":
                return None
            return self._speak(req, result.message, path="dialog")

        resolution = gate.resolution
        if resolution.action == "reprocess":
            req.text = resolution.input_text
            return None
        if resolution.action == "execute":
            return self._route(req, resolution.intent, path="clarified", skip_clarify=True)
        if resolution.action == "retry":
            pending = self.dialog.disambiguation.get(req.session.id)
            self.dispatcher.send_notice(req.stream, "clarification-request", {
                "question": resolution.message,
                "kind": pending.kind if pending else "",
                "options": [o.value for o in pending.options] if pending else [],
            })
            req.needs_clarification = True
        if resolution.action == "giveup":
            req.errors.append(f"{DisambiguationExhausted.__name__}: clarification failed")
        return self._speak(req, resolution.message, path="dialog")

    def _from_cache(self, req: _Request) -> Optional[OrchestrationOutcome]:
        payload = self.cache.get(req.text, req.session.user_id)
        if payload is None:
            return None
        reply = payload.get("response", "")
        self.logger.info(f"[CACHE] hit user={req.session.user_id}")
        self.dispatcher.emit_event(req.stream, "intent-detected",
                                   intent=payload.get("type"), source="cache",
                                   latency=req.stream.elapsed_ms())
        if payload.get("action"):
            self.dispatcher.emit_event(req.stream, "action", **payload["action"])
        if payload.get("sources"):
            self.dispatcher.emit_event(req.stream, "sources", sources=payload["sources"])
        self.latency.record(req.stream.stream_id, lt.FIRST_TOKEN)
        self.dispatcher.stream_text(req.stream, reply)
        self.dispatcher.end_stream(req.stream, cached=True)
        intent_type = IntentType.parse(payload.get("type")) or IntentType.GENERAL
        intent = IntentResult(intent_type, 1.0, req.text, Provenance.FAST, response=reply)
        return OrchestrationOutcome(req.stream.stream_id, "cache", reply=reply, intent=intent, cached=True)

    def _resolve_slow(self, req: _Request):
        """Remote reasoning, then offline best-effort, then the fixed apology."""
        stream = req.stream
        if self.remote_enabled and self.reasoning is not None:
            self.dispatcher.emit_event(stream, "thinking", status="processing")
            self.latency.record(stream.stream_id, lt.GENERATION_STARTED)
            context = self.conversations.get_context(req.session.user_id)
            try:
                raw = self.reasoning.resolve(
                    req.text,
                    Config.ASSISTANT_NAME,
                    req.session.user_name or Config.DEFAULT_USER_NAME,
                    context,
                    self.mode,
                    cancel_event=stream.cancel_event,
                )
            except RemoteServiceFailure as e:
                if e.cancelled or stream.cancelled:
                    self.logger.info(f"[ORCH] request cancelled stream={stream.stream_id}")
                    # An abort that did not come through the dispatcher still needs a terminal
                    self.dispatcher.cancel_stream(stream.stream_id, reason="aborted")
                    return None, "remote"
                self.logger.warning(f"[ORCH] reasoning failed ({e}); trying offline")
                req.errors.append(f"RemoteServiceFailure: {e}")
            else:
                try:
                    return parse_reasoning_reply(raw, req.text), "remote"
                except MalformedResponse as e:
                    self.logger.warning(f"[ORCH] malformed reply: {e}")
                    req.errors.append(f"MalformedResponse: {e}")
                    return malformed_fallback(req.text), "remote"

        offline = self.classifier.detect_offline_intent(req.text, Config.OFFLINE_MIN_CONFIDENCE)
        if offline is not None:
            self.logger.info(f"[ORCH] offline {offline.type.value} conf={offline.confidence:.2f}")
            return offline, "offline"

        return IntentResult(IntentType.ERROR, 0.0, req.text, Provenance.OFFLINE, response=APOLOGY), "error"

    def _route(
        self,
        req: _Request,
        intent: IntentResult,
        path: str,
        confirmed: bool = False,
        skip_clarify: bool = False,
    ) -> OrchestrationOutcome:
        stream = req.stream
        if stream.cancelled:
            return OrchestrationOutcome(stream.stream_id, path, intent=intent, cancelled=True)

        self.latency.record(stream.stream_id, lt.INTENT_RESOLVED,
                            intent=intent.type.value, confidence=intent.confidence)
        self.dispatcher.emit_event(stream, "intent-detected", intent=intent.type.value,
                                   confidence=intent.confidence, source=intent.provenance.value,
                                   latency=stream.elapsed_ms())

        if not confirmed and self.dialog.requires_confirmation(intent):
            pending = self.dialog.request_confirmation(req.session.id, intent)
            self.dispatcher.send_notice(stream, "confirmation-request", {
                "message": pending.prompt,
                "intent": intent.type.value,
                "timeout": int(pending.timeout),
            })
            outcome = self._speak(req, pending.prompt, path="confirmation")
            outcome.intent = intent
            return outcome

        if (not skip_clarify and intent.type is not IntentType.ERROR
                and self.dialog.needs_clarification(intent)):
            pending = self.dialog.start_clarification(req.session.id, intent)
            req.needs_clarification = True
            self.dispatcher.send_notice(stream, "clarification-request", {
                "question": pending.question,
                "kind": pending.kind,
                "options": [o.value for o in pending.options],
            })
            outcome = self._speak(req, pending.question, path="clarification")
            outcome.intent = intent
            return outcome

        ack = self.acknowledger.acknowledge(intent.type, intent.confidence)
        if ack is not None and path != "fast":
            self.dispatcher.send_notice(stream, "acknowledgment", ack.to_dict())

        action = self.actions.dispatch(intent)
        if action.action != "speak" or action.url:
            self.dispatcher.emit_event(stream, "action", **action.to_event())
        if intent.slots.get("sources"):
            self.dispatcher.emit_event(stream, "sources", sources=list(intent.slots["sources"]))
        self.dispatcher.emit_event(stream, "voice-metadata", metadata=voice_metadata(intent.type, req.text))

        self.latency.record(stream.stream_id, lt.FIRST_TOKEN)
        self.dispatcher.stream_text(stream, action.response)
        if stream.cancelled:
            return OrchestrationOutcome(stream.stream_id, path, reply=action.response,
                                        intent=intent, action=action, cancelled=True)

        if self._cacheable(req.text, intent, path):
            self.cache.set(req.text, {
                "response": action.response,
                "type": intent.type.value,
                "action": action.to_event() if action.action != "speak" or action.url else None,
                "sources": list(intent.slots.get("sources", [])),
            }, req.session.user_id)

        self.dispatcher.end_stream(stream, path=path, intent=intent.type.value)
        return OrchestrationOutcome(stream.stream_id, path, reply=action.response, intent=intent, action=action)

    def _cacheable(self, text: str, intent: IntentResult, path: str) -> bool:
        if path not in ("fast", "remote"):
            return False
        if intent.type is IntentType.ERROR or intent.slots.get("malformed"):
            return False
        if self.dialog.requires_confirmation(intent):
            return False
        return self.cache.should_cache(text, intent.type)

    def _speak(self, req: _Request, text: str, path: str) -> OrchestrationOutcome:
        """Stream a fixed dialog reply and end the stream."""
        self.latency.record(req.stream.stream_id, lt.FIRST_TOKEN)
        self.dispatcher.stream_text(req.stream, text)
        cancelled = req.stream.cancelled
        if not cancelled:
            self.dispatcher.end_stream(req.stream, path=path)
        return OrchestrationOutcome(req.stream.stream_id, path, reply=text, cancelled=cancelled)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _finish(self, req: _Request, outcome: OrchestrationOutcome) -> None:
        user_id = req.session.user_id
        intent = outcome.intent

        if outcome.reply and not outcome.cancelled:
            entities: Dict[str, Any] = {}
            if intent is not None and intent.type in _KNOWLEDGE_INTENTS:
                entities["topics"] = [str(intent.slots.get("query") or req.text)]
            self.conversations.add_message(user_id, "user", req.text,
                                           {"entities": entities} if entities else None)
            self.conversations.add_message(user_id, "assistant", outcome.reply,
                                           {"intent": intent.type.value} if intent else None)
            if intent is not None:
                self.conversations.update_context(user_id, {
                    "last_intent": intent.type.value,
                    "last_slots": dict(intent.slots),
                })

        trace_id = req.stream.stream_id
        self.latency.record(trace_id, lt.COMPLETE)
        tracked = self.latency.complete_session(trace_id)
        self.latency.check_targets(trace_id)

        self.diagnostics.record(DiagnosticRecord(
            session_id=req.session.id,
            transcript=req.text,
            intent=intent.type.value if intent else "unknown",
            confidence=intent.confidence if intent else 0.0,
            slots=dict(intent.slots) if intent else {},
            latencies_ms=dict(tracked.latencies_ms) if tracked else {},
            errors=list(req.errors),
            needs_clarification=req.needs_clarification,
            provenance="cache" if outcome.cached else outcome.path,
        ))


class SessionWorker:
    """
    One thread per connected session.

    Utterances are handled in order on the worker thread. submit() cancels
    the in-flight request for the user first, so a new utterance never waits
    behind a slow remote call.
    """

    _STOP = object()

    def __init__(self, orchestrator: CommandOrchestrator, session: Session, sink: EventSink):
        self.orchestrator = orchestrator
        self.session = session
        self.sink = sink
        self._queue: queue.Queue = queue.Queue()
        self._thread = threading.Thread(
            target=self._run_loop,
            name=f"OrvionSession-{session.id}",
            daemon=True,
        )
        self._started = False
        self.outcomes: List[OrchestrationOutcome] = []

    def start(self) -> None:
        if not self._started:
            self._started = True
            self._thread.start()

    def submit(self, text: str, fast_intent: Optional[IntentResult] = None) -> None:
        self.orchestrator.cancel(self.session.user_id)
        self._queue.put((text, fast_intent))

    def stop(self, timeout: float = 2.0) -> None:
        self._queue.put(self._STOP)
        if self._started:
            self._thread.join(timeout=timeout)

    def join_idle(self) -> None:
        """Block until every submitted utterance has been handled."""
        self._queue.join()

    def _run_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is self._STOP:
                    return
                text, fast_intent = item
                self.outcomes.append(
                    self.orchestrator.handle_utterance(self.session, text, self.sink, fast_intent)
                )
            finally:
                self._queue.task_done()
