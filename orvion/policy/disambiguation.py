"""
Clarification dialog for low-confidence intents.

Question policy (by confidence of the best guess):
- below the repeat threshold       -> "repeat"  (ask the user to say it again)
- alternatives available            -> "choice"  (primary vs first alternative)
- otherwise                         -> "confirm" (yes/no on the best guess)

A reply resolves to one of: reprocess, execute, cancel, retry, giveup.
Unclear replies count as attempts; at the limit the dialog gives up and
the session's entry is cleared.
"""

import re
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Literal, Optional

from orvion.core.config import Config
from orvion.core.intents import IntentResult, IntentType
from orvion.core.logger import get_logger

QuestionKind = Literal["repeat", "choice", "confirm"]
ResolutionAction = Literal["reprocess", "execute", "cancel", "retry", "giveup"]

REPEAT_QUESTION = "I didn't quite catch that. Could you please repeat?"
GIVEUP_MESSAGE = "I'm having trouble understanding. Please try again later."
RETRY_PREFIX = "I didn't understand. "

AFFIRMATIVE_PATTERN = re.compile(
    r"\b(?:yes|yeah|yep|yup|sure|okay|ok|correct|right|affirmative|confirm|exactly)\b",
    re.IGNORECASE,
)
NEGATIVE_PATTERN = re.compile(
    r"\b(?:no|nope|nah|wrong|incorrect|cancel|stop|neither|never\s*mind)\b",
    re.IGNORECASE,
)
# "the first one" / "second" style answers to a binary choice
_ORDINAL_PATTERNS = (
    re.compile(r"\b(?:first|former|1st|option\s+(?:one|1))\b", re.IGNORECASE),
    re.compile(r"\b(?:second|latter|2nd|option\s+(?:two|2))\b", re.IGNORECASE),
)


def needs_clarification(confidence: float, threshold: Optional[float] = None) -> bool:
    limit = Config.CLARIFY_BELOW_CONFIDENCE if threshold is None else threshold
    return confidence < limit


@dataclass
class ClarificationQuestion:
    """What to ask, and the options a reply may pick from."""
    kind: QuestionKind
    question: str
    options: List[IntentType] = field(default_factory=list)


@dataclass
class PendingDisambiguation:
    session_id: str
    kind: QuestionKind
    question: str
    options: List[IntentType]
    original_input: str
    intent: IntentResult
    attempts: int = 0
    started_at: float = 0.0
    last_activity: float = 0.0


@dataclass
class Resolution:
    action: ResolutionAction
    message: str = ""
    intent: Optional[IntentResult] = None
    input_text: str = ""


def generate_question(intent: IntentResult, repeat_below: Optional[float] = None) -> ClarificationQuestion:
    """Pick the clarification question for a low-confidence intent."""
    limit = Config.REPEAT_BELOW_CONFIDENCE if repeat_below is None else repeat_below
    if intent.confidence < limit:
        return ClarificationQuestion("repeat", REPEAT_QUESTION)

    if intent.alternatives:
        primary, alternative = intent.type, intent.alternatives[0]
        return ClarificationQuestion(
            "choice",
            f"Did you mean to {primary.label} or {alternative.label}?",
            [primary, alternative],
        )

    return ClarificationQuestion("confirm", f"Did you want to {intent.type.label}?", [intent.type])


def _match_option(reply: str, options: List[IntentType]) -> Optional[IntentType]:
    lowered = reply.lower()
    matched = [
        opt for opt in options
        if opt.label.lower() in lowered or opt.value in lowered or opt.value.replace("-", " ") in lowered
    ]
    if len(matched) == 1:
        return matched[0]
    for index, pattern in enumerate(_ORDINAL_PATTERNS):
        if index < len(options) and pattern.search(lowered):
            return options[index]
    return None


class Disambiguator:
    """Per-session clarification dialogs, guarded by a lock."""

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        idle_timeout_sec: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.max_attempts = Config.DISAMBIGUATION_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.idle_timeout_sec = Config.DISAMBIGUATION_IDLE_SEC if idle_timeout_sec is None else idle_timeout_sec
        self._clock = clock
        self._lock = threading.Lock()
        self._active: Dict[str, PendingDisambiguation] = {}

    def start(self, session_id: str, intent: IntentResult) -> PendingDisambiguation:
        """Open (or restart) a clarification dialog for a session."""
        question = generate_question(intent)
        now = self._clock()
        pending = PendingDisambiguation(
            session_id=session_id,
            kind=question.kind,
            question=question.question,
            options=list(question.options),
            original_input=intent.source_text,
            intent=intent,
            started_at=now,
            last_activity=now,
        )
        with self._lock:
            self._active[session_id] = pending
        get_logger().info(
            f"[CLARIFY] start kind={question.kind} intent={intent.type.value} conf={intent.confidence:.2f}"
        )
        return pending

    def get(self, session_id: str) -> Optional[PendingDisambiguation]:
        with self._lock:
            return self._active.get(session_id)

    def has_active(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._active

    def resolve(self, session_id: str, reply: str) -> Optional[Resolution]:
        """Map a reply to an action; None when the session has no dialog."""
        logger = get_logger()
        with self._lock:
            state = self._active.get(session_id)
            if state is None:
                return None
            state.last_activity = self._clock()
            resolution = self._resolve_locked(state, reply)
            if resolution.action != "retry":
                del self._active[session_id]
        logger.info(f"[CLARIFY] {resolution.action} attempts={state.attempts} session={session_id}")
        return resolution

    def _resolve_locked(self, state: PendingDisambiguation, reply: str) -> Resolution:
        text = (reply or "").strip()

        if state.kind == "repeat" and text:
            return Resolution("reprocess", input_text=text)

        if state.kind == "confirm":
            if NEGATIVE_PATTERN.search(text):
                return Resolution("cancel", "Okay, never mind.")
            if AFFIRMATIVE_PATTERN.search(text):
                return Resolution("execute", intent=state.intent, input_text=state.original_input)

        if state.kind == "choice":
            chosen = _match_option(text, state.options)
            if chosen is not None:
                return Resolution(
                    "execute",
                    intent=state.intent.with_type(chosen, alternatives=()),
                    input_text=state.original_input,
                )
            if NEGATIVE_PATTERN.search(text):
                return Resolution("cancel", "Okay, never mind.")

        state.attempts += 1
        if state.attempts >= self.max_attempts:
            return Resolution("giveup", GIVEUP_MESSAGE)
        return Resolution("retry", RETRY_PREFIX + state.question)

    def clear(self, session_id: str) -> bool:
        with self._lock:
            return self._active.pop(session_id, None) is not None

    def sweep(self) -> int:
        """Drop dialogs idle past the timeout."""
        now = self._clock()
        with self._lock:
            stale = [
                sid for sid, s in self._active.items()
                if now - s.last_activity > self.idle_timeout_sec
            ]
            for sid in stale:
                del self._active[sid]
        if stale:
            get_logger().debug(f"[SWEEP] disambiguation removed={len(stale)}")
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._active)
