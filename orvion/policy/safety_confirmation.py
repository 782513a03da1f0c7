"""
Safety confirmation gate for sensitive actions.

Payments, outbound messages/calls/mail and device actuation never run on
the first utterance. The orchestrator parks the resolved intent here and
asks the user to say "Yes, confirm".

HARD RULES:
- Regex/string only - NO reasoning-service parsing for confirm/cancel
- At most one pending confirmation per session; a new request REPLACES it
- Pending is cleared BEFORE the caller executes, to prevent double-run
- Older than the timeout => expired; the action never runs

Usage:
    gate = SafetyConfirmation()
    if gate.requires_confirmation(intent.type):
        prompt = gate.request(session_id, intent)
    ...
    outcome = gate.resolve(session_id, reply)
    if outcome.status == "confirmed":
        run(outcome.pending.payload)
"""

import re
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Literal, Optional

from orvion.core.config import Config
from orvion.core.intents import IntentResult, IntentType
from orvion.core.logger import get_logger

# ============================================================================
# CONFIRM/CANCEL PHRASES (word-boundary matched anywhere in the reply)
# ============================================================================

CONFIRM_PHRASES: List[str] = [
    "yes confirm",
    "confirm",
    "confirmed",
    "proceed",
    "go ahead",
    "do it",
]

CANCEL_PHRASES: List[str] = [
    "cancel",
    "no",
    "stop",
    "abort",
    "nevermind",
    "never mind",
    "don't",
    "do not",
]


def _phrase_pattern(phrases: Iterable[str]) -> "re.Pattern[str]":
    # Longest first so "yes confirm" wins over "confirm" in the alternation
    ordered = sorted(phrases, key=len, reverse=True)
    body = "|".join(re.escape(p).replace(r"\ ", r"\s+") for p in ordered)
    return re.compile(rf"(?<![\w'])(?:{body})(?![\w'])", re.IGNORECASE)


CONFIRM_PATTERN = _phrase_pattern(CONFIRM_PHRASES)
CANCEL_PATTERN = _phrase_pattern(CANCEL_PHRASES)

REASK_PROMPT = 'Please say "Yes, confirm" to proceed or "Cancel" to abort.'
CANCELLED_MESSAGE = "Okay, cancelled."
EXPIRED_MESSAGE = "That confirmation timed out, so I didn't do anything. Please try again."

ReplyKind = Literal["confirm", "cancel", "unclear"]
ResolveStatus = Literal["confirmed", "cancelled", "expired", "unclear", "none"]


def normalize(text: str) -> str:
    """Lowercase, drop punctuation except apostrophes, collapse whitespace."""
    if not text:
        return ""
    normalized = re.sub(r"[^\w\s']", " ", text.lower())
    return re.sub(r"\s+", " ", normalized).strip()


def classify_reply(text: str) -> ReplyKind:
    """
    Classify a reply to a confirmation prompt.

    Cancel phrases are checked first: "no, don't proceed" must never confirm.
    """
    normalized = normalize(text)
    if not normalized:
        return "unclear"
    if CANCEL_PATTERN.search(normalized):
        return "cancel"
    if CONFIRM_PATTERN.search(normalized):
        return "confirm"
    return "unclear"


def is_confirm(text: str) -> bool:
    return classify_reply(text) == "confirm"


def is_cancel(text: str) -> bool:
    return classify_reply(text) == "cancel"


_PAYMENT_APP_NAMES = {
    IntentType.PAYMENT_PHONEPE: "PhonePe",
    IntentType.PAYMENT_GOOGLEPAY: "Google Pay",
    IntentType.PAYMENT_PAYTM: "Paytm",
    IntentType.PAYMENT_UPI: "a UPI app",
}

_SUFFIX = 'Please say "Yes, confirm" to proceed.'


def build_prompt(intent: IntentResult) -> str:
    """Confirmation prompt for one intent family."""
    slots = intent.slots
    t = intent.type
    if t in _PAYMENT_APP_NAMES:
        app = _PAYMENT_APP_NAMES[t]
        amount = slots.get("amount")
        recipient = slots.get("recipient")
        what = f"a payment of {amount} rupees" if amount else "a payment"
        if recipient:
            what += f" to {str(recipient).title()}"
        return f"You're about to make {what} using {app}. {_SUFFIX}"
    if t in (IntentType.EMAIL_SEND, IntentType.GMAIL_SEND):
        return f"You're about to send an email. {_SUFFIX}"
    if t == IntentType.WHATSAPP_SEND:
        return f"You're about to send a WhatsApp message. {_SUFFIX}"
    if t == IntentType.TELEGRAM_SEND:
        return f"You're about to send a Telegram message. {_SUFFIX}"
    if t == IntentType.INSTAGRAM_DM:
        return f"You're about to send an Instagram message. {_SUFFIX}"
    if t == IntentType.CALL_CONTACT:
        return f"You're about to make a call. {_SUFFIX}"
    if t == IntentType.DEVICE_CONTROL:
        action = slots.get("action", "control")
        device = slots.get("device", "device")
        return f"You're about to {action} the {device}. {_SUFFIX}"
    if t == IntentType.SMART_ROUTINE:
        return f"You're about to run a smart home routine. {_SUFFIX}"
    return f"{_SUFFIX[:-1]} with this action."


@dataclass
class PendingConfirmation:
    """A parked sensitive action awaiting an explicit "yes, confirm"."""
    session_id: str
    intent_type: IntentType
    payload: IntentResult
    prompt: str
    requested_at: float
    timeout: float = 30.0

    @property
    def expires_at(self) -> float:
        return self.requested_at + self.timeout

    def is_expired(self, now: float) -> bool:
        return now - self.requested_at > self.timeout


@dataclass
class ConfirmationOutcome:
    """Result of resolving a reply against the pending confirmation."""
    status: ResolveStatus
    message: str = ""
    pending: Optional[PendingConfirmation] = None


class SafetyConfirmation:
    """Per-session pending confirmations, guarded by a lock."""

    def __init__(
        self,
        sensitive_intents: Optional[Iterable[str]] = None,
        timeout_sec: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        names = Config.SENSITIVE_INTENTS if sensitive_intents is None else sensitive_intents
        self.sensitive = frozenset(
            t for t in (IntentType.parse(n) for n in names) if t is not None
        )
        self.timeout_sec = Config.CONFIRMATION_TIMEOUT_SEC if timeout_sec is None else timeout_sec
        self._clock = clock
        self._lock = threading.Lock()
        self._pending: Dict[str, PendingConfirmation] = {}

    def requires_confirmation(self, intent_type: IntentType) -> bool:
        return intent_type in self.sensitive

    def request(self, session_id: str, intent: IntentResult) -> PendingConfirmation:
        """Park a sensitive intent; replaces any existing pending for the session."""
        logger = get_logger()
        pending = PendingConfirmation(
            session_id=session_id,
            intent_type=intent.type,
            payload=intent,
            prompt=build_prompt(intent),
            requested_at=self._clock(),
            timeout=self.timeout_sec,
        )
        with self._lock:
            replaced = self._pending.get(session_id)
            self._pending[session_id] = pending
        if replaced is not None:
            logger.info(f"[CONFIRM] replaced pending {replaced.intent_type.value} -> {intent.type.value}")
        else:
            logger.info(f"[CONFIRM] requested intent={intent.type.value} session={session_id}")
        return pending

    def get_pending(self, session_id: str) -> Optional[PendingConfirmation]:
        """Pending confirmation for a session, or None (expired entries are not returned)."""
        with self._lock:
            pending = self._pending.get(session_id)
            if pending is None:
                return None
            if pending.is_expired(self._clock()):
                return None
            return pending

    def has_pending(self, session_id: str) -> bool:
        """True when the session holds a confirmation (live or not yet swept)."""
        with self._lock:
            return session_id in self._pending

    def resolve(self, session_id: str, reply: str) -> ConfirmationOutcome:
        """
        Resolve a reply against the session's pending confirmation.

        Returns:
            status "none" when nothing is pending, "expired" when the window
            passed (pending cleared), "confirmed" with the popped pending,
            "cancelled" (pending cleared) or "unclear" (pending kept).
        """
        logger = get_logger()
        now = self._clock()
        with self._lock:
            pending = self._pending.get(session_id)
            if pending is None:
                return ConfirmationOutcome("none")

            age_ms = int((now - pending.requested_at) * 1000)
            if pending.is_expired(now):
                del self._pending[session_id]
                logger.info(f"[CONFIRM] expired age_ms={age_ms} -> cleared")
                return ConfirmationOutcome("expired", EXPIRED_MESSAGE, pending)

            kind = classify_reply(reply)
            if kind == "confirm":
                # Pop BEFORE the caller executes
                del self._pending[session_id]
                logger.info(f"[CONFIRM] confirmed intent={pending.intent_type.value} age_ms={age_ms}")
                return ConfirmationOutcome("confirmed", "Confirmed. Proceeding with action.", pending)
            if kind == "cancel":
                del self._pending[session_id]
                logger.info(f"[CONFIRM] cancelled age_ms={age_ms}")
                return ConfirmationOutcome("cancelled", CANCELLED_MESSAGE, pending)

        logger.debug(f"[CONFIRM] unclear reply: '{reply[:50]}'")
        return ConfirmationOutcome("unclear", REASK_PROMPT, pending)

    def clear(self, session_id: str) -> bool:
        with self._lock:
            return self._pending.pop(session_id, None) is not None

    def sweep(self) -> int:
        """Drop expired confirmations even if the user never speaks again."""
        now = self._clock()
        with self._lock:
            stale = [sid for sid, p in self._pending.items() if p.is_expired(now)]
            for sid in stale:
                del self._pending[sid]
        for sid in stale:
            get_logger().info(f"[CONFIRM] expired (passive) session={sid}")
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)
