"""
DialogStateManager: one owner for both per-session dialog machines.

A session is IDLE, AWAITING_CONFIRMATION or AWAITING_CLARIFICATION, never
both awaiting states at once. Opening one dialog clears the other, and
replies are always offered to the confirmation gate first.
"""

import threading
from dataclasses import dataclass
from typing import Literal, Optional

from orvion.core.intents import IntentResult
from orvion.core.state import DialogState
from orvion.policy.disambiguation import Disambiguator, PendingDisambiguation, Resolution, needs_clarification
from orvion.policy.safety_confirmation import ConfirmationOutcome, PendingConfirmation, SafetyConfirmation

GateKind = Literal["confirmation", "clarification"]


@dataclass
class GateResult:
    """What the dialog gate did with an incoming reply."""
    kind: GateKind
    confirmation: Optional[ConfirmationOutcome] = None
    resolution: Optional[Resolution] = None


class DialogStateManager:
    def __init__(
        self,
        confirmation: Optional[SafetyConfirmation] = None,
        disambiguation: Optional[Disambiguator] = None,
    ):
        self.confirmation = confirmation if confirmation is not None else SafetyConfirmation()
        self.disambiguation = disambiguation if disambiguation is not None else Disambiguator()
        # Serializes cross-machine transitions; each machine has its own lock too
        self._lock = threading.RLock()

    def dialog_state(self, session_id: str) -> DialogState:
        with self._lock:
            if self.confirmation.has_pending(session_id):
                return DialogState.AWAITING_CONFIRMATION
            if self.disambiguation.has_active(session_id):
                return DialogState.AWAITING_CLARIFICATION
            return DialogState.IDLE

    # ------------------------------------------------------------------
    # Entering a dialog
    # ------------------------------------------------------------------

    def requires_confirmation(self, intent: IntentResult) -> bool:
        return self.confirmation.requires_confirmation(intent.type)

    def needs_clarification(self, intent: IntentResult) -> bool:
        return needs_clarification(intent.confidence)

    def request_confirmation(self, session_id: str, intent: IntentResult) -> PendingConfirmation:
        with self._lock:
            self.disambiguation.clear(session_id)
            return self.confirmation.request(session_id, intent)

    def start_clarification(self, session_id: str, intent: IntentResult) -> PendingDisambiguation:
        with self._lock:
            self.confirmation.clear(session_id)
            return self.disambiguation.start(session_id, intent)

    # ------------------------------------------------------------------
    # Consuming a reply
    # ------------------------------------------------------------------

    def handle_reply(self, session_id: str, text: str) -> Optional[GateResult]:
        """
        Offer a reply to the pending dialog, confirmation first.

        Returns None when the session is IDLE and the reply is an ordinary
        utterance.
        """
        with self._lock:
            if self.confirmation.has_pending(session_id):
                return GateResult("confirmation", confirmation=self.confirmation.resolve(session_id, text))
            if self.disambiguation.has_active(session_id):
                resolution = self.disambiguation.resolve(session_id, text)
                if resolution is not None:
                    return GateResult("clarification", resolution=resolution)
            return None

    def clear(self, session_id: str) -> None:
        with self._lock:
            self.confirmation.clear(session_id)
            self.disambiguation.clear(session_id)

    def sweep_confirmations(self) -> int:
        return self.confirmation.sweep()

    def sweep_disambiguations(self) -> int:
        return self.disambiguation.sweep()
