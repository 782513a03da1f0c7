"""orvion.policy

Dialog policy for sensitive and unclear requests.

This package provides:
- Safety confirmation for payments, outbound messages and device actions
- Clarification dialogs for low-confidence intents
- DialogStateManager, which keeps the two mutually exclusive per session

HARD RULES:
- All decisions are deterministic (no reasoning-service involvement)
- Confirmation is always checked before clarification
"""

from orvion.policy.dialog_state import DialogStateManager, GateResult
from orvion.policy.disambiguation import Disambiguator, PendingDisambiguation, Resolution
from orvion.policy.safety_confirmation import PendingConfirmation, SafetyConfirmation

__all__ = [
    "DialogStateManager",
    "GateResult",
    "Disambiguator",
    "PendingDisambiguation",
    "Resolution",
    "PendingConfirmation",
    "SafetyConfirmation",
]
