"""Instant spoken acknowledgments ("On it", "Searching") sent before the real reply."""

import random
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from orvion.core.config import Config
from orvion.core.intents import IntentResult, IntentType

DEFAULT_PHRASES: Tuple[str, ...] = ("Got it", "Okay", "Sure", "On it")

PHRASES: Dict[IntentType, Tuple[str, ...]] = {
    IntentType.GOOGLE_SEARCH: ("Searching", "Looking that up", "On it"),
    IntentType.WEB_SEARCH: ("Searching", "Finding that for you"),
    IntentType.WIKIPEDIA_QUERY: ("Let me check", "Looking that up"),
    IntentType.QUICK_ANSWER: ("One moment", "Let me find that"),
    IntentType.PLAY_MUSIC: ("Playing now", "Sure, playing"),
    IntentType.YOUTUBE_PLAY: ("Playing", "On it"),
    IntentType.YOUTUBE_SEARCH: ("Searching YouTube",),
    IntentType.WEATHER_SHOW: ("Checking weather", "One moment"),
    IntentType.READ_NEWS: ("Getting news", "On it"),
    IntentType.GET_TIME: ("Sure",),
    IntentType.GET_DATE: ("Sure",),
    IntentType.SET_ALARM: ("Setting alarm", "On it"),
    IntentType.SET_REMINDER: ("Setting reminder", "Got it"),
    IntentType.TAKE_NOTE: ("Taking note", "On it"),
    IntentType.WHATSAPP_SEND: ("Opening WhatsApp",),
    IntentType.CALL_CONTACT: ("Calling", "On it"),
    IntentType.APP_LAUNCH: ("Opening", "Launching"),
    IntentType.INSTAGRAM_OPEN: ("Opening Instagram",),
    IntentType.FACEBOOK_OPEN: ("Opening Facebook",),
    IntentType.CALCULATOR_OPEN: ("Opening calculator",),
    IntentType.VOLUME_CONTROL: ("Adjusting volume",),
    IntentType.BRIGHTNESS_CONTROL: ("Adjusting brightness",),
    IntentType.SCREENSHOT: ("Taking screenshot",),
    IntentType.EMAIL_SEND: ("Composing email",),
    IntentType.TRANSLATE: ("Translating",),
    IntentType.PAYMENT_PHONEPE: ("Opening PhonePe",),
    IntentType.PAYMENT_GOOGLEPAY: ("Opening Google Pay",),
    IntentType.PAYMENT_PAYTM: ("Opening Paytm",),
    IntentType.PAYMENT_UPI: ("Opening payment app",),
    IntentType.CALENDAR_VIEW: ("Loading calendar",),
    IntentType.CALENDAR_CREATE: ("Creating event",),
    IntentType.GMAIL_CHECK: ("Checking email",),
    IntentType.GMAIL_SEND: ("Composing email",),
    IntentType.GREETING: ("Hello", "Hi there", "Hey"),
    IntentType.THANKS: ("You're welcome", "Happy to help"),
}


@dataclass(frozen=True)
class Acknowledgment:
    text: str
    intent_type: IntentType
    confidence: float
    timestamp: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "text": self.text,
            "intentType": self.intent_type.value,
            "confidence": self.confidence,
            "timestamp": self.timestamp,
        }


class Acknowledger:
    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def acknowledge(self, intent_type: IntentType, confidence: float = 1.0) -> Optional[Acknowledgment]:
        """Phrase for an intent, or None when too uncertain to acknowledge."""
        if confidence < Config.ACK_MIN_CONFIDENCE:
            return None
        phrases = PHRASES.get(intent_type, DEFAULT_PHRASES)
        return Acknowledgment(self.rng.choice(phrases), intent_type, confidence, time.time())

    def acknowledge_partial(self, partial: Optional[IntentResult]) -> Optional[Acknowledgment]:
        # Early guesses need a higher bar than complete utterances
        if partial is None or partial.confidence < Config.PARTIAL_ACK_MIN_CONFIDENCE:
            return None
        return self.acknowledge(partial.type, partial.confidence)
