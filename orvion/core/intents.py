"""
Intent vocabulary and the immutable IntentResult record.

IntentType is a closed enumeration: the action handler table in
orvion.core.handlers is checked against it at import time, so adding a
kind here without a handler fails loudly.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple


class IntentType(str, Enum):
    """Every action kind the assistant can resolve an utterance to."""
    GENERAL = "general"
    ERROR = "error"

    # Conversation
    GREETING = "greeting"
    THANKS = "thanks"
    QUICK_ANSWER = "quick-answer"

    # Clock
    GET_TIME = "get-time"
    GET_DATE = "get-date"
    GET_DAY = "get-day"
    GET_MONTH = "get-month"

    # Search and knowledge
    GOOGLE_SEARCH = "google-search"
    WEB_SEARCH = "web-search"
    WIKIPEDIA_QUERY = "wikipedia-query"
    YOUTUBE_SEARCH = "youtube-search"
    YOUTUBE_PLAY = "youtube-play"
    READ_NEWS = "read-news"
    WEATHER_SHOW = "weather-show"
    TRANSLATE = "translate"

    # Apps and social
    APP_LAUNCH = "app-launch"
    APP_CLOSE = "app-close"
    CALCULATOR_OPEN = "calculator-open"
    INSTAGRAM_OPEN = "instagram-open"
    INSTAGRAM_DM = "instagram-dm"
    INSTAGRAM_STORY = "instagram-story"
    INSTAGRAM_PROFILE = "instagram-profile"
    FACEBOOK_OPEN = "facebook-open"

    # Payments
    PAYMENT_PHONEPE = "payment-phonepe"
    PAYMENT_GOOGLEPAY = "payment-googlepay"
    PAYMENT_PAYTM = "payment-paytm"
    PAYMENT_UPI = "payment-upi"

    # Outbound communication
    WHATSAPP_SEND = "whatsapp-send"
    TELEGRAM_SEND = "telegram-send"
    CALL_CONTACT = "call-contact"
    EMAIL_SEND = "email-send"
    PICK_CONTACT = "pick-contact"

    # Productivity
    SET_ALARM = "set-alarm"
    SET_REMINDER = "set-reminder"
    TAKE_NOTE = "take-note"
    CALENDAR_VIEW = "calendar-view"
    CALENDAR_CREATE = "calendar-create"
    CALENDAR_TODAY = "calendar-today"
    GMAIL_CHECK = "gmail-check"
    GMAIL_READ = "gmail-read"
    GMAIL_SEND = "gmail-send"
    ITINERARY_CREATE = "itinerary-create"
    TRIP_PLAN = "trip-plan"

    # Media
    PLAY_MUSIC = "play-music"
    CAST_MEDIA = "cast-media"
    CAST_YOUTUBE = "cast-youtube"

    # Device
    DEVICE_CONTROL = "device-control"
    SMART_ROUTINE = "smart-routine"
    VOLUME_CONTROL = "volume-control"
    BRIGHTNESS_CONTROL = "brightness-control"
    SCREENSHOT = "screenshot"
    SCREEN_RECORD = "screen-record"
    SCREEN_SHARE = "screen-share"
    CAMERA_PHOTO = "camera-photo"
    CAMERA_VIDEO = "camera-video"
    BLUETOOTH_SCAN = "bluetooth-scan"
    BLUETOOTH_CONNECT = "bluetooth-connect"

    @classmethod
    def parse(cls, value: Any) -> Optional["IntentType"]:
        """Map a wire string (e.g. "get-time") to a member, or None."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None

    @property
    def label(self) -> str:
        """Human readable action phrase, e.g. "play music"."""
        return INTENT_LABELS.get(self, self.value.replace("-", " "))


INTENT_LABELS: Dict[IntentType, str] = {
    IntentType.PLAY_MUSIC: "play music",
    IntentType.YOUTUBE_PLAY: "play a YouTube video",
    IntentType.YOUTUBE_SEARCH: "search YouTube",
    IntentType.GOOGLE_SEARCH: "search on Google",
    IntentType.WEB_SEARCH: "search the web",
    IntentType.WIKIPEDIA_QUERY: "get information from Wikipedia",
    IntentType.WEATHER_SHOW: "check the weather",
    IntentType.READ_NEWS: "read the news",
    IntentType.SET_ALARM: "set an alarm",
    IntentType.SET_REMINDER: "set a reminder",
    IntentType.WHATSAPP_SEND: "send a WhatsApp message",
    IntentType.CALL_CONTACT: "make a call",
    IntentType.EMAIL_SEND: "send an email",
    IntentType.PAYMENT_PHONEPE: "pay using PhonePe",
    IntentType.PAYMENT_GOOGLEPAY: "pay using Google Pay",
}


class Provenance(str, Enum):
    """How an intent was resolved."""
    FAST = "fast"
    PARTIAL = "partial"
    REMOTE = "remote"
    OFFLINE = "offline"


def _clamp_confidence(value: Any) -> float:
    try:
        conf = float(value)
    except (TypeError, ValueError):
        return 0.0
    if conf != conf:  # NaN
        return 0.0
    return max(0.0, min(1.0, conf))


@dataclass(frozen=True)
class IntentResult:
    """
    One resolved utterance.

    Fields:
        type: Resolved intent kind
        confidence: Numeric confidence, always within [0, 1]
        source_text: The utterance as received
        provenance: fast / partial / remote / offline
        response: Short spoken reply for the user
        slots: Extracted parameters (app name, amount, ...), read-only
        alternatives: Other plausible kinds, best first
    """
    type: IntentType
    confidence: float
    source_text: str
    provenance: Provenance
    response: str = ""
    slots: Mapping[str, Any] = field(default_factory=dict)
    alternatives: Tuple[IntentType, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", _clamp_confidence(self.confidence))
        object.__setattr__(self, "slots", MappingProxyType(dict(self.slots)))
        object.__setattr__(self, "alternatives", tuple(self.alternatives))

    def with_type(self, intent_type: IntentType, **changes: Any) -> "IntentResult":
        """Derive a new result for another kind (e.g. after a clarification choice)."""
        return replace(self, type=intent_type, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for logging/caching."""
        return {
            "type": self.type.value,
            "confidence": self.confidence,
            "source_text": self.source_text,
            "provenance": self.provenance.value,
            "response": self.response,
            "slots": dict(self.slots),
            "alternatives": [a.value for a in self.alternatives],
        }
