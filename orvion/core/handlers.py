"""
Action handlers: turn a resolved IntentResult into a client action.

HANDLER_NAMES maps EVERY IntentType to a method on ActionDispatcher. The
mapping is checked when this module is imported, so a new intent kind
without a handler fails at startup rather than at request time.

Handlers never perform the side effect themselves (payments, messages,
device control happen on the client); they describe it:
    action:   what the client should do ("speak", "open-url", "upi-payment", ...)
    response: spoken reply
    url:      target for open-url style actions
    metadata: action parameters
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import quote_plus

from orvion.core.intents import IntentResult, IntentType
from orvion.core.logger import get_logger


@dataclass(frozen=True)
class ActionResult:
    intent_type: IntentType
    action: str
    response: str
    url: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def to_event(self) -> Dict[str, Any]:
        """Payload for the "action" stream event."""
        event: Dict[str, Any] = {"action": self.action, "intent": self.intent_type.value}
        if self.url:
            event["url"] = self.url
        if self.metadata:
            event["metadata"] = dict(self.metadata)
        return event


HANDLER_NAMES: Dict[IntentType, str] = {
    IntentType.GENERAL: "handle_general",
    IntentType.ERROR: "handle_error",
    IntentType.GREETING: "handle_general",
    IntentType.THANKS: "handle_general",
    IntentType.QUICK_ANSWER: "handle_knowledge",
    IntentType.GET_TIME: "handle_get_time",
    IntentType.GET_DATE: "handle_get_date",
    IntentType.GET_DAY: "handle_get_day",
    IntentType.GET_MONTH: "handle_get_month",
    IntentType.GOOGLE_SEARCH: "handle_google_search",
    IntentType.WEB_SEARCH: "handle_knowledge",
    IntentType.WIKIPEDIA_QUERY: "handle_knowledge",
    IntentType.YOUTUBE_SEARCH: "handle_youtube",
    IntentType.YOUTUBE_PLAY: "handle_youtube",
    IntentType.READ_NEWS: "handle_client_action",
    IntentType.WEATHER_SHOW: "handle_weather",
    IntentType.TRANSLATE: "handle_client_action",
    IntentType.APP_LAUNCH: "handle_app",
    IntentType.APP_CLOSE: "handle_app",
    IntentType.CALCULATOR_OPEN: "handle_open_site",
    IntentType.INSTAGRAM_OPEN: "handle_open_site",
    IntentType.INSTAGRAM_DM: "handle_client_action",
    IntentType.INSTAGRAM_STORY: "handle_client_action",
    IntentType.INSTAGRAM_PROFILE: "handle_client_action",
    IntentType.FACEBOOK_OPEN: "handle_open_site",
    IntentType.PAYMENT_PHONEPE: "handle_payment",
    IntentType.PAYMENT_GOOGLEPAY: "handle_payment",
    IntentType.PAYMENT_PAYTM: "handle_payment",
    IntentType.PAYMENT_UPI: "handle_payment",
    IntentType.WHATSAPP_SEND: "handle_message",
    IntentType.TELEGRAM_SEND: "handle_message",
    IntentType.CALL_CONTACT: "handle_client_action",
    IntentType.EMAIL_SEND: "handle_message",
    IntentType.PICK_CONTACT: "handle_client_action",
    IntentType.SET_ALARM: "handle_client_action",
    IntentType.SET_REMINDER: "handle_client_action",
    IntentType.TAKE_NOTE: "handle_client_action",
    IntentType.CALENDAR_VIEW: "handle_client_action",
    IntentType.CALENDAR_CREATE: "handle_client_action",
    IntentType.CALENDAR_TODAY: "handle_client_action",
    IntentType.GMAIL_CHECK: "handle_client_action",
    IntentType.GMAIL_READ: "handle_client_action",
    IntentType.GMAIL_SEND: "handle_message",
    IntentType.ITINERARY_CREATE: "handle_client_action",
    IntentType.TRIP_PLAN: "handle_client_action",
    IntentType.PLAY_MUSIC: "handle_client_action",
    IntentType.CAST_MEDIA: "handle_client_action",
    IntentType.CAST_YOUTUBE: "handle_client_action",
    IntentType.DEVICE_CONTROL: "handle_device",
    IntentType.SMART_ROUTINE: "handle_client_action",
    IntentType.VOLUME_CONTROL: "handle_client_action",
    IntentType.BRIGHTNESS_CONTROL: "handle_client_action",
    IntentType.SCREENSHOT: "handle_client_action",
    IntentType.SCREEN_RECORD: "handle_client_action",
    IntentType.SCREEN_SHARE: "handle_client_action",
    IntentType.CAMERA_PHOTO: "handle_client_action",
    IntentType.CAMERA_VIDEO: "handle_client_action",
    IntentType.BLUETOOTH_SCAN: "handle_client_action",
    IntentType.BLUETOOTH_CONNECT: "handle_client_action",
}

# Client-side action names that differ from the intent value
CLIENT_ACTIONS: Dict[IntentType, str] = {
    IntentType.READ_NEWS: "show-news",
    IntentType.CALL_CONTACT: "make-call",
    IntentType.PLAY_MUSIC: "play-music",
    IntentType.SMART_ROUTINE: "execute-routine",
    IntentType.VOLUME_CONTROL: "control-volume",
    IntentType.BRIGHTNESS_CONTROL: "control-brightness",
    IntentType.SCREENSHOT: "take-screenshot",
}

SITE_URLS: Dict[IntentType, str] = {
    IntentType.CALCULATOR_OPEN: "https://www.google.com/search?q=calculator",
    IntentType.INSTAGRAM_OPEN: "https://www.instagram.com/",
    IntentType.FACEBOOK_OPEN: "https://www.facebook.com/",
}

PAYMENT_ACTIONS: Dict[IntentType, str] = {
    IntentType.PAYMENT_PHONEPE: "phonepe-payment",
    IntentType.PAYMENT_GOOGLEPAY: "googlepay-payment",
    IntentType.PAYMENT_PAYTM: "paytm-payment",
    IntentType.PAYMENT_UPI: "upi-payment",
}

DEFAULT_REPLY = "Done."


def _query_of(intent: IntentResult) -> str:
    return str(intent.slots.get("query") or intent.source_text).strip()


class ActionDispatcher:
    """Exhaustive dispatch over IntentType."""

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self.clock = clock
        self._table: Dict[IntentType, Callable[[IntentResult], ActionResult]] = {
            intent_type: getattr(self, name) for intent_type, name in HANDLER_NAMES.items()
        }

    def dispatch(self, intent: IntentResult) -> ActionResult:
        handler = self._table.get(intent.type, self.handle_general)
        try:
            return handler(intent)
        except Exception as e:
            # A broken handler degrades to speaking the reply
            get_logger().error(f"[ORCH] handler for {intent.type.value} failed: {e}")
            return self.handle_general(intent)

    # -- generic ------------------------------------------------------------

    def handle_general(self, intent: IntentResult) -> ActionResult:
        return ActionResult(intent.type, "speak", intent.response or DEFAULT_REPLY, metadata={"category": "information"})

    def handle_error(self, intent: IntentResult) -> ActionResult:
        return ActionResult(intent.type, "speak", intent.response, metadata={"category": "error"})

    def handle_client_action(self, intent: IntentResult) -> ActionResult:
        action = CLIENT_ACTIONS.get(intent.type, intent.type.value)
        reply = intent.response or f"Okay, I'll {intent.type.label}."
        return ActionResult(intent.type, action, reply, metadata=dict(intent.slots))

    # -- clock ----------------------------------------------------------------

    def handle_get_time(self, intent: IntentResult) -> ActionResult:
        now = self.clock()
        time_str = now.strftime("%I:%M %p")
        return ActionResult(intent.type, "speak", f"The current time is {time_str}",
                            metadata={"time": time_str, "timestamp": now.isoformat()})

    def handle_get_date(self, intent: IntentResult) -> ActionResult:
        now = self.clock()
        date_str = f"{now.strftime('%A, %B')} {now.day}, {now.year}"
        return ActionResult(intent.type, "speak", f"Today is {date_str}",
                            metadata={"date": date_str, "timestamp": now.isoformat()})

    def handle_get_day(self, intent: IntentResult) -> ActionResult:
        day = self.clock().strftime("%A")
        return ActionResult(intent.type, "speak", f"Today is {day}", metadata={"day": day})

    def handle_get_month(self, intent: IntentResult) -> ActionResult:
        month = self.clock().strftime("%B")
        return ActionResult(intent.type, "speak", f"The current month is {month}", metadata={"month": month})

    # -- search and sites -------------------------------------------------------

    def handle_google_search(self, intent: IntentResult) -> ActionResult:
        query = _query_of(intent)
        return ActionResult(intent.type, "open-url", intent.response or f"Searching Google for {query}",
                            url=f"https://www.google.com/search?q={quote_plus(query)}",
                            metadata={"searchEngine": "google", "query": query})

    def handle_youtube(self, intent: IntentResult) -> ActionResult:
        query = _query_of(intent)
        kind = "play" if intent.type is IntentType.YOUTUBE_PLAY else "search"
        return ActionResult(intent.type, "open-url", intent.response or f"Searching YouTube for {query}",
                            url=f"https://www.youtube.com/results?search_query={quote_plus(query)}",
                            metadata={"platform": "youtube", "type": kind, "query": query})

    def handle_open_site(self, intent: IntentResult) -> ActionResult:
        return ActionResult(intent.type, "open-url", intent.response or f"Okay, I'll {intent.type.label}.",
                            url=SITE_URLS[intent.type])

    def handle_knowledge(self, intent: IntentResult) -> ActionResult:
        # Answer text comes from the reasoning service or the offline table
        query = _query_of(intent)
        return ActionResult(intent.type, "speak", intent.response or f"Here's what I found about {query}.",
                            metadata={"query": query, "category": "knowledge"})

    def handle_weather(self, intent: IntentResult) -> ActionResult:
        city = str(intent.slots.get("city", "")).strip()
        query = f"weather {city}".strip()
        return ActionResult(intent.type, "show-weather", intent.response or "Let me check the weather for you.",
                            url=f"https://www.google.com/search?q={quote_plus(query)}",
                            metadata={"city": city} if city else {})

    # -- apps, payments, messages, devices ---------------------------------------

    def handle_app(self, intent: IntentResult) -> ActionResult:
        app = str(intent.slots.get("app_name") or intent.slots.get("query") or "").strip()
        verb = "Closing" if intent.type is IntentType.APP_CLOSE else "Opening"
        return ActionResult(intent.type, intent.type.value, intent.response or f"{verb} {app}".strip(),
                            metadata={"app_name": app})

    def handle_payment(self, intent: IntentResult) -> ActionResult:
        metadata = {k: intent.slots[k] for k in ("amount", "recipient", "app") if k in intent.slots}
        return ActionResult(intent.type, PAYMENT_ACTIONS[intent.type],
                            intent.response or f"Opening {intent.type.label}", metadata=metadata)

    def handle_message(self, intent: IntentResult) -> ActionResult:
        action = {
            IntentType.WHATSAPP_SEND: "whatsapp-message",
            IntentType.TELEGRAM_SEND: "telegram-message",
        }.get(intent.type, "send-email")
        return ActionResult(intent.type, action, intent.response or f"Okay, I'll {intent.type.label}.",
                            metadata={"message": _query_of(intent)})

    def handle_device(self, intent: IntentResult) -> ActionResult:
        metadata = {"action": intent.slots.get("action", "control"), "device": intent.slots.get("device", "device")}
        return ActionResult(intent.type, "control-device",
                            intent.response or f"Okay, I'll {metadata['action']} the {metadata['device']}.",
                            metadata=metadata)


def _check_exhaustive() -> None:
    missing = [t.value for t in IntentType if t not in HANDLER_NAMES]
    if missing:
        raise RuntimeError(f"intent kinds without an action handler: {', '.join(missing)}")
    unknown = sorted({n for n in HANDLER_NAMES.values() if not callable(getattr(ActionDispatcher, n, None))})
    if unknown:
        raise RuntimeError(f"action handler names not defined: {', '.join(unknown)}")


_check_exhaustive()
