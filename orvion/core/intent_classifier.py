"""orvion.core.intent_classifier

Local pattern-based intent classifier.

It returns either:
- an IntentResult with a fixed per-rule confidence, OR
- None, which sends the utterance down the remote (or offline) path.

Evaluation order for detect_intent():
1. Pure arithmetic ("2 + 2") through the restricted evaluator
2. The ordered category table; the first matching category wins
3. None

detect_partial_intent() guesses from an incomplete utterance using a prefix
table (longest prefix wins). Both functions are pure: no I/O, no locks.
"""

from __future__ import annotations

import random
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Pattern, Sequence, Tuple

from orvion.core.arithmetic import ExpressionError, evaluate, format_number, looks_like_arithmetic
from orvion.core.intents import IntentResult, IntentType, Provenance
from orvion.knowledge.offline_knowledge import KNOWLEDGE_CONFIDENCE, OfflineKnowledge

# Confidence per rule class
ARITHMETIC_CONFIDENCE = 0.95
DYNAMIC_CONFIDENCE = 0.95
PATTERN_CONFIDENCE = 0.9

HandlerResult = Tuple[str, Dict[str, str]]
Handler = Callable[[str, "re.Match[str]"], HandlerResult]


def _strip_trailing_punct(text: str) -> str:
    return (text or "").strip().rstrip(".?!,;:\"'")


def normalize_text(text: str) -> str:
    """Lowercase, drop punctuation except apostrophes, collapse whitespace."""
    t = (text or "").lower().strip()
    t = re.sub(r"[^\w\s']", " ", t)
    return re.sub(r"\s+", " ", t).strip()


def _rx(*patterns: str) -> Tuple[Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


# Spoken app names -> canonical application names
APP_ALIASES: Dict[str, str] = {
    "calc": "calculator",
    "calculator": "calculator",
    "cal": "calendar",
    "calendar": "calendar",
    "settings": "system settings",
    "preferences": "system settings",
    "control panel": "system settings",
    "task manager": "activity monitor",
    "files": "file explorer",
    "explorer": "file explorer",
    "file explorer": "file explorer",
    "terminal": "terminal",
    "console": "terminal",
    "command prompt": "terminal",
    "cmd": "terminal",
    "notepad": "notepad",
    "notes": "notes",
    "camera": "camera",
    "webcam": "camera",
    "photos": "photos",
    "gallery": "photos",
    "chrome": "google chrome",
    "google chrome": "google chrome",
    "browser": "google chrome",
    "firefox": "firefox",
    "mozilla": "firefox",
    "edge": "microsoft edge",
    "safari": "safari",
    "mail": "mail",
    "outlook": "microsoft outlook",
    "teams": "microsoft teams",
    "zoom": "zoom",
    "slack": "slack",
    "discord": "discord",
    "skype": "skype",
    "spotify": "spotify",
    "vlc": "vlc",
    "code": "visual studio code",
    "vscode": "visual studio code",
    "vs code": "visual studio code",
    "visual studio code": "visual studio code",
    "word": "microsoft word",
    "ms word": "microsoft word",
    "excel": "microsoft excel",
    "sheets": "microsoft excel",
    "powerpoint": "microsoft powerpoint",
    "slides": "microsoft powerpoint",
}

_POLITE = r"(?:please\s+|can\s+you\s+|could\s+you\s+|would\s+you\s+|kindly\s+|just\s+)?"
_ARTICLES = r"(?:(?:the|my|a|an|this|that)\s+)?"
_APP_SUFFIX = r"(?:\s+(?:app|application|program|software))?"

_PAYMENT_APPS = {
    IntentType.PAYMENT_PHONEPE: "PhonePe",
    IntentType.PAYMENT_GOOGLEPAY: "Google Pay",
    IntentType.PAYMENT_PAYTM: "Paytm",
    IntentType.PAYMENT_UPI: "UPI",
}


def normalize_app_name(raw: str) -> str:
    """Resolve a spoken app name through the alias table."""
    name = _strip_trailing_punct(raw).lower()
    name = re.sub(r"\s+", " ", name)
    return APP_ALIASES.get(name, name)


@dataclass(frozen=True)
class IntentRule:
    """One category of the ordered table."""
    intent: IntentType
    patterns: Tuple[Pattern[str], ...]
    responses: Tuple[str, ...] = ()
    handler: Optional[str] = None  # name of a _handle_* method

    def match(self, text: str) -> Optional["re.Match[str]"]:
        for pattern in self.patterns:
            m = pattern.search(text)
            if m:
                return m
        return None


# Ordered: specific categories before the broad ones that would shadow them.
INTENT_RULES: Tuple[IntentRule, ...] = (
    # Payments (before "send"/"call" style patterns)
    IntentRule(IntentType.PAYMENT_PHONEPE, _rx(r"\bphone\s?pe\b"), handler="_handle_payment"),
    IntentRule(IntentType.PAYMENT_GOOGLEPAY, _rx(r"\bgoogle\s+pay\b|\bgpay\b"), handler="_handle_payment"),
    IntentRule(IntentType.PAYMENT_PAYTM, _rx(r"\bpaytm\b"), handler="_handle_payment"),
    IntentRule(
        IntentType.PAYMENT_UPI,
        _rx(
            r"\b(?:pay|send|transfer)\s+(?:rs\.?\s*|₹\s*)?\d+(?:\.\d+)?\s*(?:rupees|rs|inr|₹)?",
            r"\bupi\b",
            r"\btransfer\s+money\b|\bsend\s+money\b",
        ),
        handler="_handle_payment",
    ),

    # Conversation
    IntentRule(
        IntentType.GREETING,
        _rx(r"^(?:hi|hello|hey|greetings|good\s+(?:morning|afternoon|evening)|namaste|namaskar)\b"),
        responses=(
            "Hello! How can I help you today?",
            "Hi there! What can I do for you?",
            "Hey! How may I assist you?",
        ),
    ),
    IntentRule(
        IntentType.THANKS,
        _rx(r"^(?:thanks|thank\s+you|thx|appreciate\s+it|much\s+appreciated)\b"),
        responses=("You're welcome!", "Happy to help!", "Anytime!"),
    ),

    # Clock (dynamic)
    IntentRule(
        IntentType.GET_TIME,
        _rx(
            r"\bwhat(?:'s|\s+is)?\s+(?:the\s+)?time\b",
            r"\btime\s+(?:is\s+it|now)\b",
            r"\bcurrent\s+time\b",
            r"\btell\s+me\s+the\s+time\b",
        ),
        handler="_handle_time",
    ),
    IntentRule(
        IntentType.GET_DATE,
        _rx(
            r"\bwhat(?:'s|\s+is)?\s+(?:the\s+|today's\s+)?date\b",
            r"\btoday's\s+date\b",
            r"\bcurrent\s+date\b",
        ),
        handler="_handle_date",
    ),
    IntentRule(
        IntentType.GET_DAY,
        _rx(r"\bwhat\s+day\b", r"\bwhich\s+day\b", r"\bday\s+of\s+(?:the\s+)?week\b", r"\bday\s+today\b"),
        handler="_handle_day",
    ),
    IntentRule(
        IntentType.GET_MONTH,
        _rx(r"\bwhat\s+month\b", r"\bcurrent\s+month\b", r"\bwhich\s+month\b"),
        handler="_handle_month",
    ),

    # Calendar and mail
    IntentRule(
        IntentType.CALENDAR_TODAY,
        _rx(r"\b(?:calendar|schedule|agenda)\s+(?:for\s+)?today\b", r"\btoday's\s+(?:schedule|events|agenda)\b"),
        responses=("Checking today's schedule.",),
    ),
    IntentRule(
        IntentType.CALENDAR_CREATE,
        _rx(r"\bschedule\s+(?:a\s+)?(?:meeting|call|event)\b", r"\badd\s+(?:an?\s+)?event\b", r"\bcreate\s+(?:an?\s+)?event\b"),
        responses=("Creating calendar event.",),
    ),
    IntentRule(
        IntentType.CALENDAR_VIEW,
        _rx(r"\b(?:show|open|check)\s+(?:my\s+)?calendar\b", r"\bmy\s+schedule\b"),
        responses=("Loading your calendar.",),
    ),
    IntentRule(
        IntentType.GMAIL_CHECK,
        _rx(r"\bcheck\s+(?:my\s+)?(?:e-?mails?|inbox|gmail)\b", r"\b(?:any|unread)\s+(?:new\s+)?e-?mails?\b"),
        responses=("Checking your emails.",),
    ),
    IntentRule(
        IntentType.GMAIL_READ,
        _rx(r"\bread\s+(?:my\s+)?(?:recent\s+)?e-?mails?\b"),
        responses=("Reading your recent messages.",),
    ),
    IntentRule(
        IntentType.GMAIL_SEND,
        _rx(r"\b(?:send|compose)\s+(?:an?\s+)?gmail\b", r"\bgmail\s+to\b"),
        responses=("Opening Gmail composer.",),
    ),
    IntentRule(
        IntentType.EMAIL_SEND,
        _rx(r"\bsend\s+(?:an?\s+)?e-?mail\b", r"\be-?mail\s+to\b", r"\bcompose\s+(?:an?\s+)?e-?mail\b"),
        responses=("Composing email.",),
    ),

    # Messaging and social
    IntentRule(
        IntentType.WHATSAPP_SEND,
        _rx(r"\bwhats\s?app\b"),
        responses=("Opening WhatsApp.",),
    ),
    IntentRule(
        IntentType.TELEGRAM_SEND,
        _rx(r"\btelegram\b"),
        responses=("Opening Telegram.",),
    ),
    IntentRule(
        IntentType.INSTAGRAM_DM,
        _rx(r"\binstagram\s+(?:dm|direct\s+message)\b", r"\bmessage\s+(?:\w+\s+)?on\s+instagram\b", r"\bdm\b.*\binstagram\b"),
        responses=("Opening Instagram messages.",),
    ),
    IntentRule(
        IntentType.INSTAGRAM_STORY,
        _rx(r"\binstagram\s+stor(?:y|ies)\b", r"\bpost\s+on\s+instagram\b"),
        responses=("Opening Instagram stories.",),
    ),
    IntentRule(
        IntentType.INSTAGRAM_PROFILE,
        _rx(r"\binstagram\s+(?:profile|account)\b"),
        responses=("Opening your Instagram profile.",),
    ),
    IntentRule(
        IntentType.INSTAGRAM_OPEN,
        _rx(r"\b(?:open|launch)\s+instagram\b", r"\binstagram\s+app\b"),
        responses=("Opening Instagram for you.",),
    ),
    IntentRule(
        IntentType.FACEBOOK_OPEN,
        _rx(r"\b(?:open|launch)\s+facebook\b", r"\bfacebook\s+app\b"),
        responses=("Opening Facebook for you.",),
    ),

    # Weather and news
    IntentRule(
        IntentType.WEATHER_SHOW,
        _rx(
            r"\bweather\b",
            r"\btemperature\b",
            r"\bforecast\b",
            r"\bhow\s+(?:hot|cold|warm)\b",
            r"\bis\s+it\s+(?:raining|sunny|snowing)\b",
            r"\bwill\s+it\s+(?:rain|snow)\b",
        ),
        responses=("Let me check the weather for you.",),
    ),
    IntentRule(
        IntentType.READ_NEWS,
        _rx(r"\bnews\b", r"\bheadlines\b", r"\bwhat's\s+happening\b"),
        responses=("Fetching the latest news for you.",),
    ),

    # Video and casting
    IntentRule(
        IntentType.CAST_YOUTUBE,
        _rx(r"\bcast\b.*\byoutube\b", r"\bplay\s+(?:this|it)\s+on\s+(?:the\s+)?tv\b"),
        responses=("Casting YouTube to your TV.",),
    ),
    IntentRule(
        IntentType.CAST_MEDIA,
        _rx(r"\bcast\s+(?:to|on)\b", r"\bstream\s+to\s+(?:the\s+)?(?:tv|chromecast)\b", r"\bchromecast\b"),
        responses=("Casting to your device.",),
    ),
    IntentRule(
        IntentType.YOUTUBE_PLAY,
        _rx(r"\bplay\b.*\bon\s+youtube\b", r"\bplay\s+(?:a\s+|the\s+)?video\b"),
        responses=("Playing on YouTube now.",),
    ),
    IntentRule(
        IntentType.YOUTUBE_SEARCH,
        _rx(r"\byoutube\b", r"\bsearch\s+(?:for\s+)?(?:a\s+)?videos?\b", r"\bfind\s+(?:a\s+)?videos?\b"),
        responses=("Searching YouTube for you.",),
    ),
    IntentRule(
        IntentType.GOOGLE_SEARCH,
        _rx(r"\bgoogle\b", r"\bsearch\s+for\b", r"\blook\s+up\b"),
        responses=("Searching on Google for you.",),
    ),

    # Tools
    IntentRule(
        IntentType.CALCULATOR_OPEN,
        _rx(r"\bcalculator\b", r"\bopen\s+calc\b"),
        responses=("Opening calculator.",),
    ),
    IntentRule(
        IntentType.SET_ALARM,
        _rx(r"\bset\s+(?:an?\s+)?alarm\b", r"\balarm\s+for\b", r"\bwake\s+me\b"),
        responses=("Setting an alarm for you.",),
    ),
    IntentRule(
        IntentType.SET_REMINDER,
        _rx(r"\bremind\s+me\b", r"\bset\s+(?:an?\s+)?reminder\b", r"\breminder\s+for\b"),
        responses=("Setting a reminder for you.",),
    ),
    IntentRule(
        IntentType.TAKE_NOTE,
        _rx(r"\b(?:take|make|write)\s+(?:an?\s+)?note\b", r"\bnote\s+down\b", r"\bremember\s+this\b"),
        responses=("Taking a note for you.",),
    ),
    IntentRule(
        IntentType.VOLUME_CONTROL,
        _rx(r"\bvolume\b", r"\bunmute\b", r"\bmute\b", r"\blouder\b", r"\bquieter\b"),
        responses=("Adjusting volume.",),
    ),
    IntentRule(
        IntentType.BRIGHTNESS_CONTROL,
        _rx(r"\bbrightness\b", r"\bbrighter\b", r"\bdimmer\b"),
        responses=("Adjusting brightness.",),
    ),
    IntentRule(
        IntentType.SCREENSHOT,
        _rx(r"\bscreenshot\b", r"\bcapture\s+(?:the\s+)?screen\b"),
        responses=("Taking a screenshot.",),
    ),
    IntentRule(
        IntentType.SCREEN_RECORD,
        _rx(r"\brecord\s+(?:my\s+|the\s+)?screen\b", r"\bscreen\s+record(?:ing)?\b", r"\bstart\s+recording\b"),
        responses=("Starting screen recording.",),
    ),
    IntentRule(
        IntentType.SCREEN_SHARE,
        _rx(r"\bshare\s+(?:my\s+|the\s+)?screen\b", r"\bscreen\s+shar(?:e|ing)\b"),
        responses=("Starting screen share.",),
    ),
    IntentRule(
        IntentType.CAMERA_VIDEO,
        _rx(r"\brecord\s+(?:a\s+)?video\b", r"\bcamera\s+recording\b"),
        responses=("Starting video recording.",),
    ),
    IntentRule(
        IntentType.CAMERA_PHOTO,
        _rx(r"\btake\s+(?:a\s+)?(?:picture|photo|selfie)\b", r"\bcapture\s+(?:a\s+)?photo\b"),
        responses=("Taking a photo.",),
    ),
    IntentRule(
        IntentType.BLUETOOTH_SCAN,
        _rx(r"\bscan\b.*\bbluetooth\b", r"\bbluetooth\b.*\bscan\b", r"\bfind\s+bluetooth\b"),
        responses=("Scanning for devices.",),
    ),
    IntentRule(
        IntentType.BLUETOOTH_CONNECT,
        _rx(r"\bconnect\s+(?:to\s+)?(?:my\s+)?(?:headphones|earbuds|speaker|bluetooth)\b", r"\bpair\s+(?:a\s+|my\s+)?device\b"),
        responses=("Connecting to device.",),
    ),
    IntentRule(
        IntentType.SMART_ROUTINE,
        _rx(r"\b(?:good\s*night|movie|morning)\s+(?:mode|routine)\b", r"\brun\s+(?:my\s+)?\w+\s+routine\b"),
        responses=("Running your routine.",),
    ),
    IntentRule(
        IntentType.DEVICE_CONTROL,
        _rx(r"\bturn\s+(?:on|off)\s+(?:the\s+)?(?:lights?|tv|fan|ac|air\s+conditioner|heater|plug)\b",
            r"\bswitch\s+(?:on|off)\b"),
        handler="_handle_device",
    ),
    IntentRule(
        IntentType.TRANSLATE,
        _rx(r"\btranslat(?:e|ion)\b", r"\bhow\s+do\s+you\s+say\b"),
        responses=("Translating for you.",),
    ),
    IntentRule(
        IntentType.PICK_CONTACT,
        _rx(r"\b(?:pick|select|choose)\s+(?:a\s+)?contact\b"),
        responses=("Opening your contacts.",),
    ),
    IntentRule(
        IntentType.CALL_CONTACT,
        _rx(r"^(?:please\s+)?(?:call|dial|ring)\b", r"\bmake\s+a\s+(?:phone\s+)?call\b", r"\bphone\s+call\b"),
        responses=("Making a call.",),
    ),
    IntentRule(
        IntentType.ITINERARY_CREATE,
        _rx(r"\bitinerary\b"),
        responses=("I'll put an itinerary together for you.",),
    ),
    IntentRule(
        IntentType.TRIP_PLAN,
        _rx(r"\bplan\s+(?:a\s+|my\s+)?(?:\d+[- ]day\s+)?(?:trip|vacation|holiday)\b"),
        responses=("Planning your trip.",),
    ),

    # Apps (dynamic, after every specific "open X" above)
    IntentRule(
        IntentType.APP_CLOSE,
        _rx(rf"^{_POLITE}(?:close|quit|exit|kill|terminate)\s+{_ARTICLES}(?P<app>.+?){_APP_SUFFIX}$"),
        handler="_handle_app_close",
    ),
    IntentRule(
        IntentType.APP_LAUNCH,
        _rx(rf"^{_POLITE}(?:open|launch|start|run)\s+{_ARTICLES}(?P<app>.+?){_APP_SUFFIX}$"),
        handler="_handle_app_launch",
    ),

    # Broad categories last
    IntentRule(
        IntentType.PLAY_MUSIC,
        _rx(r"\bplay\s+(?:some\s+)?(?:music|songs?)\b", r"\bmusic\b", r"\bsongs?\b"),
        responses=("Playing music for you.",),
    ),
    IntentRule(
        IntentType.WIKIPEDIA_QUERY,
        _rx(r"^(?:who\s+(?:is|was)|what\s+(?:is|are)|tell\s+me\s+about|define)\b"),
        responses=("Let me find that information for you.",),
    ),
    IntentRule(
        IntentType.WEB_SEARCH,
        _rx(r"^search\b", r"\bfind\s+information\b", r"\blook\s+for\b", r"\blatest\b"),
        responses=("Searching the web for you.",),
    ),
)


# Prefix -> (candidate intents best first, base confidence)
PREFIX_TABLE: Dict[str, Tuple[Tuple[IntentType, ...], float]] = {
    "play": ((IntentType.PLAY_MUSIC, IntentType.YOUTUBE_PLAY), 0.6),
    "play music": ((IntentType.PLAY_MUSIC,), 0.85),
    "play some music": ((IntentType.PLAY_MUSIC,), 0.85),
    "play song": ((IntentType.PLAY_MUSIC,), 0.8),
    "play video": ((IntentType.YOUTUBE_PLAY,), 0.8),
    "who is": ((IntentType.WIKIPEDIA_QUERY,), 0.8),
    "who was": ((IntentType.WIKIPEDIA_QUERY,), 0.8),
    "what is": ((IntentType.WIKIPEDIA_QUERY, IntentType.QUICK_ANSWER), 0.6),
    "tell me about": ((IntentType.WIKIPEDIA_QUERY,), 0.8),
    "what time": ((IntentType.GET_TIME,), 0.85),
    "what's the time": ((IntentType.GET_TIME,), 0.9),
    "what's the date": ((IntentType.GET_DATE,), 0.9),
    "what day": ((IntentType.GET_DAY, IntentType.GET_DATE), 0.75),
    "weather": ((IntentType.WEATHER_SHOW,), 0.85),
    "what's the weather": ((IntentType.WEATHER_SHOW,), 0.9),
    "how hot": ((IntentType.WEATHER_SHOW,), 0.75),
    "search": ((IntentType.GOOGLE_SEARCH, IntentType.WEB_SEARCH), 0.6),
    "search youtube": ((IntentType.YOUTUBE_SEARCH,), 0.8),
    "google": ((IntentType.GOOGLE_SEARCH,), 0.8),
    "open": ((IntentType.APP_LAUNCH,), 0.6),
    "launch": ((IntentType.APP_LAUNCH,), 0.7),
    "close": ((IntentType.APP_CLOSE,), 0.6),
    "call": ((IntentType.CALL_CONTACT,), 0.7),
    "send": ((IntentType.WHATSAPP_SEND, IntentType.EMAIL_SEND), 0.5),
    "send email": ((IntentType.EMAIL_SEND,), 0.8),
    "send an email": ((IntentType.EMAIL_SEND,), 0.8),
    "send money": ((IntentType.PAYMENT_UPI,), 0.75),
    "pay": ((IntentType.PAYMENT_UPI,), 0.6),
    "remind me": ((IntentType.SET_REMINDER,), 0.85),
    "set an alarm": ((IntentType.SET_ALARM,), 0.85),
    "set alarm": ((IntentType.SET_ALARM,), 0.85),
    "wake me": ((IntentType.SET_ALARM,), 0.8),
    "take a note": ((IntentType.TAKE_NOTE,), 0.85),
    "note down": ((IntentType.TAKE_NOTE,), 0.8),
    "turn on": ((IntentType.DEVICE_CONTROL,), 0.6),
    "turn off": ((IntentType.DEVICE_CONTROL,), 0.6),
    "translate": ((IntentType.TRANSLATE,), 0.85),
    "news": ((IntentType.READ_NEWS,), 0.8),
    "read the news": ((IntentType.READ_NEWS,), 0.85),
    "hello": ((IntentType.GREETING,), 0.75),
    "hi": ((IntentType.GREETING,), 0.7),
    "thank": ((IntentType.THANKS,), 0.75),
    "take a picture": ((IntentType.CAMERA_PHOTO,), 0.85),
    "take a screenshot": ((IntentType.SCREENSHOT,), 0.9),
    "check my email": ((IntentType.GMAIL_CHECK,), 0.85),
    "show my calendar": ((IntentType.CALENDAR_VIEW,), 0.85),
}


class IntentClassifier:
    """
    Pure, synchronous local classifier.

    The random source (spoken reply selection) and the clock (time/date
    handlers) are injectable so results are deterministic under test.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
        knowledge: Optional[OfflineKnowledge] = None,
        rules: Sequence[IntentRule] = INTENT_RULES,
        prefix_table: Optional[Dict[str, Tuple[Tuple[IntentType, ...], float]]] = None,
    ):
        self.rng = rng or random.Random()
        self.clock = clock or datetime.now
        self.knowledge = knowledge if knowledge is not None else OfflineKnowledge()
        self.rules: Tuple[IntentRule, ...] = tuple(rules)
        table = PREFIX_TABLE if prefix_table is None else prefix_table
        # Longest first so the first hit is the longest matching prefix
        self._prefixes: List[Tuple[str, Tuple[IntentType, ...], float]] = sorted(
            ((p, cands, conf) for p, (cands, conf) in table.items()),
            key=lambda item: len(item[0]),
            reverse=True,
        )

    # ------------------------------------------------------------------
    # Full utterances
    # ------------------------------------------------------------------

    def detect_intent(self, text: str) -> Optional[IntentResult]:
        """Classify a complete utterance; None means no local rule matched."""
        if not text or not text.strip():
            return None
        command = text.strip()

        if looks_like_arithmetic(command):
            result = self._detect_arithmetic(command)
            if result is not None:
                return result

        lowered = command.lower()
        for rule in self.rules:
            m = rule.match(lowered)
            if m is None:
                continue
            if rule.handler:
                handler: Handler = getattr(self, rule.handler)
                response, slots = handler(command, m)
                confidence = DYNAMIC_CONFIDENCE
            else:
                response = self.rng.choice(rule.responses) if rule.responses else ""
                slots = {}
                confidence = PATTERN_CONFIDENCE
            return IntentResult(
                type=rule.intent,
                confidence=confidence,
                source_text=text,
                provenance=Provenance.FAST,
                response=response,
                slots=slots,
            )
        return None

    def _detect_arithmetic(self, command: str) -> Optional[IntentResult]:
        try:
            value = evaluate(command)
        except ExpressionError:
            return None
        spoken = format_number(value)
        return IntentResult(
            type=IntentType.GENERAL,
            confidence=ARITHMETIC_CONFIDENCE,
            source_text=command,
            provenance=Provenance.FAST,
            response=f"The answer is {spoken}",
            slots={"expression": command, "result": spoken},
        )

    # ------------------------------------------------------------------
    # Early guesses
    # ------------------------------------------------------------------

    def detect_partial_intent(self, prefix_text: str) -> Optional[IntentResult]:
        """Guess the intent of an incomplete utterance (longest prefix wins)."""
        normalized = normalize_text(prefix_text)
        if not normalized:
            return None
        for prefix, candidates, confidence in self._prefixes:
            if normalized == prefix or normalized.startswith(prefix + " "):
                return IntentResult(
                    type=candidates[0],
                    confidence=confidence,
                    source_text=prefix_text,
                    provenance=Provenance.PARTIAL,
                    slots={"matched_prefix": prefix},
                    alternatives=candidates[1:],
                )
        return None

    # ------------------------------------------------------------------
    # Offline best-effort
    # ------------------------------------------------------------------

    def detect_offline_intent(self, text: str, min_confidence: float = 0.5) -> Optional[IntentResult]:
        """
        Relaxed local match used only when the reasoning service is unavailable.

        Tries the strict table, then the offline fact table, then a partial
        guess accepted at min_confidence or above.
        """
        strict = self.detect_intent(text)
        if strict is not None:
            return strict.with_type(strict.type, provenance=Provenance.OFFLINE)

        answer = self.knowledge.search(text)
        if answer:
            return IntentResult(
                type=IntentType.QUICK_ANSWER,
                confidence=KNOWLEDGE_CONFIDENCE,
                source_text=text,
                provenance=Provenance.OFFLINE,
                response=answer,
            )

        partial = self.detect_partial_intent(text)
        if partial is not None and partial.confidence >= min_confidence:
            return partial.with_type(partial.type, provenance=Provenance.OFFLINE)
        return None

    # ------------------------------------------------------------------
    # Dynamic handlers: (command, match) -> (response, slots)
    # ------------------------------------------------------------------

    def _handle_time(self, command: str, m: "re.Match[str]") -> HandlerResult:
        time_str = self.clock().strftime("%I:%M %p")
        return f"The current time is {time_str}", {"time": time_str}

    def _handle_date(self, command: str, m: "re.Match[str]") -> HandlerResult:
        now = self.clock()
        date_str = f"{now.strftime('%A, %B')} {now.day}, {now.year}"
        return f"Today is {date_str}", {"date": date_str}

    def _handle_day(self, command: str, m: "re.Match[str]") -> HandlerResult:
        day = self.clock().strftime("%A")
        return f"Today is {day}", {"day": day}

    def _handle_month(self, command: str, m: "re.Match[str]") -> HandlerResult:
        month = self.clock().strftime("%B")
        return f"The current month is {month}", {"month": month}

    def _handle_app_launch(self, command: str, m: "re.Match[str]") -> HandlerResult:
        app = normalize_app_name(m.group("app"))
        return f"Opening {app}", {"app_name": app}

    def _handle_app_close(self, command: str, m: "re.Match[str]") -> HandlerResult:
        app = normalize_app_name(m.group("app"))
        return f"Closing {app}", {"app_name": app}

    def _handle_device(self, command: str, m: "re.Match[str]") -> HandlerResult:
        lowered = command.lower()
        dm = re.search(r"\b(?:turn|switch)\s+(on|off)\s+(?:the\s+)?([a-z ]+?)\s*$", lowered)
        if dm:
            action, device = dm.group(1), dm.group(2).strip()
        else:
            action = "on" if " on" in lowered else "off"
            device = "device"
        return f"Turning {action} the {device}", {"action": f"turn {action}", "device": device}

    def _handle_payment(self, command: str, m: "re.Match[str]") -> HandlerResult:
        lowered = command.lower()
        slots: Dict[str, str] = {}
        amount = re.search(r"(\d+(?:\.\d+)?)", lowered)
        if amount:
            slots["amount"] = amount.group(1)
        recipient = re.search(r"\bto\s+([a-z][a-z ]*?)(?:\s+(?:using|via|on|with|through)\b|$)", lowered)
        if recipient:
            slots["recipient"] = recipient.group(1).strip()

        # Work out which rule fired from the pattern that matched
        app = "UPI"
        for rule in self.rules:
            if m.re in rule.patterns:
                app = _PAYMENT_APPS.get(rule.intent, "UPI")
                break
        slots["app"] = app

        response = f"Opening {app}"
        if "amount" in slots:
            response += f" to pay {slots['amount']} rupees"
        if "recipient" in slots:
            response += f" to {slots['recipient'].title()}"
        return response, slots
