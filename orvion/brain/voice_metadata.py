"""
Voice metadata for text-to-speech on the client.

Picks a voice profile from the utterance's script (Devanagari -> Hindi or
Marathi, else English) and softens or formalizes the tone by intent.
"""

import re
from typing import Any, Dict

from orvion.core.intents import IntentType

_DEVANAGARI_RE = re.compile(r"[\u0900-\u097F]")
# Common Marathi words that Hindi does not use
_MARATHI_MARKERS = ("आहे", "काय", "आणि", "नाही")

VOICE_PROFILES: Dict[str, Dict[str, Any]] = {
    "en": {
        "name": "us_male",
        "lang": "en-US",
        "gender": "male",
        "emotion": "soft_warm",
        "tone": "friendly",
        "speed": 0.95,
        "pitch": "natural",
    },
    "hi": {
        "name": "indian_male_hindi",
        "lang": "hi-IN",
        "gender": "male",
        "emotion": "warm",
        "tone": "friendly",
        "speed": 0.90,
        "pitch": "natural",
    },
    "mr": {
        "name": "indian_male_marathi",
        "lang": "mr-IN",
        "gender": "male",
        "emotion": "warm",
        "tone": "conversational",
        "speed": 0.92,
        "pitch": "natural",
    },
}


def detect_language(text: str) -> str:
    if not text or not _DEVANAGARI_RE.search(text):
        return "en"
    if any(marker in text for marker in _MARATHI_MARKERS):
        return "mr"
    return "hi"


def voice_metadata(intent_type: IntentType, text: str) -> Dict[str, Any]:
    language = detect_language(text)
    # Copy: profiles are shared module state
    profile = dict(VOICE_PROFILES.get(language, VOICE_PROFILES["en"]))

    if intent_type is IntentType.ERROR:
        profile["emotion"] = "apologetic"
        profile["tone"] = "soft"
    elif "search" in intent_type.value or "wikipedia" in intent_type.value:
        profile["emotion"] = "informative"
        profile["tone"] = "professional"

    return {"language": language, **profile}
