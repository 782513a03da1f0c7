"""
Parsing of reasoning-service replies into IntentResult.

Voice-mode replies should be a single JSON object, but models wrap it in
code fences, double the braces, or answer in plain prose. Plain prose is a
valid GENERAL answer; JSON that cannot be read raises MalformedResponse.
"""
import json
import re
from typing import Any, Dict, Optional, Tuple

from orvion.core.errors import MalformedResponse
from orvion.core.intents import IntentResult, IntentType, Provenance
from orvion.core.logger import get_logger

# Confidence assumed when the service omits one
REMOTE_DEFAULT_CONFIDENCE = 0.9

# Legacy string markers seen in older replies
CONFIDENCE_MARKERS = {"high": 1.0, "medium": 0.7, "low": 0.4}

MALFORMED_REPLY = "I apologize, I had trouble understanding that. Could you please rephrase?"

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def extract_json_block(text: str) -> Optional[str]:
    """Return the JSON object text inside a reply, or None if it has none."""
    if not text:
        return None
    fenced = _FENCE_RE.search(text)
    candidate = fenced.group(1) if fenced else text
    match = _OBJECT_RE.search(candidate)
    if not match:
        return None
    block = match.group(0).strip()
    # Some models double the braces: {{ ... }}
    if block.startswith("{{") and block.endswith("}}"):
        block = block[1:-1].strip()
    return block


def parse_confidence(value: Any, default: float = REMOTE_DEFAULT_CONFIDENCE) -> float:
    """Numeric confidence from a reply field; string markers are mapped and logged."""
    if value is None:
        return default
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        marker = value.strip().lower()
        if marker in CONFIDENCE_MARKERS:
            get_logger().warning(f"[REMOTE] legacy confidence marker '{marker}' mapped to {CONFIDENCE_MARKERS[marker]}")
            return CONFIDENCE_MARKERS[marker]
        try:
            return float(marker)
        except ValueError:
            return default
    return default


def _decode(block: str, raw: str) -> Dict[str, Any]:
    try:
        data = json.loads(block)
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"reply JSON could not be decoded: {e}", raw_text=raw) from e
    if not isinstance(data, dict):
        raise MalformedResponse("reply JSON is not an object", raw_text=raw)
    return data


def _resolve_type(value: Any) -> Tuple[IntentType, Optional[str]]:
    intent_type = IntentType.parse(value)
    if intent_type is None or intent_type is IntentType.ERROR:
        return IntentType.GENERAL, (str(value) if value else None)
    return intent_type, None


def parse_reasoning_reply(raw: str, source_text: str) -> IntentResult:
    """
    Turn a raw reply into a REMOTE IntentResult.

    Raises:
        MalformedResponse: the reply carries a JSON object that is unreadable
            or lacks both "type" and "response"
    """
    text = (raw or "").strip()
    block = extract_json_block(text)
    if block is None:
        # Free text answer (chat mode, or a model ignoring the format)
        return IntentResult(
            type=IntentType.GENERAL,
            confidence=REMOTE_DEFAULT_CONFIDENCE,
            source_text=source_text,
            provenance=Provenance.REMOTE,
            response=text,
        )

    data = _decode(block, raw)
    if "type" not in data and "response" not in data:
        raise MalformedResponse("reply JSON has neither 'type' nor 'response'", raw_text=raw)

    intent_type, unknown = _resolve_type(data.get("type"))
    slots: Dict[str, Any] = {}
    user_input = data.get("userInput")
    if isinstance(user_input, str) and user_input.strip():
        slots["query"] = user_input.strip()
    extra = data.get("slots")
    if isinstance(extra, dict):
        slots.update(extra)
    if unknown:
        slots["raw_type"] = unknown

    alternatives = []
    for alt in data.get("alternatives") or []:
        alt_type = IntentType.parse(alt)
        if alt_type is not None and alt_type is not intent_type and alt_type not in alternatives:
            alternatives.append(alt_type)

    return IntentResult(
        type=intent_type,
        confidence=parse_confidence(data.get("confidence")),
        source_text=source_text,
        provenance=Provenance.REMOTE,
        response=str(data.get("response") or "").strip(),
        slots=slots,
        alternatives=tuple(alternatives),
    )


def malformed_fallback(source_text: str) -> IntentResult:
    """Plain-text GENERAL result used when a reply could not be parsed."""
    return IntentResult(
        type=IntentType.GENERAL,
        confidence=REMOTE_DEFAULT_CONFIDENCE,
        source_text=source_text,
        provenance=Provenance.REMOTE,
        response=MALFORMED_REPLY,
        slots={"malformed": True},
    )
