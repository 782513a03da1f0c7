"""
Conversation store for Orvion.

RAM-only, per-user append log of recent messages, used to give the
reasoning service context for follow-up questions ("what about his
childhood?"). Keeps the last N messages per user; never written to disk.
"""

import time
from threading import RLock
from typing import Any, Dict, List, Literal, Optional, TypedDict

from orvion.core.config import Config
from orvion.core.logger import get_logger

Role = Literal["user", "assistant"]

ENTITY_KINDS = ("people", "places", "topics", "dates")


class Message(TypedDict):
    """
    One stored message.

    Attributes:
        role: "user" or "assistant"
        content: Message text
        timestamp: Unix time the message was added
        metadata: Free-form extras; "entities" maps kind -> list of names
    """
    role: Role
    content: str
    timestamp: float
    metadata: Dict[str, Any]


def extract_entities(messages: List[Message]) -> Dict[str, List[str]]:
    """Merge entities recorded on messages, de-duplicated in first-seen order."""
    merged: Dict[str, List[str]] = {kind: [] for kind in ENTITY_KINDS}
    for msg in messages:
        entities = (msg.get("metadata") or {}).get("entities") or {}
        for kind in ENTITY_KINDS:
            for name in entities.get(kind, []) or []:
                if name and name not in merged[kind]:
                    merged[kind].append(name)
    return merged


def format_context(messages: List[Message], assistant_name: str = "Assistant") -> str:
    """Render messages as "User: ... / <assistant>: ..." lines for a prompt."""
    lines = []
    for msg in messages:
        speaker = "User" if msg["role"] == "user" else assistant_name
        content = msg["content"]
        if len(content) > 200:
            content = content[:200] + "..."
        lines.append(f"{speaker}: {content}")
    return "\n".join(lines)


class ConversationStore:
    """
    Per-user conversation log with bounded length.

    Thread-safe: session threads for different users (and the same user on
    two devices) may append concurrently.
    """

    def __init__(self, max_messages: Optional[int] = None):
        self._lock = RLock()
        self._max_messages = max_messages or Config.CONVERSATION_MAX_MESSAGES
        self._messages: Dict[str, List[Message]] = {}
        self._context: Dict[str, Dict[str, Any]] = {}

    def add_message(
        self,
        user_id: str,
        role: Role,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        message: Message = {
            "role": role,
            "content": (content or "").strip(),
            "timestamp": time.time(),
            "metadata": dict(metadata or {}),
        }
        with self._lock:
            log = self._messages.setdefault(user_id, [])
            log.append(message)
            if len(log) > self._max_messages:
                del log[:-self._max_messages]

    def get_context(self, user_id: str, limit: Optional[int] = None) -> Dict[str, Any]:
        """
        Recent messages plus derived context for a user.

        Returns:
            Dictionary with:
                - messages: last `limit` messages (oldest first)
                - context_string: the same messages rendered as prompt lines
                - entities: merged entities from those messages
                - context: values stored through update_context()
                - message_count: total messages held for the user
        """
        limit = Config.CONTEXT_MESSAGES if limit is None else limit
        with self._lock:
            log = self._messages.get(user_id, [])
            recent = list(log[-limit:]) if limit > 0 else []
            return {
                "messages": recent,
                "context_string": format_context(recent, Config.ASSISTANT_NAME),
                "entities": extract_entities(recent),
                "context": dict(self._context.get(user_id, {})),
                "message_count": len(log),
            }

    def update_context(self, user_id: str, entities: Dict[str, Any]) -> Dict[str, Any]:
        """Merge values into the user's stored context; returns the result."""
        with self._lock:
            context = self._context.setdefault(user_id, {})
            context.update(entities or {})
            merged = dict(context)
        get_logger().debug(f"[MEMORY] context updated user={user_id} keys={sorted(merged)}")
        return merged

    def clear(self, user_id: str) -> None:
        with self._lock:
            self._messages.pop(user_id, None)
            self._context.pop(user_id, None)

    def message_count(self, user_id: str) -> int:
        with self._lock:
            return len(self._messages.get(user_id, []))
