"""
Response cache for Orvion.

Bounded LRU cache from (user, normalized query) to a previously produced
reply payload. Entries expire after a TTL; expired entries are removed on
read and by a periodic sweep (see orvion.core.scheduler).
"""
import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from orvion.core.config import Config
from orvion.core.intents import IntentType
from orvion.core.logger import get_logger

# Answers that go stale within seconds or minutes
NO_CACHE_INTENTS = frozenset({
    IntentType.GET_TIME,
    IntentType.GET_DATE,
    IntentType.GET_DAY,
    IntentType.GET_MONTH,
    IntentType.WEATHER_SHOW,
    IntentType.READ_NEWS,
    IntentType.GMAIL_CHECK,
    IntentType.GMAIL_READ,
    IntentType.CALENDAR_TODAY,
})

DEFAULT_USER = "default"


def normalize(query: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace."""
    text = (query or "").lower().strip()
    text = re.sub(r"[^\w\s]", "", text)
    return re.sub(r"\s+", " ", text).strip()


def cache_key(query: str, user_id: str = DEFAULT_USER) -> str:
    return f"{user_id}:{normalize(query)}"


@dataclass
class CacheEntry:
    key: str
    payload: Any
    created_at: float
    last_accessed_at: float
    ttl: float
    query: str = ""

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


class ResponseCache:
    """Thread-safe LRU + TTL cache. Shared by all sessions."""

    def __init__(
        self,
        max_size: Optional[int] = None,
        ttl_sec: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.max_size = max(1, Config.CACHE_MAX_SIZE if max_size is None else max_size)
        self.ttl_sec = Config.CACHE_TTL_SEC if ttl_sec is None else ttl_sec
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._evictions = 0

    def should_cache(self, query: str, intent_type: Optional[IntentType] = None) -> bool:
        """False for very short queries and time-sensitive intents."""
        if len((query or "").strip()) < Config.CACHE_MIN_QUERY_CHARS:
            return False
        if intent_type in NO_CACHE_INTENTS:
            return False
        return True

    def get(self, query: str, user_id: str = DEFAULT_USER) -> Optional[Any]:
        """Payload for a fresh entry (promoted to most recently used), else None."""
        key = cache_key(query, user_id)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(now):
                del self._entries[key]
                self._misses += 1
                self._evictions += 1
                return None
            entry.last_accessed_at = now
            self._entries.move_to_end(key)
            self._hits += 1
            payload = entry.payload
        get_logger().debug(f"[CACHE] hit key='{key}'")
        return payload

    def set(self, query: str, payload: Any, user_id: str = DEFAULT_USER) -> None:
        key = cache_key(query, user_id)
        now = self._clock()
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            while len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
                self._evictions += 1
            self._entries[key] = CacheEntry(
                key=key,
                payload=payload,
                created_at=now,
                last_accessed_at=now,
                ttl=self.ttl_sec,
                query=query,
            )
            self._sets += 1
            size = len(self._entries)
        get_logger().debug(f"[CACHE] set key='{key}' size={size}/{self.max_size}")

    def has(self, query: str, user_id: str = DEFAULT_USER) -> bool:
        key = cache_key(query, user_id)
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def delete(self, query: str, user_id: str = DEFAULT_USER) -> bool:
        with self._lock:
            return self._entries.pop(cache_key(query, user_id), None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        get_logger().info("[CACHE] cleared")

    def clear_expired(self) -> int:
        """Remove every TTL-expired entry; returns how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in stale:
                del self._entries[key]
            self._evictions += len(stale)
        if stale:
            get_logger().debug(f"[CACHE] swept expired={len(stale)}")
        return len(stale)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "sets": self._sets,
                "evictions": self._evictions,
                "size": len(self._entries),
                "max_size": self.max_size,
                "hit_rate": round(self._hits / lookups * 100, 2) if lookups else 0.0,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
