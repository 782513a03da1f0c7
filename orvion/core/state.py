"""
Session state for Orvion.
Defines the per-conversation dialog state and the registry of live sessions.
"""
from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class DialogState(Enum):
    """Dialog state machine states"""
    IDLE = "IDLE"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    AWAITING_CLARIFICATION = "AWAITING_CLARIFICATION"


@dataclass
class Session:
    """One active conversation context, owned by a user"""
    id: str
    user_id: str
    user_name: str = ""
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)

    def touch(self) -> None:
        """Mark the session as used now"""
        self.last_activity = time.time()

    def get_age_seconds(self) -> float:
        """Seconds since the session was created"""
        return time.time() - self.created_at


class SessionRegistry:
    """Thread-safe registry of live sessions"""

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}

    def open_session(self, user_id: str, user_name: str = "", session_id: Optional[str] = None) -> Session:
        """Create (or return the existing) session for an id"""
        sid = session_id or f"sess_{uuid.uuid4().hex[:12]}"
        with self._lock:
            existing = self._sessions.get(sid)
            if existing is not None:
                return existing
            session = Session(id=sid, user_id=user_id, user_name=user_name)
            self._sessions[sid] = session
            return session

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def end_session(self, session_id: str) -> Optional[Session]:
        """Destroy a session on logout/expiry"""
        with self._lock:
            return self._sessions.pop(session_id, None)

    def sessions_for(self, user_id: str) -> List[Session]:
        with self._lock:
            return [s for s in self._sessions.values() if s.user_id == user_id]

    def expire_idle(self, max_idle_sec: float, now: Optional[float] = None) -> List[str]:
        """Remove sessions idle for longer than max_idle_sec; returns their ids"""
        now = time.time() if now is None else now
        with self._lock:
            stale = [sid for sid, s in self._sessions.items() if now - s.last_activity > max_idle_sec]
            for sid in stale:
                del self._sessions[sid]
        return stale

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
