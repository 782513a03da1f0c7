"""
Per-request latency checkpoints and budget checks.

Each tracked request records named checkpoints relative to its start.
Budgets are observational: a miss is logged and reported, never enforced.

Checkpoints:
    transcript-ready    -> budget 200ms
    intent-resolved     -> budget 250ms
    generation-started  -> (no budget)
    first-token         -> budget 400ms
    complete            -> end to end, budget 1000ms
"""
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional
from collections import deque

from orvion.core.config import Config
from orvion.core.logger import get_logger

TRANSCRIPT_READY = "transcript-ready"
INTENT_RESOLVED = "intent-resolved"
GENERATION_STARTED = "generation-started"
FIRST_TOKEN = "first-token"
COMPLETE = "complete"

CHECKPOINTS = (TRANSCRIPT_READY, INTENT_RESOLVED, GENERATION_STARTED, FIRST_TOKEN, COMPLETE)

# checkpoint -> budget in ms (measured from request start)
LATENCY_BUDGETS_MS: Dict[str, int] = {
    TRANSCRIPT_READY: 200,
    INTENT_RESOLVED: 250,
    FIRST_TOKEN: 400,
    COMPLETE: 1000,
}


@dataclass
class LatencySession:
    session_id: str
    started_at: float
    checkpoints: Dict[str, float] = field(default_factory=dict)
    latencies_ms: Dict[str, int] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    completed: bool = False


def _percentile(sorted_values: List[int], fraction: float) -> int:
    index = min(len(sorted_values) - 1, int(len(sorted_values) * fraction))
    return sorted_values[index]


def summarize(values: List[int]) -> Dict[str, int]:
    """avg/min/max/p50/p95/p99 over a sample (zeros when empty)."""
    if not values:
        return {"avg": 0, "min": 0, "max": 0, "p50": 0, "p95": 0, "p99": 0}
    ordered = sorted(values)
    return {
        "avg": round(sum(ordered) / len(ordered)),
        "min": ordered[0],
        "max": ordered[-1],
        "p50": _percentile(ordered, 0.50),
        "p95": _percentile(ordered, 0.95),
        "p99": _percentile(ordered, 0.99),
    }


class LatencyTracker:
    """Thread-safe latency bookkeeping shared by all session threads."""

    def __init__(
        self,
        history_size: Optional[int] = None,
        keep_sessions: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.history_size = history_size or Config.LATENCY_HISTORY_SIZE
        self.keep_sessions = keep_sessions or Config.LATENCY_KEEP_SESSIONS
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: Dict[str, LatencySession] = {}
        self._history: Dict[str, Deque[int]] = {
            name: deque(maxlen=self.history_size) for name in CHECKPOINTS
        }

    def start_session(self, session_id: str) -> LatencySession:
        session = LatencySession(session_id=session_id, started_at=self._clock())
        with self._lock:
            self._sessions[session_id] = session
        return session

    def record(self, session_id: str, checkpoint: str, **metadata: Any) -> Optional[int]:
        """
        Record a checkpoint; returns ms since the session started, or None if
        the session is unknown. An "error" metadata value is appended to the
        session's error list; other metadata is stored as-is.
        """
        now = self._clock()
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            session.checkpoints[checkpoint] = now
            latency = round((now - session.started_at) * 1000)
            session.latencies_ms[checkpoint] = latency
            error = metadata.pop("error", None)
            if error:
                session.errors.append(str(error))
            session.metadata.update(metadata)
        get_logger().debug(f"[LATENCY] {session_id} {checkpoint}={latency}ms")
        return latency

    def complete_session(self, session_id: str) -> Optional[LatencySession]:
        """Close a session and fold its latencies into the rolling history."""
        now = self._clock()
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if COMPLETE not in session.latencies_ms:
                session.checkpoints[COMPLETE] = now
                session.latencies_ms[COMPLETE] = round((now - session.started_at) * 1000)
            if not session.completed:
                session.completed = True
                for name, value in session.latencies_ms.items():
                    if name in self._history:
                        self._history[name].append(value)
        return session

    def get_session(self, session_id: str) -> Optional[LatencySession]:
        with self._lock:
            return self._sessions.get(session_id)

    def check_targets(self, session_id: str) -> Optional[Dict[str, Any]]:
        """
        Compare a session's checkpoints against the budgets.

        Returns:
            None for an unknown session, else a dictionary with:
                - all_targets_met (bool)
                - results: checkpoint -> {target, actual, met, delta}
                - warnings: one human readable line per missed budget
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            measured = dict(session.latencies_ms)

        results: Dict[str, Dict[str, Any]] = {}
        for checkpoint, target in LATENCY_BUDGETS_MS.items():
            actual = measured.get(checkpoint)
            if actual is None:
                continue
            results[checkpoint] = {
                "target": target,
                "actual": actual,
                "met": actual <= target,
                "delta": actual - target,
            }
        warnings = [
            f"{name}: {r['actual']}ms exceeds {r['target']}ms by {r['delta']}ms"
            for name, r in results.items() if not r["met"]
        ]
        if warnings:
            get_logger().debug(f"[LATENCY] {session_id} budget misses: {'; '.join(warnings)}")
        return {
            "session_id": session_id,
            "all_targets_met": not warnings,
            "results": results,
            "warnings": warnings,
        }

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            snapshot = {name: list(values) for name, values in self._history.items()}
        result: Dict[str, Any] = {name: summarize(values) for name, values in snapshot.items()}
        result["sample_size"] = len(snapshot[COMPLETE])
        return result

    def cleanup(self, keep: Optional[int] = None) -> int:
        """Keep only the newest `keep` sessions; returns how many were dropped."""
        keep = self.keep_sessions if keep is None else keep
        with self._lock:
            if len(self._sessions) <= keep:
                return 0
            newest_first = sorted(self._sessions.values(), key=lambda s: s.started_at, reverse=True)
            dropped = newest_first[keep:]
            for session in dropped:
                del self._sessions[session.session_id]
        get_logger().debug(f"[LATENCY] cleaned up {len(dropped)} old sessions")
        return len(dropped)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
