"""orvion.telemetry.diagnostics

Structured diagnostic record for every handled utterance.

Records are kept in a bounded ring buffer (oldest evicted first) for
offline inspection: filtering, summary statistics and JSON export.

HARD RULES:
- Logs only; recording never changes the reply
- Safe to call from any session thread
"""

from __future__ import annotations

import json
import threading
import time
from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from orvion.core.config import Config
from orvion.core.logger import get_logger


@dataclass
class DiagnosticRecord:
    """
    One handled utterance.

    Fields:
        session_id: Dialog session the utterance belonged to
        transcript: The utterance text (truncated)
        intent: Resolved intent value ("unknown" if none)
        confidence: Final confidence
        slots: Extracted parameters
        latencies_ms: checkpoint -> ms since request start
        errors: Error descriptions; empty when the request was clean
        needs_clarification: Whether a clarification dialog was opened
        provenance: fast / partial / remote / offline / cache / dialog
        timestamp: Unix time the record was made
    """
    session_id: str
    transcript: str
    intent: str = "unknown"
    confidence: float = 0.0
    slots: Dict[str, Any] = field(default_factory=dict)
    latencies_ms: Dict[str, int] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    needs_clarification: bool = False
    provenance: str = ""
    timestamp: float = field(default_factory=time.time)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp_iso"] = datetime.fromtimestamp(self.timestamp).isoformat()
        return data

    def to_log_line(self) -> str:
        parts = [
            f"intent={self.intent}",
            f"conf={self.confidence:.2f}",
            f"via={self.provenance or '-'}",
        ]
        total = self.latencies_ms.get("complete")
        if total is not None:
            parts.append(f"total_ms={total}")
        if self.needs_clarification:
            parts.append("clarify=1")
        if self.errors:
            parts.append(f"errors={len(self.errors)}")
        return " ".join(parts)


class DiagnosticRecorder:
    """Bounded, lock-guarded ring buffer of DiagnosticRecord."""

    def __init__(self, max_records: Optional[int] = None):
        self.max_records = max_records or Config.DIAGNOSTIC_MAX_RECORDS
        self._lock = threading.Lock()
        self._records: Deque[DiagnosticRecord] = deque(maxlen=self.max_records)

    def record(self, entry: DiagnosticRecord) -> DiagnosticRecord:
        entry.transcript = (entry.transcript or "")[:200]
        with self._lock:
            self._records.append(entry)
        get_logger().debug(f"[DIAG] {entry.to_log_line()}")
        return entry

    def recent(self, limit: int = 10) -> List[DiagnosticRecord]:
        """Newest first."""
        with self._lock:
            items = list(self._records)
        return list(reversed(items[-limit:])) if limit > 0 else []

    def find(
        self,
        intent: Optional[str] = None,
        min_confidence: Optional[float] = None,
        max_confidence: Optional[float] = None,
        has_errors: Optional[bool] = None,
        needs_clarification: Optional[bool] = None,
        exceeds_latency_ms: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> List[DiagnosticRecord]:
        """Records matching every given criterion, oldest first."""
        with self._lock:
            items = list(self._records)
        matches = []
        for rec in items:
            if intent is not None and rec.intent != intent:
                continue
            if session_id is not None and rec.session_id != session_id:
                continue
            if min_confidence is not None and rec.confidence < min_confidence:
                continue
            if max_confidence is not None and rec.confidence > max_confidence:
                continue
            if has_errors is not None and rec.has_errors != has_errors:
                continue
            if needs_clarification is not None and rec.needs_clarification != needs_clarification:
                continue
            if exceeds_latency_ms is not None and rec.latencies_ms.get("complete", 0) <= exceeds_latency_ms:
                continue
            matches.append(rec)
        return matches

    def summary(self, window: int = 100, top: int = 5) -> Dict[str, Any]:
        """
        Statistics over the last `window` records.

        Returns:
            Dictionary with total/recent counts, error_rate,
            clarification_rate, average_confidence and top_intents
            (list of {intent, count, percentage}).
        """
        with self._lock:
            total = len(self._records)
            recent = list(self._records)[-window:]
        n = len(recent)
        counts = Counter(rec.intent for rec in recent)
        return {
            "total_interactions": total,
            "recent_interactions": n,
            "error_rate": (sum(1 for r in recent if r.has_errors) / n) if n else 0.0,
            "clarification_rate": (sum(1 for r in recent if r.needs_clarification) / n) if n else 0.0,
            "average_confidence": (sum(r.confidence for r in recent) / n) if n else 0.0,
            "top_intents": [
                {"intent": name, "count": count, "percentage": round(count / n * 100, 1)}
                for name, count in counts.most_common(top)
            ],
            "timestamp": datetime.now().isoformat(),
        }

    def export(self) -> Dict[str, Any]:
        with self._lock:
            records = [rec.to_dict() for rec in self._records]
        return {
            "records": records,
            "summary": self.summary(),
            "exported_at": datetime.now().isoformat(),
        }

    def export_json(self, indent: int = 2) -> str:
        return json.dumps(self.export(), indent=indent, default=str)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
        get_logger().info("[DIAG] all records cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
