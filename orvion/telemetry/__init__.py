"""orvion.telemetry

Latency checkpoints/budgets and the rolling diagnostic log.
"""

from orvion.telemetry.diagnostics import DiagnosticRecord, DiagnosticRecorder
from orvion.telemetry.latency_tracker import LATENCY_BUDGETS_MS, LatencyTracker

__all__ = [
    "DiagnosticRecord",
    "DiagnosticRecorder",
    "LATENCY_BUDGETS_MS",
    "LatencyTracker",
]
