"""
Error taxonomy for the command pipeline.

Only ConfigurationError is fatal (raised at startup). Everything else is
recovered inside the pipeline: RemoteServiceFailure and MalformedResponse are
caught at the orchestrator boundary, ClassificationMiss and CacheMiss are
informational signals rather than failures.
"""
from typing import Optional


class OrvionError(Exception):
    """Base class for all Orvion errors."""


class ConfigurationError(OrvionError):
    """Startup-time misconfiguration (missing endpoint or credentials)."""


class ClassificationMiss(OrvionError):
    """No local pattern matched; triggers the slow/offline path."""


class CacheMiss(OrvionError):
    """Query not cached or expired."""


class RemoteServiceFailure(OrvionError):
    """Timeout, non-success status or abort from the reasoning service."""

    def __init__(self, message: str, *, status: Optional[int] = None, cancelled: bool = False):
        super().__init__(message)
        self.status = status
        self.cancelled = cancelled


class MalformedResponse(OrvionError):
    """Structured reply from the reasoning service could not be parsed."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class ConfirmationExpired(OrvionError):
    """A pending safety confirmation outlived its window."""


class DisambiguationExhausted(OrvionError):
    """Clarification failed after the maximum number of rounds."""
