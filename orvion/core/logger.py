"""
Console logging for Orvion.

Lines look like:
    [2024-03-15 14:05:00.123] INFO     OrvionSession-sess_1a2b  [ORCH] fast path get-time conf=0.95

Every message carries a bracketed subsystem tag ([ORCH], [CACHE], [CONFIRM],
[CLARIFY], [STREAM], [REMOTE], [LATENCY], [DIAG], [SWEEP], [PARTIAL]).
Quiet mode drops the high-volume tags so a session transcript stays readable.
"""
import re
import threading
from datetime import datetime
from typing import Dict, Optional, Tuple

from rich.console import Console

from orvion.core.config import Config

# level -> (priority, rich style)
LEVELS: Dict[str, Tuple[int, str]] = {
    "DEBUG": (10, "dim cyan"),
    "INFO": (20, "green"),
    "WARNING": (30, "yellow"),
    "ERROR": (40, "red"),
    "CRITICAL": (50, "bold red"),
}

# Tags hidden in quiet mode
QUIET_TAGS = ("SWEEP", "CACHE", "LATENCY", "PARTIAL", "DIAG")
_QUIET_RE = re.compile(
    r"\[(?:" + "|".join(QUIET_TAGS) + r")\]|\[STREAM\] (?:token|start|end)",
    re.IGNORECASE,
)


class Logger:
    """Leveled logger printing through a rich Console; safe to share across threads."""

    def __init__(self, level: str = "INFO", quiet_mode: bool = False, console: Optional[Console] = None):
        self.level = level
        self.quiet_mode = quiet_mode
        self.console = console or Console(stderr=True)
        self._lock = threading.Lock()

    @property
    def level(self) -> str:
        return self._level

    @level.setter
    def level(self, value: str) -> None:
        name = (value or "INFO").upper()
        self._level = name if name in LEVELS else "INFO"
        self._threshold = LEVELS[self._level][0]

    def is_enabled(self, level: str) -> bool:
        return LEVELS.get(level, LEVELS["INFO"])[0] >= self._threshold

    def log(self, level: str, message: str) -> None:
        if not self.is_enabled(level):
            return
        if self.quiet_mode and _QUIET_RE.search(message):
            return

        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        thread = threading.current_thread().name
        line = f"[{stamp}] {level:<8} {thread:<24} {message}"
        style = LEVELS.get(level, LEVELS["INFO"])[1]
        with self._lock:
            # markup off: messages contain literal [TAGS]
            self.console.print(line, style=style, markup=False, highlight=False)

    def debug(self, message: str) -> None:
        self.log("DEBUG", message)

    def info(self, message: str) -> None:
        self.log("INFO", message)

    def warning(self, message: str) -> None:
        self.log("WARNING", message)

    def error(self, message: str) -> None:
        self.log("ERROR", message)

    def critical(self, message: str) -> None:
        self.log("CRITICAL", message)


_logger: Optional[Logger] = None
_logger_lock = threading.Lock()


def init_logger(level: str = "INFO", quiet_mode: bool = False) -> Logger:
    """Replace the process-wide logger (call once at startup, before session threads)."""
    global _logger
    with _logger_lock:
        _logger = Logger(level, quiet_mode=quiet_mode)
        return _logger


def get_logger() -> Logger:
    """Process-wide logger; built from Config on first use if init_logger() was not called."""
    global _logger
    with _logger_lock:
        if _logger is None:
            _logger = Logger(Config.LOG_LEVEL, quiet_mode=Config.QUIET_MODE)
        return _logger
