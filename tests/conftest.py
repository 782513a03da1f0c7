"""
Shared test helpers: a settable clock and a recording event sink.
"""

import threading

import pytest

from orvion.core.logger import init_logger


class FakeClock:
    """Callable clock whose time only moves when told to."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class EventRecorder:
    """EventSink that keeps every (event, payload) it receives."""

    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def __call__(self, event, payload):
        with self._lock:
            self.events.append((event, dict(payload)))

    def names(self):
        with self._lock:
            return [name for name, _ in self.events]

    def payloads(self, name):
        with self._lock:
            return [payload for event, payload in self.events if event == name]

    def side_events(self, kind):
        return [p for p in self.payloads("stream-event") if p.get("type") == kind]

    def text(self):
        return "".join(p["content"] for p in self.payloads("stream-token"))


@pytest.fixture(autouse=True, scope="session")
def quiet_logger():
    """Keep test output readable."""
    init_logger("WARNING", quiet_mode=True)
    yield


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recorder():
    return EventRecorder()
