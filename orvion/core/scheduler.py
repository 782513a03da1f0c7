"""
Background sweep scheduler.

One daemon thread runs registered periodic jobs (cache TTL sweep,
confirmation expiry, idle clarification cleanup, latency session cleanup).
Jobs can also be driven by hand with tick(now) in tests.
"""
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from orvion.core.logger import get_logger


@dataclass
class SweepJob:
    name: str
    interval_sec: float
    func: Callable[[], object]
    next_run: float = 0.0
    runs: int = 0
    failures: int = 0


class SweepScheduler:
    """Runs periodic jobs on a single daemon thread; stop() joins cleanly."""

    def __init__(self, resolution_sec: float = 0.5, clock: Callable[[], float] = time.monotonic):
        self._resolution = resolution_sec
        self._clock = clock
        self._lock = threading.Lock()
        self._jobs: Dict[str, SweepJob] = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._running = False

    def register(self, name: str, interval_sec: float, func: Callable[[], object]) -> SweepJob:
        """Add (or replace) a job; its first run is one interval from now."""
        if interval_sec <= 0:
            raise ValueError(f"interval for {name} must be positive")
        job = SweepJob(name=name, interval_sec=interval_sec, func=func, next_run=self._clock() + interval_sec)
        with self._lock:
            self._jobs[name] = job
        return job

    def unregister(self, name: str) -> bool:
        with self._lock:
            return self._jobs.pop(name, None) is not None

    def jobs(self) -> List[SweepJob]:
        with self._lock:
            return list(self._jobs.values())

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._stop_event.clear()

        self._thread = threading.Thread(
            target=self._run_loop,
            name="OrvionSweepScheduler",
            daemon=True,
        )
        self._thread.start()
        get_logger().info(f"[SWEEP] scheduler started jobs={len(self.jobs())}")

    def stop(self, timeout: float = 2.0) -> None:
        with self._lock:
            self._running = False
        self._stop_event.set()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None
        get_logger().info("[SWEEP] scheduler stopped")

    def _run_loop(self) -> None:
        while not self._stop_event.wait(self._resolution):
            self.tick()

    def tick(self, now: Optional[float] = None) -> List[str]:
        """Run every job that is due; returns the names that ran."""
        now = self._clock() if now is None else now
        with self._lock:
            due = [job for job in self._jobs.values() if job.next_run <= now]
            for job in due:
                job.next_run = now + job.interval_sec

        ran = []
        for job in due:
            try:
                result = job.func()
                job.runs += 1
                ran.append(job.name)
                get_logger().debug(f"[SWEEP] {job.name} -> {result}")
            except Exception as e:
                job.failures += 1
                get_logger().error(f"[SWEEP] {job.name} failed: {e}")
        return ran
