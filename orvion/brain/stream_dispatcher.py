"""
Cancellable, ordered token streams, one live stream per user.

Lifecycle of one stream (strict order, enforced per stream):
    stream-start
    stream-token*            final=True exactly once, on the last token
    stream-event*            side-channel metadata, only before the terminal
    stream-end | stream-error | stream-cancelled    exactly one terminal

Starting a stream for a user cancels that user's previous stream: it flips
active=False, emits a single stream-cancelled and sets its cancel_event so
any producer waiting on a remote call for it stops too.

Events go to an EventSink: any callable (event_name, payload). A sink may call
back into the dispatcher from the delivering thread (cancel_user on an inbound
cancel, for instance); the nested terminal lands after the event being delivered.
"""

import itertools
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from orvion.core.config import Config
from orvion.core.logger import get_logger

EventSink = Callable[[str, Dict[str, Any]], None]

STREAM_START = "stream-start"
STREAM_TOKEN = "stream-token"
STREAM_EVENT = "stream-event"
STREAM_END = "stream-end"
STREAM_ERROR = "stream-error"
STREAM_CANCELLED = "stream-cancelled"

TERMINAL_EVENTS = frozenset({STREAM_END, STREAM_ERROR, STREAM_CANCELLED})

_stream_counter = itertools.count(1)


def _timestamp() -> str:
    return datetime.now().isoformat(timespec="milliseconds")


def split_batches(text: str, batch_size: int) -> List[str]:
    """
    Split text into word batches. Every batch but the last keeps a trailing
    space so the concatenated contents equal the space-joined words.
    """
    words = text.split()
    if not words:
        return []
    size = max(1, batch_size)
    batches = []
    for i in range(0, len(words), size):
        chunk = " ".join(words[i:i + size])
        if i + size < len(words):
            chunk += " "
        batches.append(chunk)
    return batches


@dataclass
class StreamSession:
    """One stream for one user message."""
    stream_id: str
    user_id: str
    message_id: str
    sink: EventSink
    started_at: float = field(default_factory=time.time)
    cancel_event: threading.Event = field(default_factory=threading.Event)
    active: bool = True
    terminal_event: Optional[str] = None
    final_sent: bool = False
    tokens_sent: int = 0
    # Reentrant: a sink may cancel the stream it is being called for
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def finished(self) -> bool:
        return self.terminal_event is not None

    def elapsed_ms(self) -> int:
        return int((time.time() - self.started_at) * 1000)


class StreamDispatcher:
    """Registry of live streams; all event delivery goes through here."""

    def __init__(self, batch_words: Optional[int] = None, delay_ms: Optional[int] = None):
        self.logger = get_logger()
        self.batch_words = Config.STREAM_BATCH_WORDS if batch_words is None else batch_words
        self.delay_ms = Config.STREAM_DELAY_MS if delay_ms is None else delay_ms
        self._lock = threading.Lock()
        self._streams: Dict[str, StreamSession] = {}
        self._by_user: Dict[str, StreamSession] = {}

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _deliver(self, stream: StreamSession, event: str, payload: Dict[str, Any]) -> bool:
        """Emit one event under the stream lock; False if the stream is already closed."""
        with stream._lock:
            if stream.terminal_event is not None:
                return False
            if event == STREAM_TOKEN:
                if stream.final_sent or stream.cancel_event.is_set():
                    return False
                if payload.get("final"):
                    stream.final_sent = True
                stream.tokens_sent += 1
            elif event in TERMINAL_EVENTS:
                stream.terminal_event = event
                stream.active = False
            try:
                stream.sink(event, payload)
            except Exception as e:
                # Transport failure must not break the pipeline
                self.logger.warning(f"[STREAM] sink error on {event} stream={stream.stream_id}: {e}")
        if event in TERMINAL_EVENTS:
            self._unregister(stream)
        return True

    def _unregister(self, stream: StreamSession) -> None:
        with self._lock:
            self._streams.pop(stream.stream_id, None)
            if self._by_user.get(stream.user_id) is stream:
                del self._by_user[stream.user_id]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_stream(self, user_id: str, message_id: Optional[str], sink: EventSink) -> StreamSession:
        """Open a stream for a user, cancelling the user's previous one first."""
        stream = StreamSession(
            stream_id=f"stream_{int(time.time() * 1000)}_{next(_stream_counter)}_{user_id}",
            user_id=user_id,
            message_id=message_id or f"msg_{uuid.uuid4().hex[:12]}",
            sink=sink,
        )
        with self._lock:
            prior = self._by_user.get(user_id)
            self._streams[stream.stream_id] = stream
            self._by_user[user_id] = stream

        if prior is not None:
            self._cancel(prior, reason="superseded")

        self._deliver(stream, STREAM_START, {
            "streamId": stream.stream_id,
            "messageId": stream.message_id,
            "timestamp": _timestamp(),
            "status": "acknowledged",
        })
        self.logger.debug(f"[STREAM] start stream={stream.stream_id} user={user_id}")
        return stream

    def stream_text(
        self,
        stream: StreamSession,
        text: str,
        batch_size: Optional[int] = None,
        delay_ms: Optional[int] = None,
    ) -> int:
        """
        Emit text as word-batch tokens; returns how many tokens were sent.

        Token index is the word offset of the batch. Empty text still sends
        exactly one final token with empty content. Cancellation is checked
        before every batch and during the optional inter-batch delay.
        """
        size = self.batch_words if batch_size is None else batch_size
        delay = self.delay_ms if delay_ms is None else delay_ms

        batches = split_batches(text or "", size)
        if not batches:
            sent = self._deliver(stream, STREAM_TOKEN, {"content": "", "index": 0, "final": True})
            return 1 if sent else 0

        sent_count = 0
        for n, chunk in enumerate(batches):
            if stream.cancel_event.is_set():
                break
            is_final = n == len(batches) - 1
            if not self._deliver(stream, STREAM_TOKEN, {"content": chunk, "index": n * max(1, size), "final": is_final}):
                break
            sent_count += 1
            if not is_final and delay > 0:
                # Returns early when the stream is cancelled
                if stream.cancel_event.wait(delay / 1000.0):
                    break
        self.logger.debug(f"[STREAM] token batches={sent_count} stream={stream.stream_id}")
        return sent_count

    def emit_event(self, stream: StreamSession, event_type: str, **data: Any) -> bool:
        """Side-channel metadata (thinking, action, sources, ...); dropped after the terminal."""
        payload = {"type": event_type}
        payload.update(data)
        return self._deliver(stream, STREAM_EVENT, payload)

    def send_notice(self, stream: StreamSession, event_name: str, payload: Dict[str, Any]) -> bool:
        """Named notice on the stream's transport (acknowledgment, confirmation-request, ...)."""
        if event_name == STREAM_TOKEN or event_name in TERMINAL_EVENTS or event_name == STREAM_START:
            raise ValueError(f"{event_name} is a lifecycle event")
        body = {"streamId": stream.stream_id}
        body.update(payload)
        return self._deliver(stream, event_name, body)

    def end_stream(self, stream: StreamSession, **extra: Any) -> bool:
        payload = {
            "streamId": stream.stream_id,
            "totalLatency": stream.elapsed_ms(),
            "timestamp": _timestamp(),
        }
        payload.update(extra)
        ended = self._deliver(stream, STREAM_END, payload)
        if ended:
            self.logger.debug(f"[STREAM] end stream={stream.stream_id} latency_ms={payload['totalLatency']}")
        return ended

    def fail_stream(self, stream: StreamSession, message: str) -> bool:
        failed = self._deliver(stream, STREAM_ERROR, {"streamId": stream.stream_id, "message": message})
        if failed:
            self.logger.warning(f"[STREAM] error stream={stream.stream_id}: {message}")
        return failed

    def _cancel(self, stream: StreamSession, reason: str) -> bool:
        # Set the handle first so producers stop before the terminal lands
        stream.cancel_event.set()
        cancelled = self._deliver(stream, STREAM_CANCELLED, {"streamId": stream.stream_id, "reason": reason})
        if cancelled:
            self.logger.info(f"[STREAM] cancelled stream={stream.stream_id} reason={reason}")
        return cancelled

    def cancel_stream(self, stream_id: str, reason: str = "user") -> bool:
        with self._lock:
            stream = self._streams.get(stream_id)
        if stream is None:
            return False
        return self._cancel(stream, reason)

    def cancel_user(self, user_id: str, reason: str = "user") -> bool:
        with self._lock:
            stream = self._by_user.get(user_id)
        if stream is None:
            return False
        return self._cancel(stream, reason)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, stream_id: str) -> Optional[StreamSession]:
        with self._lock:
            return self._streams.get(stream_id)

    def active_stream_for(self, user_id: str) -> Optional[StreamSession]:
        with self._lock:
            return self._by_user.get(user_id)

    def active_stream_count(self) -> int:
        with self._lock:
            return len(self._streams)
