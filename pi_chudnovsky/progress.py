"""
Progress reporting capability.

The engine calls `on_progress(completed_terms, total_terms, elapsed)` from
whichever worker thread just finished a leaf or a merge, and never waits on
it. Implementations must return immediately; rendering happens elsewhere.
"""

from __future__ import annotations

import queue
import threading
from typing import NamedTuple, Optional, Protocol


class ProgressEvent(NamedTuple):
    completed_terms: int
    total_terms: int
    elapsed: float

    @property
    def fraction(self) -> float:
        if self.total_terms <= 0:
            return 1.0
        return self.completed_terms / self.total_terms


class ProgressSink(Protocol):
    def on_progress(self, completed_terms: int, total_terms: int, elapsed: float) -> None:
        ...


class NullProgressSink:
    def on_progress(self, completed_terms: int, total_terms: int, elapsed: float) -> None:
        return None


class QueueProgressSink:
    """
    Buffers events in a bounded queue for a consumer thread.

    When the consumer falls behind, new events are dropped; `latest` always
    holds the furthest one seen so a renderer can still show the current
    state. Events from different workers may arrive out of order; `latest`
    never moves backwards.
    """

    def __init__(self, maxsize: int = 1024) -> None:
        self.events: "queue.Queue[ProgressEvent]" = queue.Queue(maxsize=maxsize)
        self.latest: Optional[ProgressEvent] = None
        self.dropped = 0
        self._lock = threading.Lock()

    def on_progress(self, completed_terms: int, total_terms: int, elapsed: float) -> None:
        event = ProgressEvent(completed_terms, total_terms, elapsed)
        with self._lock:
            if self.latest is None or completed_terms >= self.latest.completed_terms:
                self.latest = event
        try:
            self.events.put_nowait(event)
        except queue.Full:
            with self._lock:
                self.dropped += 1

    def get(self, timeout: Optional[float] = None) -> Optional[ProgressEvent]:
        """Next buffered event, or None if none arrived within `timeout`."""
        try:
            return self.events.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list:
        out = []
        while True:
            try:
                out.append(self.events.get_nowait())
            except queue.Empty:
                return out
