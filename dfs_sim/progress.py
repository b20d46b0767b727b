"""
Progress events for long running optimizations and simulations.

Producers never block on a slow consumer: intermediate events are dropped
under backpressure, while terminal events (completed / failed) are always
delivered.
"""
import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    STARTED = "started"
    PROGRESS = "progress"
    LINEUP_GENERATED = "lineup_generated"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (EventType.COMPLETED, EventType.FAILED)


@dataclass(frozen=True)
class ProgressEvent:
    type: EventType
    progress: float
    message: str = ""
    step: int = 0
    total_steps: int = 0
    timestamp: float = field(default_factory=time.time)

    def to_dict(self):
        return {
            "type": self.type.value,
            "progress": self.progress,
            "message": self.message,
            "step": self.step,
            "total_steps": self.total_steps,
            "timestamp": self.timestamp,
        }


class ProgressReporter(ABC):
    @abstractmethod
    def emit(self, event: ProgressEvent) -> bool:
        """
        Offer an event without blocking.
        Returns False when the event was dropped.
        """


class NullProgressReporter(ProgressReporter):
    def emit(self, event: ProgressEvent) -> bool:
        return True


class QueueProgressReporter(ProgressReporter):
    """Bounded in-process channel; a transport layer drains it"""

    def __init__(self, maxsize: int = 64):
        self._queue = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self.dropped = 0

    def emit(self, event: ProgressEvent) -> bool:
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            pass

        if not event.type.terminal:
            with self._lock:
                self.dropped += 1
            return False

        # Terminal events make room by evicting the oldest queued event
        while True:
            try:
                self._queue.get_nowait()
                with self._lock:
                    self.dropped += 1
            except queue.Empty:
                pass
            try:
                self._queue.put_nowait(event)
                return True
            except queue.Full:
                continue

    def get(self, timeout: Optional[float] = None) -> ProgressEvent:
        return self._queue.get(timeout=timeout)

    def drain(self) -> List[ProgressEvent]:
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events


class ProgressTracker:
    """Turns step counts into events and guarantees exactly one terminal event"""

    def __init__(self, reporter: Optional[ProgressReporter], total_steps: int, label: str = ""):
        self.reporter = reporter or NullProgressReporter()
        self.total_steps = max(1, total_steps)
        self.label = label
        self.step = 0
        self.finished = False

    def _emit(self, event_type: EventType, progress: float, message: str):
        event = ProgressEvent(type=event_type, progress=progress, message=message,
                              step=self.step, total_steps=self.total_steps)
        if not self.reporter.emit(event):
            logger.debug(f"Progress event dropped: {self.label} {event_type.value} {self.step}/{self.total_steps}")

    def start(self, message: str = ""):
        self._emit(EventType.STARTED, 0.0, message or f"{self.label} started")

    def advance(self, message: str = "", steps: int = 1, event_type: EventType = EventType.PROGRESS):
        if self.finished:
            return
        self.step = min(self.total_steps, self.step + steps)
        # 1.0 is reserved for the terminal event
        self._emit(event_type, min(self.step / self.total_steps, 0.99), message)

    def complete(self, message: str = ""):
        if self.finished:
            return
        self.finished = True
        self._emit(EventType.COMPLETED, 1.0, message or f"{self.label} completed")

    def fail(self, message: str):
        if self.finished:
            return
        self.finished = True
        self._emit(EventType.FAILED, 1.0, message)
