import threading
import time
from typing import Optional


class CancellationToken:
    """
    Cooperative cancellation with an optional deadline.

    Long running work polls `cancelled` between rounds and stops with whatever
    it has found so far. The token never raises.
    """

    def __init__(self, deadline: Optional[float] = None):
        # deadline is an absolute time.monotonic() value
        self.deadline = deadline
        self._event = threading.Event()

    @classmethod
    def with_timeout(cls, seconds: Optional[float]) -> "CancellationToken":
        if seconds is None:
            return cls()
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self.deadline is not None and time.monotonic() >= self.deadline:
            self._event.set()
            return True
        return False

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, None when there is no deadline"""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())
