"""
Cancellation and deadline signal shared by ingestion and retrieval.
"""

import threading
import time
from typing import Optional

from .errors import DeadlineExceeded, OperationCancelled


class OperationContext:
    """
    Carries an optional deadline and a cancel flag through a long-running call.

    The deadline is measured on the monotonic clock. cancel() may be called
    from any thread; the running operation notices it at its next check().
    """

    def __init__(self, timeout: Optional[float] = None, deadline: Optional[float] = None):
        """
        Args:
            timeout: Seconds from now until the deadline
            deadline: Absolute time.monotonic() value; wins over timeout
        """
        if deadline is None and timeout is not None:
            deadline = time.monotonic() + timeout
        self.deadline = deadline
        self._cancelled = threading.Event()

    @classmethod
    def with_timeout(cls, seconds: Optional[float]) -> "OperationContext":
        if seconds is None or seconds <= 0:
            return cls()
        return cls(timeout=seconds)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def is_timed_out(self) -> bool:
        if self.deadline is None:
            return False
        return time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is none."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self, operation: str = "operation") -> None:
        """Raise if the operation should stop now."""
        if self._cancelled.is_set():
            raise OperationCancelled(f"{operation} cancelled")
        if self.is_timed_out:
            raise DeadlineExceeded(f"{operation} exceeded its deadline")
