"""Deadline and cancellation carried through every provider call."""

from __future__ import annotations

import threading
import time
from typing import Optional


class CallContext:
    """Cancellation signal plus an optional deadline.

    :param timeout: Seconds from construction until the call is
      abandoned.  ``None`` means no deadline.
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._cancelled = threading.Event()
        self.deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, never negative."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

