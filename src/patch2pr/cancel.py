"""Cancellation tokens threaded through every remote operation."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from .exceptions import CancelledError, DeadlineExceededError


class CancelToken:
    """Cancellation flag with an optional deadline.

    Pass the same token to every call of one unit of work.  Operations
    call :meth:`check` before each remote round trip; a cancelled token
    makes the next check raise and leaves the caller's state untouched.
    """

    def __init__(self, timeout: float | None = None, *,
                 clock: Callable[[], float] = time.monotonic):
        self._event = threading.Event()
        self._clock = clock
        self._deadline = clock() + timeout if timeout is not None else None

    def __repr__(self) -> str:
        state = "cancelled" if self._event.is_set() else "active"
        if self._deadline is not None:
            return f"CancelToken({state}, remaining={self.remaining():.3f})"
        return f"CancelToken({state})"

    def cancel(self) -> None:
        """Request cancellation; safe to call from another thread."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.expired

    @property
    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or ``None`` without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def check(self) -> None:
        """Raise if the token is cancelled or its deadline has passed."""
        if self._event.is_set():
            raise CancelledError("operation cancelled")
        if self.expired:
            raise DeadlineExceededError("operation deadline exceeded")

    def wait(self, seconds: float) -> None:
        """Sleep for *seconds*, waking early (and raising) on cancellation."""
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        self._event.wait(max(0.0, seconds))
        self.check()
