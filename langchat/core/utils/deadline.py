"""Deadline and cancellation token shared by every blocking operation of a call."""
from __future__ import annotations

import threading
import time
from typing import Optional


class CancellationError(TimeoutError):
    """Raised when a call's deadline passes or its token is cancelled."""


class Deadline:
    """Monotonic expiry combined with an explicit cancellation flag.

    A deadline is created per public call and threaded down to model and tool
    invocations. Blocking operations clamp their own timeouts with
    :meth:`clamp` and call :meth:`check` before starting work.
    """

    def __init__(self, seconds: Optional[float] = None) -> None:
        self._expires_at = None if seconds is None else time.monotonic() + max(0.0, seconds)
        self._cancelled = threading.Event()

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(seconds)

    @classmethod
    def never(cls) -> "Deadline":
        return cls(None)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def remaining(self) -> float:
        """Seconds left before expiry (``inf`` when unbounded, 0 when cancelled)."""
        if self._cancelled.is_set():
            return 0.0
        if self._expires_at is None:
            return float("inf")
        return max(0.0, self._expires_at - time.monotonic())

    def clamp(self, timeout: Optional[float]) -> Optional[float]:
        """Return ``timeout`` bounded by the remaining time, ``None`` if both are unbounded."""
        remaining = self.remaining()
        if remaining == float("inf"):
            return timeout
        if timeout is None:
            return remaining
        return min(timeout, remaining)

    def check(self, operation: str = "operation") -> None:
        if self._cancelled.is_set():
            raise CancellationError(f"{operation} cancelled")
        if self.expired:
            raise CancellationError(f"{operation} exceeded its deadline")


def ensure_deadline(deadline: Optional[Deadline], default_seconds: Optional[float] = None) -> Deadline:
    """Return ``deadline`` or a fresh one expiring after ``default_seconds``."""
    if deadline is not None:
        return deadline
    return Deadline(default_seconds)


__all__ = ["CancellationError", "Deadline", "ensure_deadline"]
