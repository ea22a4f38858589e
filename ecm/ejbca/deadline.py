from __future__ import annotations

import threading
import time

from ecm.ejbca.errors import DeadlineExceeded

DEFAULT_DEADLINE_SECONDS = 120.0


class Deadline:
    """
    A cancellable point in time shared by the calls of one job.
    """

    def __init__(self, seconds: float, *, clock=time.monotonic):
        self._clock = clock
        self.seconds = float(seconds)
        self.expires_at = clock() + self.seconds
        self._cancelled = threading.Event()

    def remaining(self) -> float:
        if self._cancelled.is_set():
            return 0.0
        return max(0.0, self.expires_at - self._clock())

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self.cancelled or self._clock() >= self.expires_at

    def cancel(self) -> None:
        self._cancelled.set()

    def check(self) -> None:
        if self.cancelled:
            raise DeadlineExceeded("deadline cancelled")
        if self.expired:
            raise DeadlineExceeded(f"deadline of {self.seconds:.0f}s exceeded")

    def timeout(self, cap: float) -> float:
        """Per-call timeout: the smaller of cap and what is left."""
        self.check()
        return min(float(cap), self.remaining())


class DeadlineManager:
    """
    Holds at most one live Deadline. Owned by whoever runs a job, so separate
    jobs never share (or cancel) each other's deadline.
    """

    def __init__(self, default_seconds: float = DEFAULT_DEADLINE_SECONDS, *, clock=time.monotonic):
        self.default_seconds = default_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._current: Deadline | None = None

    def get(self) -> Deadline:
        with self._lock:
            return self._get_locked(None)

    def renew(self, seconds: float | None = None) -> Deadline:
        with self._lock:
            self._discard_locked()
            return self._get_locked(seconds)

    def cancel(self) -> None:
        with self._lock:
            self._discard_locked()

    def _get_locked(self, seconds: float | None) -> Deadline:
        if self._current is None:
            if seconds is None or seconds <= 0:
                seconds = self.default_seconds
            self._current = Deadline(seconds, clock=self._clock)
        return self._current

    def _discard_locked(self) -> None:
        if self._current is not None:
            self._current.cancel()
        self._current = None
