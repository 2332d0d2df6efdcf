"""Caller-supplied cancellation and deadlines for long read scans."""

from __future__ import annotations

import threading
import time

from weather_cache.errors import CanceledError


class CancelToken:
    """Cooperative cancellation flag with an optional monotonic deadline.

    Scans call ``raise_if_cancelled()`` between records. Reads only, so an
    abort never leaves partial state behind.
    """

    def __init__(self, deadline: float | None = None) -> None:
        """``deadline`` is an absolute ``time.monotonic()`` value, or None."""
        self._event = threading.Event()
        self.deadline = deadline

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancelToken":
        """Token that expires ``seconds`` from now."""
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """True once cancelled explicitly or past the deadline."""
        if self._event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def raise_if_cancelled(self) -> None:
        """Raise CanceledError if the scan should stop."""
        if self._event.is_set():
            raise CanceledError("operation cancelled by caller")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise CanceledError("operation deadline exceeded")


def check(cancel: CancelToken | None) -> None:
    """Raise CanceledError if ``cancel`` is set; no-op for None."""
    if cancel is not None:
        cancel.raise_if_cancelled()
