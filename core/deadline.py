"""Deadlines passed through every remote call of the pipeline."""

from __future__ import annotations

import time
from typing import Callable, Optional

from .exceptions import OperationTimeoutError


class Deadline:
    """
    A point in time after which an operation must give up.

    ``Deadline(None)`` never expires, which lets call sites pass a deadline
    unconditionally instead of branching on ``None``.
    """

    def __init__(
        self,
        timeout_seconds: Optional[float],
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._expires_at = None if timeout_seconds is None else clock() + timeout_seconds

    @classmethod
    def unbounded(cls) -> "Deadline":
        return cls(None)

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def remaining(self) -> Optional[float]:
        """Seconds left, or None for an unbounded deadline."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def shorter(self, timeout_seconds: Optional[float]) -> "Deadline":
        """Return whichever is sooner: this deadline or a new per-call timeout."""
        if timeout_seconds is None:
            return self
        remaining = self.remaining()
        if remaining is not None and remaining <= timeout_seconds:
            return self
        return Deadline(timeout_seconds, clock=self._clock)

    def check(self, operation: str, path: Optional[str] = None) -> None:
        """
        Raise if the deadline has passed.

        Raises:
            OperationTimeoutError: When expired
        """
        if self.expired:
            raise OperationTimeoutError(operation, self.timeout_seconds or 0.0, path=path)
