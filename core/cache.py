"""
Time-based cache for lookups that are expensive to repeat.

Instances are constructed explicitly and handed to the services that need
them; nothing here is module-level state.

Thread Safety:
    - All operations take the instance lock
    - Values are returned as stored; callers must treat them as read-only
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Hashable, Tuple

from logging_config import get_logger


logger = get_logger(__name__)

_MISSING = object()


class TTLCache:
    """
    Bounded cache whose entries expire ``ttl_seconds`` after being stored.

    When ``max_entries`` is reached the least recently stored entry is
    evicted first.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")

        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key, _MISSING)
            if entry is _MISSING:
                return default

            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return default
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            self._entries[key] = (self._clock() + self.ttl_seconds, value)

            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cache entry {evicted!r}")

    def get_or_set(self, key: Hashable, factory: Callable[[], Any]) -> Any:
        """
        Return the cached value or compute, store and return it.

        The factory runs outside the lock; two threads missing at the same
        time may both compute, and the later one wins.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value

        value = factory()
        self.set(key, value)
        return value

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING
