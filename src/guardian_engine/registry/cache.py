"""Explicit, injectable TTL cache.

There is no module-level cache anywhere in the engine: whoever needs one
builds a TTLCache and passes it in, and whoever mutates the underlying
data calls ``invalidate()``.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class TTLCache(Generic[T]):
    """Single-value cache that expires after ``ttl_seconds``.

    Args:
        ttl_seconds: Lifetime of a loaded value.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._value: T | None = None
        self._loaded_at: float | None = None

    @property
    def is_fresh(self) -> bool:
        """True if a value is loaded and has not expired."""
        with self._lock:
            return self._is_fresh_locked()

    def _is_fresh_locked(self) -> bool:
        return self._loaded_at is not None and (
            self._clock() - self._loaded_at < self.ttl_seconds
        )

    def get(self) -> T | None:
        """Return the cached value if fresh, else None."""
        with self._lock:
            return self._value if self._is_fresh_locked() else None

    def peek_stale(self) -> T | None:
        """Return the last loaded value even if expired (None if never loaded)."""
        with self._lock:
            return self._value

    def set(self, value: T) -> None:
        """Store a freshly loaded value."""
        with self._lock:
            self._value = value
            self._loaded_at = self._clock()

    def invalidate(self) -> None:
        """Force the next ``get`` to miss. The stale value is kept for fallback."""
        with self._lock:
            self._loaded_at = None
