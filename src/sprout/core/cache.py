"""
Bounded in-process TTL cache.

Used to keep weather-client responses for a few minutes so that several
water schedules sharing one weather client (and every UI read of the
weather view) do not each hit the upstream API.

Tags:
    cache, ttl, lru, thread-safe
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any


class InMemoryCache:
    """Bounded in-memory cache with TTL support.

    Uses LRU eviction when ``max_size`` is reached. All operations take a
    single lock, so one instance can be shared by scheduler worker threads.

    Example:
        cache = InMemoryCache(max_size=500, default_ttl_seconds=300)
        cache.set("total_rain_86400_abc", 12.5)
        cache.get("total_rain_86400_abc")
    """

    def __init__(
        self,
        *,
        max_size: int = 10_000,
        default_ttl_seconds: float | None = 300,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._store: OrderedDict[str, tuple[Any, float | None]] = OrderedDict()
        self._max_size = max_size
        self._default_ttl = default_ttl_seconds
        self._timer = timer
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value, or ``default`` if missing or expired."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return default
            value, expires_at = entry
            if expires_at is not None and self._timer() >= expires_at:
                del self._store[key]
                return default
            self._store.move_to_end(key)
            return value

    def set(self, key: str, value: Any, *, ttl_seconds: float | None = None) -> None:
        """Store a value with optional TTL."""
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        expires_at = (self._timer() + ttl) if ttl else None
        with self._lock:
            if key not in self._store and len(self._store) >= self._max_size:
                self._store.popitem(last=False)
            self._store[key] = (value, expires_at)
            self._store.move_to_end(key)

    def delete(self, key: str) -> None:
        """Remove a key from the cache."""
        with self._lock:
            self._store.pop(key, None)

    def exists(self, key: str) -> bool:
        """Check if key exists and is not expired."""
        sentinel = object()
        return self.get(key, sentinel) is not sentinel

    def clear(self) -> None:
        """Remove all keys."""
        with self._lock:
            self._store.clear()

    def size(self) -> int:
        """Return current number of cached keys (expired ones included until touched)."""
        with self._lock:
            return len(self._store)


__all__ = ["InMemoryCache"]
