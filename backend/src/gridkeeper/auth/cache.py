"""Time-bounded cache for resolved access sets."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Hashable
from typing import Any, Protocol

DEFAULT_TTL_SECONDS = 300.0


class CacheService(Protocol):
    """Cache interface the access resolver depends on."""

    @property
    def ttl(self) -> float:
        """Default time-to-live in seconds."""
        ...

    def get(self, key: Hashable) -> Any | None:
        """Return the cached value, or None when absent or expired."""
        ...

    def set(self, key: Hashable, value: Any, ttl: float | None = None) -> None:
        ...

    def clear(self) -> None:
        ...


class TTLCache:
    """In-process cache whose entries expire ``ttl`` seconds after being set.

    There is no eager invalidation: a changed grant becomes visible only
    after the cached entry expires. The clock is injectable for tests.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[Hashable, tuple[float, Any]] = {}

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, key: Hashable) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: Hashable, value: Any, ttl: float | None = None) -> None:
        with self._lock:
            lifetime = self._ttl if ttl is None else ttl
            self._entries[key] = (self._clock() + lifetime, value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
