"""
Bounded, thread-safe cache for opportunistic side data.

The document-store adapter remembers the last revision token it saw for each
key so most writes can skip a lookup round trip. The cache is a hint and
never authoritative: a miss means "ask the backend", and a stale hit is
caught by the backend rejecting the write.

Manifesto:
    - **Protocol-based:** CacheBackend defines the contract
    - **Bounded:** LRU eviction once ``max_size`` is reached
    - **Thread-safe:** One lock around every mutation and lookup
    - **Never authoritative:** Callers reconcile misses and stale hits

Architecture:
    ::

        CacheBackend (Protocol)
        └── LRUCache - single-process, bounded LRU, optional TTL

        API: get(key) → value | None
             set(key, value, ttl_seconds=None)
             delete(key)
             exists(key) → bool
             clear()

Examples:
    >>> from kvspine.core.cache import LRUCache
    >>> revs = LRUCache(max_size=2)
    >>> revs.set("a", "1-abc")
    >>> revs.get("a")
    '1-abc'

Performance:
    - O(1) get/set/delete via ``OrderedDict.move_to_end``
    - TTL cleanup: lazy (checked on get)

Tags:
    cache, lru, thread-safe, revision-cache, kvspine
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any, Protocol


class CacheBackend(Protocol):
    """Protocol for cache implementations used by the adapters."""

    def get(self, key: str) -> Any | None:
        """Return the cached value, or ``None`` if missing or expired."""
        ...

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        """Store a value with optional TTL."""
        ...

    def delete(self, key: str) -> None:
        """Remove a key. No-op if absent."""
        ...

    def exists(self, key: str) -> bool:
        """Check if a key exists and has not expired."""
        ...

    def clear(self) -> None:
        """Remove all keys."""
        ...


class LRUCache:
    """Bounded in-memory LRU cache with optional TTL.

    Attributes:
        max_size: Maximum number of keys before LRU eviction.
        default_ttl_seconds: Default TTL for keys (``None`` → no expiry).
    """

    def __init__(
        self,
        *,
        max_size: int = 10_000,
        default_ttl_seconds: int | None = None,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._store: OrderedDict[str, tuple[Any, float | None]] = OrderedDict()
        self._max_size = max_size
        self._default_ttl = default_ttl_seconds
        self._lock = threading.Lock()

    @property
    def max_size(self) -> int:
        return self._max_size

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and time.monotonic() > expires_at:
                del self._store[key]
                return None
            self._store.move_to_end(key)
            return value

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        expires_at = (time.monotonic() + ttl) if ttl else None
        with self._lock:
            if key in self._store:
                self._store.move_to_end(key)
            elif len(self._store) >= self._max_size:
                self._store.popitem(last=False)
            self._store[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def size(self) -> int:
        """Return current number of cached keys."""
        with self._lock:
            return len(self._store)

    def __len__(self) -> int:
        return self.size()


__all__ = [
    "CacheBackend",
    "LRUCache",
]
