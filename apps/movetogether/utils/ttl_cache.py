"""
Small in-process helpers for per-key state: a TTL cache and a keyed lock registry.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


class TTLCache:
    """
    Per-key cache whose entries expire after a fixed time-to-live.

    Expired entries are evicted lazily on access and when the cache grows
    past ``max_entries``.
    """

    def __init__(self, ttl_seconds: float, max_entries: int = 10000, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return default
        return value

    def set(self, key: Hashable, value: Any = True) -> None:
        if len(self._entries) >= self.max_entries:
            self.evict_expired()
        self._entries[key] = (self._clock() + self.ttl_seconds, value)

    def __contains__(self, key: Hashable) -> bool:
        sentinel = object()
        return self.get(key, sentinel) is not sentinel

    def discard(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def evict_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class KeyedLock:
    """
    Registry of asyncio locks keyed by an arbitrary hashable.

    Callers holding different keys never block each other. A lock is
    dropped from the registry once nobody holds or waits on it.
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def acquire(self, key: Hashable):
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def is_locked(self, key: Hashable) -> bool:
        lock: Optional[asyncio.Lock] = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
