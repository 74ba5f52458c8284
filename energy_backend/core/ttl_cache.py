"""Bounded time-windowed key cache used for duplicate suppression."""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable, Hashable


class TTLCache:
    """Remember keys for ``ttl`` seconds, holding at most ``maxsize`` entries.

    Expired entries are evicted lazily on access. When the cache is full the
    oldest entry is evicted first.
    """

    def __init__(
        self,
        ttl: float,
        maxsize: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self.ttl = ttl
        self.maxsize = maxsize
        self._clock = clock
        self._entries: OrderedDict[Hashable, float] = OrderedDict()

    def __len__(self) -> int:
        self._evict_expired(self._clock())
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        now = self._clock()
        self._evict_expired(now)
        return key in self._entries

    def seen(self, key: Hashable) -> bool:
        """Return True if ``key`` was added within the window, else record it."""
        now = self._clock()
        self._evict_expired(now)
        if key in self._entries:
            return True
        self._entries[key] = now + self.ttl
        while len(self._entries) > self.maxsize:
            self._entries.popitem(last=False)
        return False

    def clear(self) -> None:
        self._entries.clear()

    def _evict_expired(self, now: float) -> None:
        # Insertion order equals expiry order since the ttl is fixed.
        while self._entries:
            key, expires_at = next(iter(self._entries.items()))
            if expires_at > now:
                break
            del self._entries[key]
