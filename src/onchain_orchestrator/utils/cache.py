"""Bounded in-memory caches used for memoization and result reuse."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

V = TypeVar("V")

Clock = Callable[[], float]


@dataclass(frozen=True, slots=True)
class CacheStats:
    size: int
    hits: int
    misses: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, float | int]:
        return {
            "size": self.size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
        }


class TTLCache(Generic[V]):
    """Thread-safe LRU cache with an optional per-entry time-to-live.

    ``ttl_seconds=None`` disables expiry and leaves only the size bound.
    Expired entries are dropped lazily on read and by :meth:`purge_expired`.
    """

    def __init__(
        self,
        *,
        max_entries: int = 1024,
        ttl_seconds: float | None = None,
        clock: Clock | None = None,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0 when provided")
        self._max_entries = max_entries
        self._ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: OrderedDict[str, tuple[float, V]] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @property
    def ttl_seconds(self) -> float | None:
        return self._ttl_seconds

    def get(self, key: str) -> V | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            stored_at, value = entry
            if self._is_expired(stored_at, now):
                del self._entries[key]
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return value

    def put(self, key: str, value: V) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = (now, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def purge_expired(self) -> int:
        if self._ttl_seconds is None:
            return 0
        now = self._clock()
        with self._lock:
            expired = [
                key for key, (stored_at, _) in self._entries.items()
                if self._is_expired(stored_at, now)
            ]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(size=len(self._entries), hits=self._hits, misses=self._misses)

    def _is_expired(self, stored_at: float, now: float) -> bool:
        return self._ttl_seconds is not None and now - stored_at >= self._ttl_seconds


__all__ = ["CacheStats", "TTLCache"]
