"""Time-bounded per-provider query cache.

Each provider client owns one ``QueryCache``. Keys are built from the query
origin rounded to four decimals (roughly 11 m) plus the search radius, so
small GPS jitter hits the same entry.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


def cache_key(lat: float, lng: float, radius: int, namespace: str = "") -> str:
    return f"{namespace}{lat:.4f}_{lng:.4f}_{radius}"


@dataclass(frozen=True)
class CacheEntry:
    data: list[Any]
    fetched_at: float


class QueryCache:
    def __init__(self, ttl_s: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_s = ttl_s
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> list[Any] | None:
        """Return the cached list for *key*, or None if missing or stale."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.fetched_at >= self.ttl_s:
            logger.debug("cache entry %s expired", key)
            del self._entries[key]
            return None
        return entry.data

    def put(self, key: str, value: list[Any], timestamp: float | None = None) -> None:
        now = self._clock()
        self.prune(now)
        fetched_at = now if timestamp is None else timestamp
        self._entries[key] = CacheEntry(data=value, fetched_at=fetched_at)

    def prune(self, now: float | None = None) -> int:
        """Drop every stale entry; returns how many were removed."""
        now = self._clock() if now is None else now
        stale = [k for k, e in self._entries.items() if now - e.fetched_at >= self.ttl_s]
        for k in stale:
            del self._entries[k]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
