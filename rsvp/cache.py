"""Small per-process TTL cache used by the sheet gateways."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Hashable, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    value: V
    stored_at: float


class TTLCache(Generic[K, V]):
    """Dict-backed cache; entries older than ``ttl`` seconds read as misses."""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = float(ttl)
        self._clock = clock
        self._entries: Dict[K, CacheEntry[V]] = {}

    def get(self, key: K) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self.ttl:
            self._entries.pop(key, None)
            return None
        return entry.value

    def set(self, key: K, value: V) -> V:
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock())
        return value

    def invalidate(self, key: K) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: K) -> bool:
        return self.get(key) is not None
