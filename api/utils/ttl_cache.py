"""
In-process TTL cache with an injectable clock.

One instance is created per concern (agents, profiles, mastery reads) when the
application is wired up, and passed to the services that need it. Entries are
stamped with the clock reading at write time; concurrent refreshes simply
overwrite each other, which is fine because every refresh yields a valid value.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Hashable, Optional, TypeVar

V = TypeVar("V")

Clock = Callable[[], float]


@dataclass
class CacheEntry(Generic[V]):
    value: V
    stored_at: float


class TTLCache(Generic[V]):
    def __init__(self, ttl_seconds: float, clock: Clock = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry[V]] = {}

    def get(self, key: Hashable) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self.ttl_seconds:
            self._entries.pop(key, None)
            return None
        return entry.value

    def set(self, key: Hashable, value: V) -> None:
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock())

    def get_or_load(self, key: Hashable, loader: Callable[[], V]) -> V:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = loader()
        self.set(key, value)
        return value

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def age(self, key: Hashable) -> Optional[float]:
        """Seconds since the entry was stored, or None when absent (expired entries included)."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        return self._clock() - entry.stored_at

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)
