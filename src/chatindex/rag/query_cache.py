"""Expiring in-memory cache for auxiliary lookups (query embeddings).

Owned by the engine instance and injected where needed; there is no
module-level state. Entries carry an explicit ``expires_at`` that the caller
checks, so an expired entry is visible as such rather than silently dropped.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Generic, TypeVar

V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: V
    expires_at: float  # time.monotonic() seconds

    def is_expired(self, now: float | None = None) -> bool:
        return (time.monotonic() if now is None else now) >= self.expires_at


class ExpiringCache(Generic[V]):
    """Bounded key → value cache with a per-entry expiry time.

    Args:
        ttl_seconds: Lifetime of an entry from the moment it is stored.
        max_entries: Capacity; the least recently stored/read entry is evicted first.
    """

    def __init__(self, ttl_seconds: float = 600.0, max_entries: int = 256) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._entries: OrderedDict[str, CacheEntry[V]] = OrderedDict()

    def get(self, key: str) -> CacheEntry[V] | None:
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
        return entry

    def put(self, key: str, value: V, now: float | None = None) -> CacheEntry[V]:
        start = time.monotonic() if now is None else now
        entry = CacheEntry(value=value, expires_at=start + self.ttl_seconds)
        self._entries[key] = entry
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return entry

    def discard(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
