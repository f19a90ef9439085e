# src/cache/memory_store.py — v1
"""In-memory LRU/TTL cache store with hit/miss accounting.

Expiry is lazy: a stale entry is deleted the moment get()/has() discovers
it. sweep() is an optional proactive pass and nothing depends on it running.
Eviction ranks entries by last access, not by insertion, so an artifact
prefetched long before its first read is not evicted ahead of older reads.
"""

from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Iterator

from quicksight.core.models import CacheEntry, CacheStats

logger = logging.getLogger(__name__)

DEFAULT_TTL_S = 3600.0


class MemoryCacheStore:
    """Capacity- and freshness-bounded key/value store.

    Entries are kept in access order: the first entry of the ordered dict is
    always the least recently accessed one.
    """

    def __init__(
        self,
        capacity: int = 100,
        default_ttl_s: float = DEFAULT_TTL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._default_ttl_s = default_ttl_s
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def default_ttl_s(self) -> float:
        return self._default_ttl_s

    def get(self, key: str) -> Any | None:
        """Return the stored value, or None on miss or expiry."""
        entry = self._live_entry(key)
        if entry is None:
            self._misses += 1
            return None

        entry.last_accessed = self._clock()
        entry.access_count += 1
        self._entries.move_to_end(key)
        self._hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Insert or overwrite, evicting the LRU entry if at capacity."""
        if key not in self._entries and len(self._entries) >= self._capacity:
            self._evict_lru()

        now = self._clock()
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            ttl=self._default_ttl_s if ttl is None else ttl,
            last_accessed=now,
        )
        self._entries.move_to_end(key)

    def has(self, key: str) -> bool:
        """Freshness check without access bookkeeping."""
        return self._live_entry(key) is not None

    def entry(self, key: str) -> CacheEntry | None:
        """Inspect a live entry without touching counters or LRU order."""
        return self._live_entry(key)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        """Delete every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]
        self._expirations += len(expired)
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))
        return len(expired)

    def keys(self) -> list[str]:
        """Keys in LRU order, least recently accessed first."""
        return list(self._entries)

    def stats(self) -> CacheStats:
        total = self._hits + self._misses
        return CacheStats(
            size=len(self._entries),
            capacity=self._capacity,
            hits=self._hits,
            misses=self._misses,
            hit_rate=self._hits / total if total else 0.0,
            approximate_bytes=self._estimate_bytes(),
            evictions=self._evictions,
            expirations=self._expirations,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    # --- internals ---

    def _live_entry(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._expirations += 1
            logger.debug("Cache entry expired: %s", key)
            return None
        return entry

    def _evict_lru(self) -> None:
        key, entry = self._entries.popitem(last=False)
        self._evictions += 1
        logger.debug(
            "Evicted LRU cache entry %s (accessed %d times)", key, entry.access_count
        )

    def _estimate_bytes(self) -> int:
        """Rough UTF-16 footprint of keys and JSON-serialized values."""
        total = 0
        for key, entry in self._entries.items():
            total += len(key) * 2
            try:
                total += len(_serialize(entry.value)) * 2
            except (TypeError, ValueError):
                total += len(repr(entry.value)) * 2
        return total


def _serialize(value: Any) -> str:
    if hasattr(value, "model_dump_json"):
        return value.model_dump_json()
    return json.dumps(value, default=str)
