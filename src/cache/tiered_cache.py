# src/cache/tiered_cache.py — v1
"""Two-tier cache: in-memory LRU/TTL store over an optional persistence tier.

Reads go memory first, then persistence (read-through); a fresh persisted
entry is promoted into memory with whatever TTL it has left. Writes go to
both tiers (write-through). Memory evictions do not cascade downwards, so
warm results survive both capacity pressure and process restarts until
their TTL runs out.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from quicksight.cache.base_persistence_store import BasePersistenceStore
from quicksight.cache.memory_store import MemoryCacheStore
from quicksight.core.models import CacheStats, PersistedEntry

logger = logging.getLogger(__name__)


class TieredCache:
    """Read-through/write-through cache facade used by the scheduler."""

    def __init__(
        self,
        memory: MemoryCacheStore,
        persistence: BasePersistenceStore | None = None,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._memory = memory
        self._persistence = persistence
        self._wall_clock = wall_clock
        self._persistence_hits = 0

    @property
    def memory(self) -> MemoryCacheStore:
        return self._memory

    @property
    def persistence(self) -> BasePersistenceStore | None:
        return self._persistence

    def peek(self, key: str) -> Any | None:
        """Memory-only lookup with normal hit/miss accounting."""
        return self._memory.get(key)

    def has(self, key: str) -> bool:
        """Memory-only freshness check."""
        return self._memory.has(key)

    async def get(self, key: str) -> Any | None:
        """Return a fresh value from either tier, or None."""
        value = self._memory.get(key)
        if value is not None:
            return value
        return await self.promote(key)

    async def promote(self, key: str) -> Any | None:
        """Load a fresh persisted value into memory. None if absent or stale."""
        if self._persistence is None:
            return None
        try:
            persisted = await self._persistence.load(key)
        except Exception:
            logger.warning("Persistence lookup failed for %s", key, exc_info=True)
            return None
        if persisted is None:
            return None

        now = self._wall_clock()
        if persisted.is_expired(now):
            logger.debug("Persisted entry expired: %s", key)
            await self._safe_remove(key)
            return None

        self._persistence_hits += 1
        self._memory.set(key, persisted.value, ttl=persisted.remaining_ttl(now))
        logger.debug("Promoted persisted entry into memory: %s", key)
        return persisted.value

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Write both tiers. Persistence failures are logged, never raised."""
        ttl_s = self._memory.default_ttl_s if ttl is None else ttl
        self._memory.set(key, value, ttl=ttl_s)
        await self.write_through(key, value, ttl_s)

    async def write_through(self, key: str, value: Any, ttl_s: float) -> None:
        """Persist a value already written to memory."""
        if self._persistence is None:
            return
        entry = PersistedEntry(
            key=key, value=value, created_at=self._wall_clock(), ttl_s=ttl_s
        )
        try:
            await self._persistence.save(key, entry)
        except Exception:
            logger.warning("Persistence write failed for %s", key, exc_info=True)

    async def delete(self, key: str) -> None:
        self._memory.delete(key)
        await self._safe_remove(key)

    def clear(self) -> None:
        """Clear the memory tier only."""
        self._memory.clear()

    def sweep(self) -> int:
        return self._memory.sweep()

    async def purge_persisted(self) -> int:
        """Remove expired persisted entries. Returns the count removed."""
        if self._persistence is None:
            return 0
        return await self._persistence.purge_expired(self._wall_clock())

    def stats(self) -> CacheStats:
        stats = self._memory.stats()
        return stats.model_copy(update={"persistence_hits": self._persistence_hits})

    def close(self) -> None:
        if self._persistence is not None:
            self._persistence.close()

    async def _safe_remove(self, key: str) -> None:
        if self._persistence is None:
            return
        try:
            await self._persistence.remove(key)
        except Exception:
            logger.warning("Persistence remove failed for %s", key, exc_info=True)
