# src/cache/base_persistence_store.py — v1
"""Abstract persistence tier beneath the in-memory cache.

Backends keep artifacts across process restarts. Freshness is judged with
wall-clock epoch seconds recorded on each PersistedEntry.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from quicksight.core.models import PersistedEntry


class BasePersistenceStore(ABC):
    """Unified interface for persistence backends."""

    @abstractmethod
    async def load(self, key: str) -> PersistedEntry | None:
        """Retrieve a persisted entry, or None if absent or unreadable."""

    @abstractmethod
    async def save(self, key: str, entry: PersistedEntry) -> None:
        """Store an entry (upsert)."""

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove an entry if present."""

    @abstractmethod
    async def list_entries(self) -> list[PersistedEntry]:
        """List every readable persisted entry."""

    async def purge_expired(self, now: float) -> int:
        """Remove entries whose TTL has elapsed at ``now``. Returns the count."""
        removed = 0
        for entry in await self.list_entries():
            if entry.is_expired(now):
                await self.remove(entry.key)
                removed += 1
        return removed

    def close(self) -> None:
        """Release backend resources. No-op by default."""
