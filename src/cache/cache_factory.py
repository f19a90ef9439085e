# src/cache/cache_factory.py — v3
"""Factories for the memory store, persistence tier and tiered cache."""

from __future__ import annotations

from typing import Callable

from quicksight.cache.base_persistence_store import BasePersistenceStore
from quicksight.cache.memory_store import MemoryCacheStore
from quicksight.cache.tiered_cache import TieredCache
from quicksight.config.settings import Settings

SQLITE_FILENAME = "quicksight_cache.db"


def create_persistence_store(
    settings: Settings | None = None,
) -> BasePersistenceStore | None:
    """Instantiate the configured persistence backend.

    Args:
        settings: Application settings. Defaults to no persistence.

    Returns:
        Configured backend, or None when PERSISTENCE_BACKEND=none.
    """
    if settings is None or settings.persistence_backend == "none":
        return None

    backend = settings.persistence_backend
    root = settings.persistence_root.expanduser()

    if backend == "json":
        from quicksight.cache.json_store import JsonPersistenceStore
        return JsonPersistenceStore(root=root)

    if backend == "sqlite":
        from quicksight.cache.sqlite_store import SqlitePersistenceStore
        return SqlitePersistenceStore(db_path=root / SQLITE_FILENAME)

    raise ValueError(f"Unsupported persistence backend: {backend!r}")


def create_cache(
    settings: Settings | None = None,
    clock: Callable[[], float] | None = None,
) -> TieredCache:
    """Build the two-tier cache from settings."""
    settings = settings or Settings()
    memory_kwargs = {} if clock is None else {"clock": clock}
    memory = MemoryCacheStore(
        capacity=settings.cache_capacity,
        default_ttl_s=settings.default_ttl_s,
        **memory_kwargs,
    )
    return TieredCache(memory, persistence=create_persistence_store(settings))
