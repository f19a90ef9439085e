# src/api/coordinator.py — v1
"""Prefetch coordinator: public entry point wiring cache, registry and scheduler.

Usage:
    from quicksight.api.coordinator import create_coordinator
    coordinator = create_coordinator(provider)
    await coordinator.start()
    coordinator.register_item("abc123", context_ref=tile)
    await coordinator.report_viewport(viewport, [GeometryUpdate(key="abc123", rect=rect)])
    summary = await coordinator.request("abc123")
    await coordinator.close()

Every collaborator is an explicit instance handed in at construction; there
is no module-level state.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable, Iterable, Mapping

from quicksight.api.models import CoordinatorStats
from quicksight.cache.tiered_cache import TieredCache
from quicksight.config.settings import Settings
from quicksight.core.errors import UnknownKeyError
from quicksight.core.models import (
    LOADING,
    READY,
    GeometryUpdate,
    Item,
    Rect,
    Viewport,
)
from quicksight.provider.base_provider import BaseSummaryProvider, CallableProvider
from quicksight.registry.item_registry import ItemRegistry, RediscoverHook
from quicksight.registry.publisher import StatusListener
from quicksight.scheduling.priority import rank, visible_fraction
from quicksight.scheduling.scheduler import RequestScheduler

logger = logging.getLogger(__name__)


class PrefetchCoordinator:
    """Turns geometry events into prefetches and serves on-demand lookups."""

    def __init__(
        self,
        provider: BaseSummaryProvider,
        cache: TieredCache,
        registry: ItemRegistry,
        scheduler: RequestScheduler,
        settings: Settings,
    ) -> None:
        self._provider = provider
        self._cache = cache
        self._registry = registry
        self._scheduler = scheduler
        self._settings = settings
        self._sweep_task: asyncio.Task[None] | None = None

    @property
    def cache(self) -> TieredCache:
        return self._cache

    @property
    def registry(self) -> ItemRegistry:
        return self._registry

    @property
    def scheduler(self) -> RequestScheduler:
        return self._scheduler

    # --- items ---

    def register_item(
        self,
        key: str,
        context_ref: Any = None,
        rect: Rect | None = None,
        signals: Mapping[str, float] | None = None,
    ) -> Item:
        return self._registry.register(key, context_ref, geometry=rect, signals=signals)

    def deregister_item(self, key: str) -> bool:
        return self._registry.deregister(key)

    def subscribe(self, listener: StatusListener) -> None:
        self._registry.subscribe(listener)

    def unsubscribe(self, listener: StatusListener) -> bool:
        return self._registry.unsubscribe(listener)

    # --- prefetch ---

    async def report_viewport(
        self, viewport: Viewport, updates: Iterable[GeometryUpdate] = ()
    ) -> list[str]:
        """Apply geometry changes, then prefetch the best visible candidates.

        Returns:
            Keys newly handed to the scheduler.
        """
        for update in updates:
            try:
                self._registry.update_geometry(update.key, update.rect, update.signals)
            except UnknownKeyError:
                logger.warning("Geometry update for unknown item %s ignored", update.key)

        min_visible = self._settings.min_visible_fraction
        candidates = [
            (item.key, item.geometry, item.signals)
            for item in self._registry.items()
            if item.geometry is not None
            and visible_fraction(item.geometry, viewport) >= min_visible
        ]
        ranked = rank(candidates, viewport, self._settings.priority_weights)
        ranked = ranked[: self._settings.prefetch_batch_limit]

        scheduled: list[str] = []
        for key, priority in ranked:
            if self._scheduler.is_pending(key):
                self._scheduler.reprioritize(key, priority)
                continue
            entry = self._cache.memory.entry(key)
            if entry is not None:
                self._adopt(key, entry.value)
                continue
            value = await self._cache.promote(key)
            if value is not None:
                self._adopt(key, value)
                continue
            if key not in self._registry or self._scheduler.is_pending(key):
                # Changed while the persistence tier was consulted
                continue
            self._scheduler.schedule(
                key, priority, self._provider.fetch, mode=self._settings.prefetch_mode
            )
            scheduled.append(key)

        if scheduled:
            logger.debug("Prefetch scheduled for %d items: %s", len(scheduled), scheduled)
        return scheduled

    # --- on-demand ---

    async def request(self, key: str, mode: str | None = None) -> Any:
        """Return the summary for ``key``, fetching it ahead of prefetch work on a miss.

        Raises:
            UnknownKeyError: If the key is not registered and cannot be rediscovered.
            PrefetchError: The classified fetch failure.
        """
        self._registry.require(key)
        value = await self._cache.get(key)
        if value is not None:
            self._adopt(key, value)
            return value

        future = self._scheduler.on_demand(
            key, self._provider.fetch, mode=mode or self._settings.on_demand_mode
        )
        return await asyncio.shield(future)

    def cached(self, key: str) -> Any | None:
        """Memory-only lookup for instant display."""
        return self._cache.peek(key)

    def _adopt(self, key: str, value: Any) -> None:
        item = self._registry.get(key)
        if item is None or item.status in (READY, LOADING):
            return
        self._registry.transition(key, READY, value)

    # --- lifecycle ---

    async def start(self) -> None:
        """Start the periodic expiry sweep."""
        if self._sweep_task is None:
            self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def close(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None
        await self._scheduler.close()
        self._cache.close()

    async def __aenter__(self) -> PrefetchCoordinator:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _sweep_loop(self) -> None:
        interval = self._settings.sweep_interval_s
        while True:
            await asyncio.sleep(interval)
            await self.sweep()

    async def sweep(self) -> int:
        """One expiry pass over both tiers. Returns entries removed."""
        removed = self._cache.sweep()
        try:
            removed += await self._cache.purge_persisted()
        except Exception:
            logger.warning("Persisted entry purge failed", exc_info=True)
        if removed:
            logger.info("Cleaned %d expired cache entries", removed)
        return removed

    def stats(self) -> CoordinatorStats:
        return CoordinatorStats(
            cache=self._cache.stats(),
            scheduler=self._scheduler.stats(),
            items=self._registry.counts(),
            subscribers=len(self._registry.publisher),
        )


def create_coordinator(
    provider: BaseSummaryProvider | Callable[[str, str], Awaitable[Any]],
    settings: Settings | None = None,
    rediscover: RediscoverHook | None = None,
    cache: TieredCache | None = None,
) -> PrefetchCoordinator:
    """Build a coordinator and its collaborators from settings.

    Args:
        provider: Summary provider, or a bare ``async fn(key, mode)``.
        settings: Application settings. Loaded from .env if None.
        rediscover: Optional hook re-registering items the registry lost.
        cache: Pre-built cache (tests, shared tiers). Built from settings if None.
    """
    from quicksight.cache.cache_factory import create_cache

    settings = settings or Settings()
    if not isinstance(provider, BaseSummaryProvider):
        provider = CallableProvider(provider)

    cache = cache or create_cache(settings)
    registry = ItemRegistry(rediscover=rediscover)
    scheduler = RequestScheduler(
        cache=cache,
        registry=registry,
        max_concurrent=settings.max_concurrent_requests,
        fetch_timeout_s=settings.fetch_timeout_s,
        result_ttl_s=settings.default_ttl_s,
    )
    logger.debug(
        "Coordinator ready: provider=%s, concurrency=%d, capacity=%d",
        provider.provider_name, settings.max_concurrent_requests, settings.cache_capacity,
    )
    return PrefetchCoordinator(provider, cache, registry, scheduler, settings)
