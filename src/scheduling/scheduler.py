# src/scheduling/scheduler.py — v1
"""Bounded-concurrency, priority-ordered request scheduler.

All state (queue, dedup table, active count) is mutated on the event loop
thread only, so no locks are needed. Dispatch order:
  1. on-demand band, FIFO
  2. background band, descending priority, FIFO among equal priority

A key owns at most one PendingRequest from acceptance until settlement;
every caller for that key awaits the same shared future. Callers that may be
cancelled should await it through ``asyncio.shield``.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from typing import Any, Callable

from quicksight.cache.tiered_cache import TieredCache
from quicksight.core.errors import (
    FetchTimeoutError,
    InvalidResultError,
    InvalidTransitionError,
    PrefetchError,
    SchedulerClosedError,
    classify_error,
)
from quicksight.core.models import (
    ERROR,
    LOADING,
    READY,
    ItemStatus,
    PendingRequest,
    SchedulerStats,
)
from quicksight.logging.context import set_fetch_context
from quicksight.provider.base_provider import FetchFn
from quicksight.registry.item_registry import ItemRegistry
from quicksight.tracking.fetch_tracker import FetchTracker

logger = logging.getLogger(__name__)

_ON_DEMAND = 0
_BACKGROUND = 1

# (band, -priority, sequence, key)
_QueueEntry = tuple[int, float, int, str]


def _consume_exception(future: asyncio.Future[Any]) -> None:
    # Prefetch futures often have no awaiter; keep asyncio from warning.
    if not future.cancelled():
        future.exception()


class RequestScheduler:
    """Priority queue + dedup table + concurrency ceiling."""

    def __init__(
        self,
        cache: TieredCache,
        registry: ItemRegistry,
        max_concurrent: int = 3,
        fetch_timeout_s: float = 30.0,
        result_ttl_s: float | None = None,
        tracker: FetchTracker | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._cache = cache
        self._registry = registry
        self._max_concurrent = max_concurrent
        self._fetch_timeout_s = fetch_timeout_s
        self._result_ttl_s = result_ttl_s
        self._tracker = tracker or FetchTracker()
        self._clock = clock

        self._heap: list[_QueueEntry] = []
        self._queued: dict[str, _QueueEntry] = {}
        self._pending: dict[str, PendingRequest] = {}
        self._active = 0
        self._seq = itertools.count()
        self._tasks: set[asyncio.Task[None]] = set()
        self._drain_scheduled = False
        self._closed = False

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def active(self) -> int:
        return self._active

    @property
    def tracker(self) -> FetchTracker:
        return self._tracker

    # --- submission ---

    def schedule(
        self, key: str, priority: float, fetch_fn: FetchFn, mode: str = "fast"
    ) -> asyncio.Future[Any]:
        """Queue background work for ``key``, or join its pending request.

        Raises:
            SchedulerClosedError: If the scheduler has been closed.
        """
        self._check_open()
        pending = self._pending.get(key)
        if pending is not None:
            pending.waiters += 1
            logger.debug("Deduplicating request for %s (%d waiters)", key, pending.waiters)
            return pending.shared_future

        pending = self._accept(key, priority, fetch_fn, mode, on_demand=False)
        self._push(key, _BACKGROUND, priority)
        self._request_drain()
        return pending.shared_future

    def on_demand(
        self, key: str, fetch_fn: FetchFn, mode: str = "normal"
    ) -> asyncio.Future[Any]:
        """Queue ``key`` ahead of all background work.

        A key already queued as background work is promoted into the
        on-demand band; an executing one just returns its future.
        """
        self._check_open()
        pending = self._pending.get(key)
        if pending is not None:
            pending.waiters += 1
            if not pending.started and not pending.on_demand:
                pending.on_demand = True
                self._push(key, _ON_DEMAND, pending.priority)
                logger.debug("Promoted queued prefetch %s to on-demand", key)
            return pending.shared_future

        pending = self._accept(key, float("inf"), fetch_fn, mode, on_demand=True)
        self._push(key, _ON_DEMAND, pending.priority)
        self._request_drain()
        return pending.shared_future

    def reprioritize(self, key: str, priority: float) -> bool:
        """Re-rank a queued background key. False if it is not re-rankable."""
        pending = self._pending.get(key)
        if pending is None or pending.started or pending.on_demand:
            return False
        if pending.priority != priority:
            pending.priority = priority
            self._push(key, _BACKGROUND, priority)
        return True

    # --- dispatch ---

    def drain(self) -> None:
        """Start queued fetches while below the concurrency ceiling."""
        self._drain_scheduled = False
        if self._closed:
            return
        while self._active < self._max_concurrent:
            key = self._pop()
            if key is None:
                break
            self._dispatch(self._pending[key])

    def _request_drain(self) -> None:
        # Coalesce enqueues made in the same loop turn into one drain, so a
        # burst of schedule() calls is dispatched in priority order.
        if self._drain_scheduled:
            return
        self._drain_scheduled = True
        asyncio.get_running_loop().call_soon(self.drain)

    def _dispatch(self, pending: PendingRequest) -> None:
        pending.started = True
        self._active += 1
        self._tracker.record_dispatch()
        logger.debug(
            "Dispatching %s (priority=%s, active=%d/%d)",
            pending.key, pending.priority, self._active, self._max_concurrent,
        )
        self._set_status(pending.key, LOADING)
        task = asyncio.get_running_loop().create_task(self._run(pending))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, pending: PendingRequest) -> None:
        key = pending.key
        set_fetch_context(key, pending.mode)
        started = self._clock()
        try:
            value = await asyncio.wait_for(
                self._call_provider(pending), timeout=self._fetch_timeout_s
            )
            if value is None:
                raise InvalidResultError(f"Provider returned no result for {key!r}")
        except asyncio.CancelledError:
            self._settle_failure(
                pending, SchedulerClosedError(f"Fetch for {key!r} cancelled"), started
            )
            raise
        except asyncio.TimeoutError:
            self._settle_failure(
                pending, FetchTimeoutError(key, self._fetch_timeout_s), started
            )
        except Exception as exc:
            self._settle_failure(pending, classify_error(exc), started)
        else:
            ttl_s = self._settle_success(pending, value, started)
            await self._cache.write_through(key, value, ttl_s)

    async def _call_provider(self, pending: PendingRequest) -> Any:
        try:
            return await pending.fetch_fn(pending.key, pending.mode)
        except asyncio.TimeoutError as exc:
            # Provider-side timeout; only wait_for's own expiry is a FetchTimeoutError
            raise classify_error(exc) from exc

    # --- settlement ---

    def _settle_success(self, pending: PendingRequest, value: Any, started: float) -> float:
        key = pending.key
        latency_ms = (self._clock() - started) * 1000.0
        self._release(pending)

        ttl_s = self._result_ttl_s or self._cache.memory.default_ttl_s
        self._cache.memory.set(key, value, ttl=ttl_s)
        self._tracker.record_success(pending.mode, latency_ms)
        self._set_status(key, READY, value)
        if not pending.shared_future.done():
            pending.shared_future.set_result(value)

        logger.info("Fetched %s in %.0fms (%s)", key, latency_ms, pending.mode)
        self.drain()
        return ttl_s

    def _settle_failure(
        self, pending: PendingRequest, error: PrefetchError, started: float
    ) -> None:
        key = pending.key
        latency_ms = (self._clock() - started) * 1000.0
        self._release(pending)

        self._tracker.record_failure(error.kind, latency_ms)
        self._set_status(key, ERROR, error.to_detail())
        if not pending.shared_future.done():
            pending.shared_future.set_exception(error)

        logger.warning("Fetch failed for %s (%s): %s", key, error.kind, error)
        self.drain()

    def _release(self, pending: PendingRequest) -> None:
        self._active -= 1
        if self._pending.get(pending.key) is pending:
            del self._pending[pending.key]

    def _set_status(self, key: str, status: ItemStatus, payload: Any = None) -> None:
        try:
            self._registry.transition(key, status, payload)
        except InvalidTransitionError as e:
            logger.warning("Skipping status update: %s", e)

    # --- queue internals ---

    def _accept(
        self, key: str, priority: float, fetch_fn: FetchFn, mode: str, on_demand: bool
    ) -> PendingRequest:
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        future.add_done_callback(_consume_exception)
        pending = PendingRequest(
            key=key,
            shared_future=future,
            priority=priority,
            enqueued_at=self._clock(),
            mode=mode,
            on_demand=on_demand,
            fetch_fn=fetch_fn,
        )
        self._pending[key] = pending
        return pending

    def _push(self, key: str, band: int, priority: float) -> None:
        rank = 0.0 if band == _ON_DEMAND else -priority
        entry: _QueueEntry = (band, rank, next(self._seq), key)
        # Any older heap entry for the key is now stale and skipped on pop
        self._queued[key] = entry
        heapq.heappush(self._heap, entry)

    def _pop(self) -> str | None:
        while self._heap:
            entry = heapq.heappop(self._heap)
            key = entry[3]
            if self._queued.get(key) is entry:
                del self._queued[key]
                return key
        return None

    # --- inspection ---

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def pending_future(self, key: str) -> asyncio.Future[Any] | None:
        pending = self._pending.get(key)
        return None if pending is None else pending.shared_future

    def queued_keys(self) -> list[str]:
        """Queued (not yet executing) keys in dispatch order."""
        return [entry[3] for entry in sorted(self._queued.values())]

    def stats(self) -> SchedulerStats:
        return SchedulerStats(
            queued=len(self._queued),
            active=self._active,
            pending=len(self._pending),
            max_concurrent=self._max_concurrent,
            fetches=self._tracker.stats(),
        )

    # --- shutdown ---

    def _check_open(self) -> None:
        if self._closed:
            raise SchedulerClosedError("Scheduler is closed")

    async def close(self) -> None:
        """Fail queued work, cancel running fetches and wait for them."""
        if self._closed:
            return
        self._closed = True

        for key in list(self._queued):
            pending = self._pending.pop(key)
            if not pending.shared_future.done():
                pending.shared_future.set_exception(
                    SchedulerClosedError(f"Scheduler closed before {key!r} was fetched")
                )
        self._queued.clear()
        self._heap.clear()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug("Scheduler closed (%d running fetches cancelled)", len(tasks))
