# tests/unit/scheduling/test_unit_scheduler.py — v1
"""Tests for scheduling/scheduler.py — ordering, dedup, concurrency, failures."""

from __future__ import annotations

import asyncio

import pytest

from quicksight.core.errors import (
    FetchTimeoutError,
    InvalidResultError,
    SchedulerClosedError,
    TransientNetworkError,
)
from quicksight.core.models import ERROR, LOADING, READY
from quicksight.scheduling.scheduler import RequestScheduler
from tests.conftest import settle


def _register(registry, *keys):
    for key in keys:
        registry.register(key)


class TestPriorityOrdering:
    @pytest.mark.asyncio
    async def test_burst_dispatches_highest_priorities_first(
        self, scheduler, registry, gated_provider
    ):
        _register(registry, "a", "b", "c", "d", "e")
        for key, priority in [("a", 10), ("b", 5), ("c", 8), ("d", 1), ("e", 9)]:
            scheduler.schedule(key, priority, gated_provider.fetch)
        await settle()

        assert gated_provider.called_keys == ["a", "e", "c"]
        assert scheduler.queued_keys() == ["b", "d"]
        assert scheduler.active == 3

        gated_provider.release("a")
        await settle()
        assert gated_provider.called_keys == ["a", "e", "c", "b"]
        assert scheduler.queued_keys() == ["d"]

    @pytest.mark.asyncio
    async def test_equal_priority_is_fifo(self, cache, registry, gated_provider):
        _register(registry, "busy", "x", "y", "z")
        s = RequestScheduler(cache, registry, max_concurrent=1)
        try:
            s.schedule("busy", 100, gated_provider.fetch)
            await settle()
            for key in ("x", "y", "z"):
                s.schedule(key, 5, gated_provider.fetch)
            assert s.queued_keys() == ["x", "y", "z"]
        finally:
            await s.close()

    @pytest.mark.asyncio
    async def test_concurrency_ceiling(self, scheduler, registry, gated_provider):
        keys = [f"k{i}" for i in range(6)]
        _register(registry, *keys)
        for i, key in enumerate(keys):
            scheduler.schedule(key, i, gated_provider.fetch)
        await settle()
        assert scheduler.active == scheduler.max_concurrent == 3
        assert len(gated_provider.calls) == 3

    @pytest.mark.asyncio
    async def test_loading_marked_at_dispatch(self, cache, registry, gated_provider):
        _register(registry, "busy", "waiting")
        s = RequestScheduler(cache, registry, max_concurrent=1)
        try:
            s.schedule("busy", 2, gated_provider.fetch)
            s.schedule("waiting", 1, gated_provider.fetch)
            await settle()
            assert registry.get("busy").status == LOADING
            assert registry.get("waiting").status == "not_ready"
        finally:
            await s.close()


class TestDeduplication:
    @pytest.mark.asyncio
    async def test_concurrent_on_demand_share_one_fetch(
        self, scheduler, registry, gated_provider
    ):
        _register(registry, "v1")
        first = scheduler.on_demand("v1", gated_provider.fetch)
        second = scheduler.on_demand("v1", gated_provider.fetch)
        assert first is second

        await settle()
        payload = gated_provider.release("v1")
        results = await asyncio.gather(first, second)

        assert results == [payload, payload]
        assert gated_provider.called_keys == ["v1"]
        assert registry.get("v1").status == READY

    @pytest.mark.asyncio
    async def test_schedule_joins_pending_request(self, scheduler, registry, gated_provider):
        _register(registry, "a")
        first = scheduler.schedule("a", 1, gated_provider.fetch)
        second = scheduler.schedule("a", 7, gated_provider.fetch)
        await settle()
        assert first is second
        assert gated_provider.called_keys == ["a"]
        assert scheduler.stats().pending == 1

    @pytest.mark.asyncio
    async def test_new_request_after_settlement(self, scheduler, registry, gated_provider):
        _register(registry, "a")
        first = scheduler.schedule("a", 1, gated_provider.fetch)
        await settle()
        gated_provider.release("a")
        await first
        assert not scheduler.is_pending("a")

        second = scheduler.on_demand("a", gated_provider.fetch)
        assert second is not first
        await settle()
        assert gated_provider.called_keys == ["a", "a"]


class TestOnDemand:
    @pytest.mark.asyncio
    async def test_on_demand_jumps_background_queue(self, cache, registry, gated_provider):
        _register(registry, "busy", "bg", "urgent")
        s = RequestScheduler(cache, registry, max_concurrent=1)
        try:
            s.schedule("busy", 1, gated_provider.fetch)
            await settle()
            s.schedule("bg", 1000, gated_provider.fetch)
            s.on_demand("urgent", gated_provider.fetch)
            assert s.queued_keys() == ["urgent", "bg"]

            gated_provider.release("busy")
            await settle()
            assert gated_provider.calls[-1] == ("urgent", "normal")
        finally:
            await s.close()

    @pytest.mark.asyncio
    async def test_queued_prefetch_is_promoted(self, cache, registry, gated_provider):
        _register(registry, "busy", "bg1", "bg2")
        s = RequestScheduler(cache, registry, max_concurrent=1)
        try:
            s.schedule("busy", 1, gated_provider.fetch)
            await settle()
            s.schedule("bg1", 5, gated_provider.fetch)
            s.schedule("bg2", 9, gated_provider.fetch)
            assert s.queued_keys() == ["bg2", "bg1"]

            future = s.on_demand("bg1", gated_provider.fetch)
            assert future is s.pending_future("bg1")
            assert s.queued_keys() == ["bg1", "bg2"]
            assert not s.reprioritize("bg1", 100)

            gated_provider.release("busy")
            await settle()
            # Promotion keeps the mode it was queued with
            assert gated_provider.calls[-1] == ("bg1", "fast")
        finally:
            await s.close()

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_fetch(
        self, scheduler, registry, gated_provider
    ):
        _register(registry, "a")
        future = scheduler.on_demand("a", gated_provider.fetch)
        waiter = asyncio.ensure_future(asyncio.shield(future))
        await settle()
        waiter.cancel()
        await settle()

        assert gated_provider.is_waiting("a")
        payload = gated_provider.release("a")
        assert await future == payload


class TestReprioritize:
    @pytest.mark.asyncio
    async def test_reorders_queued_key(self, cache, registry, gated_provider):
        _register(registry, "busy", "b", "c")
        s = RequestScheduler(cache, registry, max_concurrent=1)
        try:
            s.schedule("busy", 1, gated_provider.fetch)
            await settle()
            s.schedule("b", 1, gated_provider.fetch)
            s.schedule("c", 2, gated_provider.fetch)
            assert s.queued_keys() == ["c", "b"]

            assert s.reprioritize("b", 10)
            assert s.queued_keys() == ["b", "c"]
        finally:
            await s.close()

    @pytest.mark.asyncio
    async def test_running_or_unknown_key(self, scheduler, registry, gated_provider):
        _register(registry, "a")
        scheduler.schedule("a", 1, gated_provider.fetch)
        await settle()
        assert not scheduler.reprioritize("a", 50)
        assert not scheduler.reprioritize("ghost", 50)


class TestSettlement:
    @pytest.mark.asyncio
    async def test_success_fills_cache_and_registry(
        self, scheduler, registry, cache, gated_provider
    ):
        _register(registry, "a")
        future = scheduler.schedule("a", 1, gated_provider.fetch)
        await settle()
        payload = gated_provider.release("a", {"summary": "done"})

        assert await future == payload
        assert cache.peek("a") == payload
        assert registry.get("a").result == payload
        assert scheduler.active == 0

    @pytest.mark.asyncio
    async def test_failure_is_localized(self, scheduler, registry, cache, gated_provider):
        _register(registry, "bad", "good")
        bad = scheduler.schedule("bad", 2, gated_provider.fetch)
        good = scheduler.schedule("good", 1, gated_provider.fetch)
        await settle()

        gated_provider.fail("bad", ConnectionError("network unreachable"))
        gated_provider.release("good")
        await settle()

        with pytest.raises(TransientNetworkError):
            await bad
        assert await good == {"summary": "summary of good"}

        item = registry.get("bad")
        assert item.status == ERROR
        assert item.last_error.kind == "transient_network"
        assert item.last_error.retryable
        assert not cache.has("bad")
        assert registry.get("good").status == READY

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, scheduler, registry, gated_provider):
        _register(registry, "x")
        seen: list[tuple[str, str]] = []
        registry.subscribe(lambda key, old, new, payload: seen.append((old, new)))

        first = scheduler.on_demand("x", gated_provider.fetch)
        await settle()
        gated_provider.fail("x", RuntimeError("server error 503"))
        with pytest.raises(TransientNetworkError):
            await first

        second = scheduler.on_demand("x", gated_provider.fetch)
        await settle()
        gated_provider.release("x")
        await second

        assert seen == [
            ("not_ready", "loading"),
            ("loading", "error"),
            ("error", "loading"),
            ("loading", "ready"),
        ]

    @pytest.mark.asyncio
    async def test_timeout(self, cache, registry, gated_provider):
        _register(registry, "slow")
        s = RequestScheduler(cache, registry, fetch_timeout_s=0.01)
        try:
            future = s.on_demand("slow", gated_provider.fetch)
            with pytest.raises(FetchTimeoutError):
                await future
            assert registry.get("slow").last_error.kind == "timeout"
            assert s.stats().fetches.timeouts == 1
        finally:
            await s.close()

    @pytest.mark.asyncio
    async def test_provider_timeout_is_not_deadline_expiry(self, scheduler, registry):
        _register(registry, "a")

        async def upstream_timeout(key, mode):
            raise asyncio.TimeoutError()

        with pytest.raises(TransientNetworkError) as exc_info:
            await scheduler.on_demand("a", upstream_timeout)
        assert not isinstance(exc_info.value, FetchTimeoutError)
        assert registry.get("a").last_error.kind == "transient_network"
        assert scheduler.stats().fetches.timeouts == 0

    @pytest.mark.asyncio
    async def test_empty_result_is_invalid(self, scheduler, registry):
        _register(registry, "a")

        async def empty(key, mode):
            return None

        with pytest.raises(InvalidResultError):
            await scheduler.on_demand("a", empty)
        assert registry.get("a").status == ERROR

    @pytest.mark.asyncio
    async def test_deregistered_item_is_ignored(
        self, scheduler, registry, cache, gated_provider
    ):
        _register(registry, "gone")
        future = scheduler.schedule("gone", 1, gated_provider.fetch)
        await settle()
        registry.deregister("gone")
        payload = gated_provider.release("gone")

        assert await future == payload
        assert cache.peek("gone") == payload
        assert "gone" not in registry


class TestClose:
    @pytest.mark.asyncio
    async def test_close_fails_queued_and_running(self, cache, registry, gated_provider):
        _register(registry, "running", "queued")
        s = RequestScheduler(cache, registry, max_concurrent=1)
        running = s.schedule("running", 2, gated_provider.fetch)
        queued = s.schedule("queued", 1, gated_provider.fetch)
        await settle()

        await s.close()

        with pytest.raises(SchedulerClosedError):
            await running
        with pytest.raises(SchedulerClosedError):
            await queued
        assert s.active == 0

    @pytest.mark.asyncio
    async def test_submit_after_close(self, cache, registry, gated_provider):
        s = RequestScheduler(cache, registry)
        await s.close()
        with pytest.raises(SchedulerClosedError):
            s.schedule("a", 1, gated_provider.fetch)
        with pytest.raises(SchedulerClosedError):
            s.on_demand("a", gated_provider.fetch)

    def test_rejects_zero_concurrency(self, cache, registry):
        with pytest.raises(ValueError):
            RequestScheduler(cache, registry, max_concurrent=0)


class TestStats:
    @pytest.mark.asyncio
    async def test_counts(self, scheduler, registry, gated_provider):
        _register(registry, "a", "b")
        fa = scheduler.schedule("a", 1, gated_provider.fetch)
        fb = scheduler.schedule("b", 1, gated_provider.fetch)
        await settle()
        gated_provider.release("a")
        gated_provider.fail("b", ValueError("bad json"))
        await asyncio.gather(fa, fb, return_exceptions=True)

        stats = scheduler.stats()
        assert stats.queued == 0
        assert stats.active == 0
        assert stats.fetches.dispatched == 2
        assert stats.fetches.succeeded == 1
        assert stats.fetches.failures_by_kind == {"invalid_result": 1}
        assert stats.fetches.succeeded_by_mode == {"fast": 1}
