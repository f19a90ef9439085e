# tests/unit/cache/test_unit_tiered_cache.py — v1
"""Tests for cache/tiered_cache.py — read-through / write-through behavior."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock

import pytest

from quicksight.cache.json_store import JsonPersistenceStore
from quicksight.cache.memory_store import MemoryCacheStore
from quicksight.cache.tiered_cache import TieredCache
from quicksight.core.models import PersistedEntry
from tests.conftest import FakeClock


@pytest.fixture
def wall_clock():
    return FakeClock(start=1_700_000_000.0)


@pytest.fixture
def persistence(tmp_cache_dir):
    return JsonPersistenceStore(root=tmp_cache_dir)


@pytest.fixture
def tiered(fake_clock, wall_clock, persistence):
    memory = MemoryCacheStore(capacity=2, default_ttl_s=60.0, clock=fake_clock)
    return TieredCache(memory, persistence=persistence, wall_clock=wall_clock)


class TestWriteThrough:
    @pytest.mark.asyncio
    async def test_set_writes_both_tiers(self, tiered, persistence):
        await tiered.set("k", {"summary": "s"})
        assert tiered.has("k")
        persisted = await persistence.load("k")
        assert persisted.value == {"summary": "s"}
        assert persisted.ttl_s == 60.0

    @pytest.mark.asyncio
    async def test_persistence_failure_is_logged_not_raised(self, fake_clock, caplog):
        broken = AsyncMock()
        broken.save.side_effect = OSError("disk full")
        tiered = TieredCache(MemoryCacheStore(clock=fake_clock), persistence=broken)
        with caplog.at_level(logging.WARNING):
            await tiered.set("k", "v")
        assert tiered.peek("k") == "v"
        assert "Persistence write failed" in caplog.text


class TestReadThrough:
    @pytest.mark.asyncio
    async def test_memory_hit_skips_persistence(self, tiered):
        await tiered.set("k", "v")
        assert await tiered.get("k") == "v"
        assert tiered.stats().persistence_hits == 0

    @pytest.mark.asyncio
    async def test_promotes_persisted_entry(self, tiered, persistence, wall_clock):
        await persistence.save(
            "k",
            PersistedEntry(key="k", value="warm", created_at=wall_clock.now - 50, ttl_s=60),
        )
        assert await tiered.get("k") == "warm"
        assert tiered.has("k")
        assert tiered.stats().persistence_hits == 1
        # Remaining TTL carried over: 10s left
        assert tiered.memory.entry("k").ttl == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_expired_persisted_entry_is_removed(self, tiered, persistence, wall_clock):
        await persistence.save(
            "k",
            PersistedEntry(key="k", value="stale", created_at=wall_clock.now - 120, ttl_s=60),
        )
        assert await tiered.get("k") is None
        assert await persistence.load("k") is None

    @pytest.mark.asyncio
    async def test_eviction_does_not_cascade(self, tiered, persistence):
        await tiered.set("a", 1)
        await tiered.set("b", 2)
        await tiered.set("c", 3)
        assert not tiered.has("a")
        assert await persistence.load("a") is not None
        assert await tiered.get("a") == 1

    @pytest.mark.asyncio
    async def test_lookalike_key_is_not_served(self, tiered):
        await tiered.set("a/b", {"summary": "for a/b"})
        tiered.clear()
        assert await tiered.get("a_b") is None
        assert await tiered.get("a/b") == {"summary": "for a/b"}

    @pytest.mark.asyncio
    async def test_without_persistence(self, fake_clock):
        tiered = TieredCache(MemoryCacheStore(clock=fake_clock))
        assert await tiered.get("missing") is None
        assert await tiered.promote("missing") is None
        assert await tiered.purge_persisted() == 0


class TestRemoval:
    @pytest.mark.asyncio
    async def test_delete_removes_both_tiers(self, tiered, persistence):
        await tiered.set("k", "v")
        await tiered.delete("k")
        assert not tiered.has("k")
        assert await persistence.load("k") is None

    @pytest.mark.asyncio
    async def test_clear_is_memory_only(self, tiered, persistence):
        await tiered.set("k", "v")
        tiered.clear()
        assert not tiered.has("k")
        assert await persistence.load("k") is not None

    @pytest.mark.asyncio
    async def test_purge_persisted(self, tiered, persistence, wall_clock):
        await tiered.set("k", "v", ttl=10)
        wall_clock.advance(20)
        assert await tiered.purge_persisted() == 1
