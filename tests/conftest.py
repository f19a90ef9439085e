# tests/conftest.py — v2
"""Shared test fixtures for unit tests.

Provides a controllable clock, a gated summary provider whose fetches the
test settles explicitly, and pre-wired cache/registry/scheduler instances.
No real network or timers are involved except where a test says so.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
import pytest_asyncio

from quicksight.cache.memory_store import MemoryCacheStore
from quicksight.cache.tiered_cache import TieredCache
from quicksight.core.models import Rect, Viewport
from quicksight.provider.base_provider import BaseSummaryProvider
from quicksight.registry.item_registry import ItemRegistry
from quicksight.scheduling.scheduler import RequestScheduler


class FakeClock:
    """Manually advanced clock usable wherever a time source is injected."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class GatedProvider(BaseSummaryProvider):
    """Provider whose fetches block until the test releases or fails them."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self._gates: dict[str, asyncio.Future[Any]] = {}

    async def fetch(self, key: str, mode: str = "normal") -> Any:
        self.calls.append((key, mode))
        gate = asyncio.get_running_loop().create_future()
        self._gates[key] = gate
        return await gate

    @property
    def called_keys(self) -> list[str]:
        return [key for key, _ in self.calls]

    def is_waiting(self, key: str) -> bool:
        return key in self._gates

    def release(self, key: str, value: Any = None) -> Any:
        payload = {"summary": f"summary of {key}"} if value is None else value
        self._gates.pop(key).set_result(payload)
        return payload

    def fail(self, key: str, error: BaseException) -> None:
        self._gates.pop(key).set_exception(error)


async def settle(turns: int = 10) -> None:
    """Let pending callbacks and tasks run for a few loop iterations."""
    for _ in range(turns):
        await asyncio.sleep(0)


# === FIXTURES: Time ===


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


# === FIXTURES: Components ===


@pytest.fixture
def tmp_cache_dir(tmp_path):
    """Temporary directory for persistence backends."""
    d = tmp_path / "cache"
    d.mkdir()
    return d


@pytest.fixture
def memory_store(fake_clock: FakeClock) -> MemoryCacheStore:
    return MemoryCacheStore(capacity=10, default_ttl_s=60.0, clock=fake_clock)


@pytest.fixture
def cache(memory_store: MemoryCacheStore) -> TieredCache:
    return TieredCache(memory_store)


@pytest.fixture
def registry() -> ItemRegistry:
    return ItemRegistry()


@pytest.fixture
def gated_provider() -> GatedProvider:
    return GatedProvider()


@pytest_asyncio.fixture
async def scheduler(cache: TieredCache, registry: ItemRegistry):
    s = RequestScheduler(cache, registry, max_concurrent=3, fetch_timeout_s=5.0)
    yield s
    await s.close()


# === FIXTURES: Geometry ===


@pytest.fixture
def viewport() -> Viewport:
    return Viewport(width=1000, height=800)


@pytest.fixture
def centered_rect(viewport: Viewport) -> Rect:
    """200x100 tile centered in the viewport."""
    return Rect(left=400, top=350, width=200, height=100)
