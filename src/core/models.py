# src/core/models.py — v1
"""Core domain models: Item, CacheEntry, PendingRequest, geometry, stats.

Item and CacheEntry are mutated in place by their owning component
(registry, memory store); everything else is a value object.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field

ItemStatus = Literal["not_ready", "loading", "ready", "error"]
FetchMode = Literal["fast", "normal", "extended"]

NOT_READY: ItemStatus = "not_ready"
LOADING: ItemStatus = "loading"
READY: ItemStatus = "ready"
ERROR: ItemStatus = "error"


# === Geometry ===


class Rect(BaseModel):
    """Axis-aligned bounding box in viewport coordinates."""

    model_config = ConfigDict(frozen=True)

    left: float
    top: float
    width: float = Field(ge=0.0)
    height: float = Field(ge=0.0)

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height

    @property
    def center(self) -> tuple[float, float]:
        return (self.left + self.width / 2, self.top + self.height / 2)

    @property
    def area(self) -> float:
        return self.width * self.height


class Viewport(BaseModel):
    """Visible window dimensions."""

    model_config = ConfigDict(frozen=True)

    width: float = Field(gt=0.0)
    height: float = Field(gt=0.0)

    @property
    def center(self) -> tuple[float, float]:
        return (self.width / 2, self.height / 2)

    @property
    def half_diagonal(self) -> float:
        return math.hypot(self.width, self.height) / 2


class GeometryUpdate(BaseModel):
    """One "visibility/geometry changed" event for an item.

    ``rect=None`` means the item left the page or was hidden.
    """

    key: str
    rect: Rect | None = None
    signals: dict[str, float] = Field(default_factory=dict)


# === Registry ===


class FailureDetail(BaseModel):
    """Last failure recorded against an item."""

    kind: str
    message: str
    retryable: bool = False
    retry_after_s: float | None = None
    occurred_at: datetime


class Item(BaseModel):
    """One catalog entry known to the registry."""

    key: str
    status: ItemStatus = NOT_READY
    result: Any = None
    last_error: FailureDetail | None = None
    context_ref: Any = None
    geometry: Rect | None = None
    signals: dict[str, float] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# === Cache ===


@dataclass
class CacheEntry:
    """One artifact held by the memory store.

    Timestamps come from the store's monotonic clock, not wall time.
    """

    key: str
    value: Any
    created_at: float
    ttl: float
    last_accessed: float
    access_count: int = 0

    def age(self, now: float) -> float:
        return now - self.created_at

    def is_expired(self, now: float) -> bool:
        return self.age(now) > self.ttl


class PersistedEntry(BaseModel):
    """Artifact as stored by a persistence backend (wall-clock epoch seconds)."""

    key: str
    value: Any
    created_at: float
    ttl_s: float

    def remaining_ttl(self, now: float) -> float:
        return self.ttl_s - (now - self.created_at)

    def is_expired(self, now: float) -> bool:
        return self.remaining_ttl(now) < 0


class CacheStats(BaseModel):
    """Snapshot of memory store accounting."""

    size: int
    capacity: int
    hits: int
    misses: int
    hit_rate: float
    approximate_bytes: int
    evictions: int = 0
    expirations: int = 0
    persistence_hits: int = 0


# === Scheduling ===


@dataclass
class PendingRequest:
    """The single in-flight (queued or executing) fetch for a key."""

    key: str
    shared_future: asyncio.Future[Any]
    priority: float
    enqueued_at: float
    fetch_fn: Callable[[str, str], Awaitable[Any]]
    mode: str = "fast"
    on_demand: bool = False
    started: bool = False
    waiters: int = 1


class FetchStats(BaseModel):
    """Aggregate outcome counters for provider fetches."""

    dispatched: int = 0
    succeeded: int = 0
    failed: int = 0
    timeouts: int = 0
    average_latency_ms: float = 0.0
    failures_by_kind: dict[str, int] = Field(default_factory=dict)
    succeeded_by_mode: dict[str, int] = Field(default_factory=dict)


class SchedulerStats(BaseModel):
    """Queue and concurrency snapshot of the request scheduler."""

    queued: int
    active: int
    pending: int
    max_concurrent: int
    fetches: FetchStats
