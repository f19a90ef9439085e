# src/api/models.py — v2
"""API-level models returned by the prefetch coordinator."""

from __future__ import annotations

from pydantic import BaseModel

from quicksight.core.models import CacheStats, SchedulerStats


class CoordinatorStats(BaseModel):
    """Combined cache, scheduler and registry snapshot."""

    cache: CacheStats
    scheduler: SchedulerStats
    items: dict[str, int]
    subscribers: int
