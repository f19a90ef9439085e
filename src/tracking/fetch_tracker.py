# src/tracking/fetch_tracker.py — v1
"""Fetch outcome tracking: latency window and success/failure counters."""

from __future__ import annotations

from collections import Counter, deque

from quicksight.core.models import FetchStats

LATENCY_WINDOW = 100


class FetchTracker:
    """Accumulates per-fetch outcomes reported by the scheduler.

    Latency is averaged over the last LATENCY_WINDOW settled fetches.
    """

    def __init__(self, window: int = LATENCY_WINDOW) -> None:
        self._latencies_ms: deque[float] = deque(maxlen=window)
        self._dispatched = 0
        self._succeeded_by_mode: Counter[str] = Counter()
        self._failures_by_kind: Counter[str] = Counter()

    def record_dispatch(self) -> None:
        self._dispatched += 1

    def record_success(self, mode: str, latency_ms: float) -> None:
        self._succeeded_by_mode[mode] += 1
        self._latencies_ms.append(latency_ms)

    def record_failure(self, kind: str, latency_ms: float) -> None:
        self._failures_by_kind[kind] += 1
        self._latencies_ms.append(latency_ms)

    def stats(self) -> FetchStats:
        latencies = list(self._latencies_ms)
        return FetchStats(
            dispatched=self._dispatched,
            succeeded=sum(self._succeeded_by_mode.values()),
            failed=sum(self._failures_by_kind.values()),
            timeouts=self._failures_by_kind.get("timeout", 0),
            average_latency_ms=sum(latencies) / len(latencies) if latencies else 0.0,
            failures_by_kind=dict(self._failures_by_kind),
            succeeded_by_mode=dict(self._succeeded_by_mode),
        )
