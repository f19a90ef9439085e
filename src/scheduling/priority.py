# src/scheduling/priority.py — v1
"""Priority estimation for prefetch candidates.

score() is pure: identical geometry, viewport, weights and signals always
give the same number. The baseline term rewards items whose center is near
the viewport center; every extra signal is normalized into [0, 1] before
its weight is applied, so the weights alone bound each term.
"""

from __future__ import annotations

import math
import re
from typing import Callable, Iterable, Mapping

from quicksight.core.models import Rect, Viewport

DISTANCE = "distance"
POPULARITY = "popularity"
RECENCY = "recency"

DEFAULT_WEIGHTS: dict[str, float] = {DISTANCE: 100.0, POPULARITY: 50.0, RECENCY: 30.0}

# Views at which popularity saturates (log scale).
POPULARITY_SATURATION_VIEWS = 1_000_000_000
# Age at which recency has decayed to one half.
RECENCY_HALF_LIFE_HOURS = 24.0 * 7


def proximity(rect: Rect, viewport: Viewport) -> float:
    """Closeness of the item center to the viewport center, in [0, 1].

    1.0 at the exact center, 0.0 at (or beyond) a half-diagonal away.
    """
    cx, cy = rect.center
    vx, vy = viewport.center
    distance = math.hypot(cx - vx, cy - vy)
    return max(0.0, 1.0 - distance / viewport.half_diagonal)


def visible_fraction(rect: Rect, viewport: Viewport) -> float:
    """Fraction of the item's area currently inside the viewport."""
    if rect.area <= 0:
        return 0.0
    visible_w = min(rect.right, viewport.width) - max(rect.left, 0.0)
    visible_h = min(rect.bottom, viewport.height) - max(rect.top, 0.0)
    if visible_w <= 0 or visible_h <= 0:
        return 0.0
    return (visible_w * visible_h) / rect.area


def _clamp(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, value))


def normalize_popularity(views: float) -> float:
    if views <= 0:
        return 0.0
    return _clamp(math.log10(1.0 + views) / math.log10(1.0 + POPULARITY_SATURATION_VIEWS))


def normalize_recency(age_hours: float) -> float:
    if age_hours < 0:
        return 1.0
    return _clamp(0.5 ** (age_hours / RECENCY_HALF_LIFE_HOURS))


_NORMALIZERS: dict[str, Callable[[float], float]] = {
    POPULARITY: normalize_popularity,
    RECENCY: normalize_recency,
}


def normalize_signal(name: str, raw: float) -> float:
    """Map a raw signal into [0, 1]. Unknown names are clamped as-is."""
    normalizer = _NORMALIZERS.get(name, _clamp)
    return normalizer(float(raw))


def score(
    rect: Rect,
    viewport: Viewport,
    weights: Mapping[str, float] | None = None,
    signals: Mapping[str, float] | None = None,
) -> float:
    """Priority of one item; higher means fetch sooner.

    Signals without a matching weight contribute nothing.
    """
    weights = DEFAULT_WEIGHTS if weights is None else weights
    total = weights.get(DISTANCE, 0.0) * proximity(rect, viewport)
    if signals:
        for name in sorted(signals):
            weight = weights.get(name, 0.0)
            if name == DISTANCE or weight == 0.0:
                continue
            total += weight * normalize_signal(name, signals[name])
    return total


def rank(
    candidates: Iterable[tuple[str, Rect, Mapping[str, float] | None]],
    viewport: Viewport,
    weights: Mapping[str, float] | None = None,
) -> list[tuple[str, float]]:
    """Score candidates and sort by descending score.

    Ties keep input order. Returns (key, score) pairs.
    """
    scored = [
        (key, score(rect, viewport, weights, signals))
        for key, rect, signals in candidates
    ]
    return sorted(scored, key=lambda pair: -pair[1])


# --- Helpers for turning catalog text into raw signals ---

_VIEWS_RE = re.compile(r"([\d][\d,]*(?:\.\d+)?)\s*([KMB]?)", re.IGNORECASE)
_MULTIPLIERS = {"": 1, "K": 1_000, "M": 1_000_000, "B": 1_000_000_000}

_AGE_RE = re.compile(
    r"(\d+)\s*(second|minute|hour|day|week|month|year)s?\s+ago", re.IGNORECASE
)
_HOURS_PER_UNIT = {
    "second": 1 / 3600,
    "minute": 1 / 60,
    "hour": 1.0,
    "day": 24.0,
    "week": 24.0 * 7,
    "month": 24.0 * 30,
    "year": 24.0 * 365,
}


def parse_view_count(text: str | None) -> float:
    """Parse view counts like '1.2M views' or '3,400 views'. 0 if unparsable."""
    if not text:
        return 0.0
    match = _VIEWS_RE.search(text)
    if not match:
        return 0.0
    number = float(match.group(1).replace(",", ""))
    return number * _MULTIPLIERS[match.group(2).upper()]


def parse_age_hours(text: str | None) -> float | None:
    """Parse relative upload ages like '3 days ago'. None if unparsable."""
    if not text:
        return None
    match = _AGE_RE.search(text)
    if not match:
        return None
    return int(match.group(1)) * _HOURS_PER_UNIT[match.group(2).lower()]
