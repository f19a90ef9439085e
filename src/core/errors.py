# src/core/errors.py — v1
"""Error taxonomy for summary fetches and registry consistency.

Every fetch failure is localized to one key: the scheduler resolves that
key's shared future with one of these errors and records a FailureDetail on
the item. Nothing here is retried automatically.
"""

from __future__ import annotations

import asyncio
import re
from datetime import datetime, timezone

from quicksight.core.models import FailureDetail

_RATE_LIMIT_RE = re.compile(r"\b429\b|\brate[ _-]?limit|\btoo many requests\b", re.IGNORECASE)


class PrefetchError(Exception):
    """Base class for all prefetch-core errors."""

    kind = "prefetch_error"
    retryable = False

    def to_detail(self) -> FailureDetail:
        """Snapshot this error as a FailureDetail payload."""
        return FailureDetail(
            kind=self.kind,
            message=str(self),
            retryable=self.retryable,
            retry_after_s=getattr(self, "retry_after_s", None),
            occurred_at=datetime.now(timezone.utc),
        )


class TransientNetworkError(PrefetchError):
    """Provider could not be reached; a later explicit request may succeed."""

    kind = "transient_network"
    retryable = True


class FetchTimeoutError(TransientNetworkError):
    """Fetch exceeded the configured timeout."""

    kind = "timeout"

    def __init__(self, key: str, timeout_s: float) -> None:
        self.key = key
        self.timeout_s = timeout_s
        super().__init__(f"Fetch for {key!r} timed out after {timeout_s:.1f}s")


class RateLimitedError(PrefetchError):
    """Provider asked us to back off before retrying."""

    kind = "rate_limited"
    retryable = True

    def __init__(self, message: str = "Rate limited", retry_after_s: float | None = None) -> None:
        self.retry_after_s = retry_after_s
        super().__init__(message)


class InvalidResultError(PrefetchError):
    """Provider returned unusable data."""

    kind = "invalid_result"


class UnknownKeyError(PrefetchError, KeyError):
    """Key is not present in the item registry."""

    kind = "unknown_key"

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(key)

    def __str__(self) -> str:
        return f"Unknown item key: {self.key!r}"


class InvalidTransitionError(PrefetchError, ValueError):
    """Requested status change is not allowed by the item state machine."""

    kind = "invalid_transition"

    def __init__(self, key: str, old: str, new: str) -> None:
        self.key = key
        self.old = old
        self.new = new
        super().__init__(f"Invalid transition for {key!r}: {old} -> {new}")


class SchedulerClosedError(PrefetchError):
    """Work was submitted to, or cut short by, a closed scheduler."""

    kind = "scheduler_closed"


def classify_error(error: BaseException) -> PrefetchError:
    """Map an arbitrary provider exception into the taxonomy.

    Errors already in the taxonomy pass through unchanged.
    """
    if isinstance(error, PrefetchError):
        return error

    msg = str(error).lower()
    name = type(error).__name__.lower()

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)) or "timeout" in name:
        classified: PrefetchError = TransientNetworkError(f"Timeout: {error}")
    elif _RATE_LIMIT_RE.search(msg):
        classified = RateLimitedError(str(error) or "Rate limited")
    elif isinstance(error, (ConnectionError, OSError)) or any(
        c in msg for c in ("500", "502", "503", "504", "server", "connection", "network")
    ):
        classified = TransientNetworkError(str(error) or name)
    elif isinstance(error, (ValueError, TypeError)) or any(
        c in msg for c in ("json", "parse", "decode", "validation")
    ):
        classified = InvalidResultError(str(error) or name)
    else:
        classified = TransientNetworkError(f"{type(error).__name__}: {error}")

    classified.__cause__ = error
    return classified
