# src/provider/base_provider.py — v1
"""Summary provider interface.

The provider turns an item key into an opaque summary payload. How the
summary is produced (transcripts, model calls, rate limiting) is entirely
the provider's concern; the core only awaits the outcome.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from quicksight.core.models import FetchMode

FetchFn = Callable[[str, str], Awaitable[Any]]


class BaseSummaryProvider(ABC):
    """Unified async interface for summary backends."""

    @abstractmethod
    async def fetch(self, key: str, mode: FetchMode = "normal") -> Any:
        """Produce the summary payload for ``key``.

        Raises:
            PrefetchError subclasses (or any exception, which the scheduler
            classifies) on failure.
        """

    @property
    def provider_name(self) -> str:
        return type(self).__name__


class CallableProvider(BaseSummaryProvider):
    """Adapt a plain ``async def fn(key, mode)`` to the provider interface."""

    def __init__(self, fn: FetchFn, name: str | None = None) -> None:
        self._fn = fn
        self._name = name or getattr(fn, "__name__", "callable")

    async def fetch(self, key: str, mode: FetchMode = "normal") -> Any:
        return await self._fn(key, mode)

    @property
    def provider_name(self) -> str:
        return self._name
