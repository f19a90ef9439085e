# src/logging/context.py — v2
"""Contextual logging support: attach item_key, fetch_mode, component to records.

The scheduler sets the fetch context inside each fetch task; asyncio copies
the context per task, so concurrent fetches never see each other's keys.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

_item_key: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "item_key", default=None
)
_fetch_mode: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "fetch_mode", default=None
)
_component: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "component", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    item_key: str | None = None
    fetch_mode: str | None = None
    component: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        item_key=_item_key.get(),
        fetch_mode=_fetch_mode.get(),
        component=_component.get(),
    )


def set_fetch_context(item_key: str, fetch_mode: str | None = None) -> None:
    """Set per-fetch context (called inside the fetch task)."""
    _item_key.set(item_key)
    _fetch_mode.set(fetch_mode)


def set_component_context(component: str) -> None:
    _component.set(component)


def clear_context() -> None:
    """Reset all context variables."""
    _item_key.set(None)
    _fetch_mode.set(None)
    _component.set(None)
