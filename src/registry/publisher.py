# src/registry/publisher.py — v1
"""Status publisher: observer hook for item status transitions."""

from __future__ import annotations

import logging
from typing import Any, Callable

from quicksight.core.models import ItemStatus

logger = logging.getLogger(__name__)

StatusListener = Callable[[str, ItemStatus, ItemStatus, Any], None]


class StatusPublisher:
    """Fan out (key, old_status, new_status, payload) to subscribers.

    Listeners run synchronously in subscription order. A listener that
    raises is logged and skipped; the remaining listeners still run.
    """

    def __init__(self) -> None:
        self._listeners: list[StatusListener] = []

    def subscribe(self, listener: StatusListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: StatusListener) -> bool:
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def publish(
        self, key: str, old: ItemStatus, new: ItemStatus, payload: Any = None
    ) -> None:
        # Copy so listeners may unsubscribe themselves mid-dispatch
        for listener in list(self._listeners):
            try:
                listener(key, old, new, payload)
            except Exception:
                logger.warning(
                    "Status listener %r failed for %s (%s -> %s)",
                    listener, key, old, new, exc_info=True,
                )

    def __len__(self) -> int:
        return len(self._listeners)
