# src/registry/item_registry.py — v1
"""Item registry: authoritative map of known items to lifecycle status.

Status machine (no terminal state)::

    not_ready -> loading -> ready | error
    ready     -> loading
    error     -> loading

plus the cache-hit adoption edges not_ready -> ready and error -> ready,
taken when a lookup finds a cached artifact the item does not yet reflect.

The registry stores each item's context_ref as an opaque back-reference and
never dereferences it.
"""

from __future__ import annotations

import logging
from collections import Counter, OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Mapping

from quicksight.core.errors import InvalidTransitionError, UnknownKeyError
from quicksight.core.models import (
    ERROR,
    LOADING,
    NOT_READY,
    READY,
    Item,
    ItemStatus,
    Rect,
)
from quicksight.registry.publisher import StatusListener, StatusPublisher

logger = logging.getLogger(__name__)

RediscoverHook = Callable[[str], Any]

# Deregistered keys remembered so late fetch results are dropped quietly
MAX_TOMBSTONES = 1000

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    NOT_READY: frozenset({LOADING, READY}),
    LOADING: frozenset({READY, ERROR}),
    READY: frozenset({LOADING}),
    ERROR: frozenset({LOADING, READY}),
}


def is_allowed(old: ItemStatus, new: ItemStatus) -> bool:
    return new in ALLOWED_TRANSITIONS[old]


class ItemRegistry:
    """Known items plus their status, with an observer hook."""

    def __init__(
        self,
        publisher: StatusPublisher | None = None,
        rediscover: RediscoverHook | None = None,
        max_tombstones: int = MAX_TOMBSTONES,
    ) -> None:
        self._items: dict[str, Item] = {}
        self._deregistered: OrderedDict[str, None] = OrderedDict()
        self._max_tombstones = max_tombstones
        self._publisher = publisher or StatusPublisher()
        self._rediscover = rediscover

    @property
    def publisher(self) -> StatusPublisher:
        return self._publisher

    def set_rediscover_hook(self, hook: RediscoverHook | None) -> None:
        self._rediscover = hook

    # --- membership ---

    def register(
        self,
        key: str,
        context_ref: Any = None,
        geometry: Rect | None = None,
        signals: Mapping[str, float] | None = None,
    ) -> Item:
        """Insert an item in not_ready status; idempotent.

        Re-registering a known key refreshes its context and geometry but
        keeps its status.
        """
        self._deregistered.pop(key, None)
        item = self._items.get(key)
        if item is None:
            item = Item(
                key=key,
                context_ref=context_ref,
                geometry=geometry,
                signals=dict(signals or {}),
            )
            self._items[key] = item
            logger.debug("Registered item %s", key)
            return item

        if context_ref is not None:
            item.context_ref = context_ref
        if geometry is not None:
            item.geometry = geometry
        if signals:
            item.signals.update(signals)
        return item

    def deregister(self, key: str) -> bool:
        """Remove an item. Later status updates for it become no-ops."""
        item = self._items.pop(key, None)
        if item is None:
            return False
        self._deregistered[key] = None
        self._deregistered.move_to_end(key)
        while len(self._deregistered) > self._max_tombstones:
            self._deregistered.popitem(last=False)
        logger.debug("Deregistered item %s (status=%s)", key, item.status)
        return True

    def get(self, key: str) -> Item | None:
        return self._items.get(key)

    def require(self, key: str) -> Item:
        """Return the item, attempting one rediscovery if it is unknown.

        Raises:
            UnknownKeyError: If the key is still unknown afterwards.
        """
        item = self._items.get(key)
        if item is None and self._try_rediscover(key):
            item = self._items.get(key)
        if item is None:
            raise UnknownKeyError(key)
        return item

    def update_geometry(
        self,
        key: str,
        geometry: Rect | None,
        signals: Mapping[str, float] | None = None,
    ) -> Item:
        """Replace the item's geometry. None marks it hidden."""
        item = self.require(key)
        item.geometry = geometry
        if signals:
            item.signals.update(signals)
        return item

    # --- status ---

    def transition(self, key: str, status: ItemStatus, payload: Any = None) -> bool:
        """Move an item to ``status`` and notify subscribers.

        Returns False when the update was discarded (deregistered key, or an
        unknown key that rediscovery could not recover).

        Raises:
            InvalidTransitionError: If the state machine forbids the change.
        """
        item = self._items.get(key)
        if item is None:
            if key in self._deregistered:
                logger.debug("Ignoring %s update for deregistered item %s", status, key)
                return False
            if not self._try_rediscover(key) or key not in self._items:
                logger.error(
                    "Unrecoverable registry inconsistency: %s update for unknown item %s discarded",
                    status, key,
                )
                return False
            # Earlier state was lost; the rediscovered item adopts the target.
            self._apply(self._items[key], status, payload)
            return True

        if not is_allowed(item.status, status):
            raise InvalidTransitionError(key, item.status, status)
        self._apply(item, status, payload)
        return True

    def subscribe(self, listener: StatusListener) -> None:
        self._publisher.subscribe(listener)

    def unsubscribe(self, listener: StatusListener) -> bool:
        return self._publisher.unsubscribe(listener)

    # --- inspection ---

    def keys(self) -> list[str]:
        return list(self._items)

    def items(self) -> list[Item]:
        return list(self._items.values())

    def counts(self) -> dict[str, int]:
        """Number of items per status (every status present)."""
        counter = Counter(item.status for item in self._items.values())
        return {s: counter.get(s, 0) for s in ALLOWED_TRANSITIONS}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    # --- internals ---

    def _apply(self, item: Item, status: ItemStatus, payload: Any) -> None:
        old = item.status
        item.status = status
        if status == READY:
            item.result = payload
            item.last_error = None
        elif status == ERROR:
            item.result = None
            item.last_error = payload
        else:
            item.result = None
            item.last_error = None
        item.updated_at = datetime.now(timezone.utc)
        logger.debug("Item %s: %s -> %s", item.key, old, status)
        self._publisher.publish(item.key, old, status, payload)

    def _try_rediscover(self, key: str) -> bool:
        """Invoke the rediscovery hook once. True if the key is now known."""
        if self._rediscover is None:
            return False
        try:
            self._rediscover(key)
        except Exception:
            logger.warning("Rediscovery hook failed for %s", key, exc_info=True)
            return False
        found = key in self._items
        if found:
            logger.info("Rediscovered item %s", key)
        return found
