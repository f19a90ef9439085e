# src/cache/json_store.py — v2
"""JSON file-based persistence store (PERSISTENCE_BACKEND=json).

Stores one JSON file per key under PERSISTENCE_ROOT.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from urllib.parse import quote

from pydantic import ValidationError

from quicksight.cache.base_persistence_store import BasePersistenceStore
from quicksight.core.models import PersistedEntry

logger = logging.getLogger(__name__)


class JsonPersistenceStore(BasePersistenceStore):
    """File-based persistence store using JSON files."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    async def load(self, key: str) -> PersistedEntry | None:
        """Retrieve a persisted entry by key."""
        path = self._entry_path(key)
        if not path.exists():
            return None
        try:
            entry = PersistedEntry.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning("Failed to read persisted entry %s: %s", key, e)
            return None
        if entry.key != key:
            logger.warning("Persisted entry %s holds key %r, ignoring", path.name, entry.key)
            return None
        return entry

    async def save(self, key: str, entry: PersistedEntry) -> None:
        """Store an entry, replacing any previous file atomically."""
        path = self._entry_path(key)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(entry.model_dump_json(), encoding="utf-8")
        tmp.replace(path)

    async def remove(self, key: str) -> None:
        """Remove a persisted entry."""
        path = self._entry_path(key)
        if path.exists():
            path.unlink()

    async def list_entries(self) -> list[PersistedEntry]:
        """List all readable entries, skipping corrupt files."""
        entries: list[PersistedEntry] = []
        if not self._root.is_dir():
            return entries

        for path in sorted(self._root.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                entries.append(PersistedEntry(**data))
            except (OSError, json.JSONDecodeError, ValidationError, TypeError):
                logger.debug("Skipping unreadable entry file %s", path.name)
                continue

        return entries

    def _entry_path(self, key: str) -> Path:
        """Return file path for a key (percent-encoded, reversible)."""
        safe_key = quote(key, safe="")
        return self._root / f"{safe_key}.json"
