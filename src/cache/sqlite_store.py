# src/cache/sqlite_store.py — v2
"""SQLite-based persistence store (PERSISTENCE_BACKEND=sqlite).

Uses stdlib sqlite3. Better than JSON files once many items are persisted,
and expiry purges run as a single indexed DELETE.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from pydantic import ValidationError

from quicksight.cache.base_persistence_store import BasePersistenceStore
from quicksight.core.models import PersistedEntry

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS summary_entries (
    key TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    expires_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_expires_at ON summary_entries(expires_at);
"""


class SqlitePersistenceStore(BasePersistenceStore):
    """SQLite-backed persistence store."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    async def load(self, key: str) -> PersistedEntry | None:
        """Retrieve a persisted entry by key."""
        cursor = self._conn.execute(
            "SELECT data FROM summary_entries WHERE key = ?", (key,)
        )
        row = cursor.fetchone()
        if row is None:
            return None
        try:
            return PersistedEntry.model_validate_json(row[0])
        except ValidationError as e:
            logger.warning("Failed to deserialize persisted entry %s: %s", key, e)
            return None

    async def save(self, key: str, entry: PersistedEntry) -> None:
        """Store an entry (upsert)."""
        self._conn.execute(
            """INSERT OR REPLACE INTO summary_entries (key, data, expires_at)
               VALUES (?, ?, ?)""",
            (key, entry.model_dump_json(), entry.created_at + entry.ttl_s),
        )
        self._conn.commit()

    async def remove(self, key: str) -> None:
        """Remove a persisted entry."""
        self._conn.execute("DELETE FROM summary_entries WHERE key = ?", (key,))
        self._conn.commit()

    async def list_entries(self) -> list[PersistedEntry]:
        """List all readable entries."""
        cursor = self._conn.execute("SELECT data FROM summary_entries ORDER BY key")
        entries: list[PersistedEntry] = []
        for row in cursor.fetchall():
            try:
                entries.append(PersistedEntry.model_validate_json(row[0]))
            except ValidationError:
                continue
        return entries

    async def purge_expired(self, now: float) -> int:
        """Delete expired rows in one statement."""
        cursor = self._conn.execute(
            "DELETE FROM summary_entries WHERE expires_at < ?", (now,)
        )
        self._conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
