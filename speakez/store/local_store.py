"""Durable on-device snapshot storage with an in-memory cache.

The whole snapshot lives in a single SQLite row and is replaced in one
transaction, so readers never observe a partial save.
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from ..errors import MalformedLocalStateError, MalformedSnapshotError
from ..models import Snapshot, legacy_record_id, new_record_id, record_id
from ..timestamps import utc_now

logger = logging.getLogger(__name__)

SCHEMA = """
-- Current snapshot: a single row keyed 'current'
CREATE TABLE IF NOT EXISTS snapshot (
    key TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    saved_at TEXT NOT NULL
);

-- Sync bookkeeping (cursor)
CREATE TABLE IF NOT EXISTS sync_state (
    key TEXT PRIMARY KEY,
    value TEXT
);
"""

SNAPSHOT_KEY = "current"
CURSOR_KEY = "cursor"

SaveListener = Callable[[], Any]


class LocalStore:
    """SQLite-backed store of the canonical snapshot.

    ``load()`` hands out copies of the cache. Callers mutate the copy and
    pass the whole snapshot back to ``save()``.
    """

    def __init__(self, db_path: str | Path):
        """Initialize the local store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None
        self._cache: Snapshot | None = None
        self._listeners: list[SaveListener] = []

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._conn is not None:
            return

        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(self.db_path))
        try:
            conn.executescript(SCHEMA)
            conn.commit()
        except sqlite3.DatabaseError:
            conn.close()
            raise
        conn.row_factory = sqlite3.Row
        self._conn = conn

        logger.info(f"LocalStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    # ==================== Listeners ====================

    def add_listener(self, callback: SaveListener) -> None:
        """Register a callback run after every triggering save."""
        self._listeners.append(callback)

    def remove_listener(self, callback: SaveListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback()
            except Exception as e:
                logger.error(f"Save listener failed: {e}", exc_info=True)

    # ==================== Snapshot ====================

    def _read(self) -> Snapshot:
        try:
            conn = self._ensure_connected()
            row = conn.execute(
                "SELECT data FROM snapshot WHERE key = ?", (SNAPSHOT_KEY,)
            ).fetchone()
        except sqlite3.DatabaseError as e:
            raise MalformedLocalStateError(f"Unreadable database: {e}") from e
        if row is None:
            return Snapshot()

        try:
            snapshot = Snapshot.from_dict(json.loads(row["data"]), strict=False)
        except (ValueError, MalformedSnapshotError) as e:
            raise MalformedLocalStateError(f"Corrupt persisted snapshot: {e}") from e

        _backfill_ids(snapshot)
        return snapshot

    def load(self) -> Snapshot:
        """Return the current snapshot.

        Falls back to schema defaults if the persisted data is corrupt;
        never raises for bad data.

        Returns:
            A copy of the cached snapshot.
        """
        if self._cache is None:
            try:
                self._cache = self._read()
            except MalformedLocalStateError as e:
                logger.warning(f"{e}; falling back to defaults")
                self._cache = Snapshot()
        return self._cache.copy()

    def _write(self, snapshot: Snapshot) -> None:
        conn = self._ensure_connected()
        data = json.dumps(snapshot.to_dict())
        with conn:
            conn.execute(
                """
                INSERT INTO snapshot (key, data, saved_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    data = excluded.data,
                    saved_at = excluded.saved_at
                """,
                (SNAPSHOT_KEY, data, datetime.now().isoformat()),
            )
        self._cache = snapshot.copy()

    def save(self, snapshot: Snapshot) -> Snapshot:
        """Persist a locally mutated snapshot and schedule a push.

        Args:
            snapshot: The full snapshot to store. ``updated_at`` is stamped
                with the current time.

        Returns:
            The stored snapshot.
        """
        snapshot = snapshot.copy()
        snapshot.updated_at = utc_now()
        self._write(snapshot)
        self._notify()
        return snapshot.copy()

    def save_merged(self, snapshot: Snapshot) -> Snapshot:
        """Persist a merge result without stamping or scheduling a push.

        Args:
            snapshot: Output of the merge engine.

        Returns:
            The stored snapshot, with schema defaults filled in.
        """
        snapshot = Snapshot.from_dict(snapshot.to_dict())
        self._write(snapshot)
        return snapshot.copy()

    def clear(self) -> None:
        """Wipe cache, persisted snapshot and sync cursor (user reset)."""
        conn = self._ensure_connected()
        with conn:
            conn.execute("DELETE FROM snapshot")
            conn.execute("DELETE FROM sync_state")
        self._cache = None
        logger.info("Local state cleared")

    def invalidate_cache(self) -> None:
        """Drop the cache so the next load re-reads storage."""
        self._cache = None

    # ==================== Convenience writes ====================

    def update(self, path: str, value: Any) -> Snapshot:
        """Set a value by dotted path and save.

        Args:
            path: Dotted path into the persisted form, e.g. "user.xp".
            value: New value.

        Returns:
            The stored snapshot.
        """
        data = self.load().to_dict()
        keys = path.split(".")
        target = data
        for key in keys[:-1]:
            target = target[key]
        target[keys[-1]] = value
        return self.save(Snapshot.from_dict(data))

    def add_session(self, session: dict[str, Any]) -> dict[str, Any]:
        """Record a completed session at the front of the history.

        A session without an id gets a new uuid; ids are never reassigned.

        Returns:
            The stored session.
        """
        session = dict(session)
        if record_id(session) is None:
            session["id"] = new_record_id()

        snapshot = self.load()
        snapshot.history.insert(0, session)
        self.save(snapshot)
        return session

    def get_user(self) -> dict[str, Any]:
        return self.load().user

    def get_settings(self) -> dict[str, Any]:
        return self.load().settings

    def get_history(self) -> list[dict[str, Any]]:
        return self.load().history

    # ==================== Sync cursor ====================

    def get_cursor(self) -> str | None:
        """Timestamp of the last successful sync, if any."""
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT value FROM sync_state WHERE key = ?", (CURSOR_KEY,)
        ).fetchone()
        return row["value"] if row else None

    def set_cursor(self, value: str) -> None:
        conn = self._ensure_connected()
        with conn:
            conn.execute(
                """
                INSERT INTO sync_state (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (CURSOR_KEY, value),
            )

    def get_stats(self) -> dict[str, Any]:
        """Summary of the stored state."""
        snapshot = self.load()
        return {
            "history_count": len(snapshot.history),
            "custom_workouts_count": len(snapshot.custom_workouts),
            "personal_records_count": len(snapshot.personal_records),
            "updated_at": snapshot.updated_at or None,
            "cursor": self.get_cursor(),
        }


def _backfill_ids(snapshot: Snapshot) -> None:
    for records in (snapshot.history, snapshot.custom_workouts):
        for record in records:
            if isinstance(record, dict) and record_id(record) is None:
                record["id"] = legacy_record_id(record)
