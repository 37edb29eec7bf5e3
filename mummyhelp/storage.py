"""SQLite backed key-value persistence for mummyhelp."""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

APP_DIR = Path.home() / ".mummyhelp"
DB_PATH = APP_DIR / "store.db"
SCHEMA_VERSION = 1


class StorageError(RuntimeError):
    """Raised when something goes wrong while accessing the storage."""


class KeyValueStore(Protocol):
    """Asynchronous string store used for settings persistence."""

    async def get(self, key: str) -> Optional[str]:
        """Return the stored value or ``None`` when the key is absent."""

    async def set(self, key: str, value: str) -> None:
        """Persist ``value`` under ``key``."""


class Storage:
    """Persist string values by key using SQLite.

    Blocking database calls run in a worker thread so the event loop keeps
    serving recognised text while a write is in flight.
    """

    def __init__(self, db_path: Path = DB_PATH) -> None:
        self.db_path = db_path
        self._ensure_initialised()

    def _ensure_initialised(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with sqlite3.connect(self.db_path) as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS entries (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS metadata (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL
                    )
                    """
                )
                cur = conn.execute("SELECT value FROM metadata WHERE key = ?", ("schema_version",))
                row = cur.fetchone()
                if row is None:
                    conn.execute(
                        "INSERT INTO metadata(key, value) VALUES(?, ?)",
                        ("schema_version", str(SCHEMA_VERSION)),
                    )
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(f"Failed to open store at {self.db_path}: {exc}") from exc

    def get_sync(self, key: str) -> Optional[str]:
        try:
            with sqlite3.connect(self.db_path) as conn:
                cur = conn.execute("SELECT value FROM entries WHERE key = ?", (key,))
                row = cur.fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to read '{key}': {exc}") from exc
        return row[0] if row else None

    def set_sync(self, key: str, value: str) -> None:
        now = datetime.utcnow().isoformat()
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO entries(key, value, updated_at) VALUES(?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                    """,
                    (key, value, now),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to write '{key}': {exc}") from exc

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self.get_sync, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self.set_sync, key, value)
