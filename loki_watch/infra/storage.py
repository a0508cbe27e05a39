"""SQLite connection pool holding persisted trigger state."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from threading import Lock
from typing import Dict

# Applied in order; PRAGMA user_version records how many have run.
MIGRATIONS = (
    """
    CREATE TABLE IF NOT EXISTS trigger_state (
        state_key TEXT PRIMARY KEY,
        payload TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        expires_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_trigger_state_expires ON trigger_state(expires_at)",
)


class SQLiteManager:
    """One shared connection per state database, migrated on first use."""

    def __init__(self, busy_timeout: float = 5.0) -> None:
        self.busy_timeout = busy_timeout
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._lock = Lock()

    def connect(self, path: Path) -> sqlite3.Connection:
        key = path.resolve()
        with self._lock:
            conn = self._connections.get(key)
            if conn is None:
                key.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(key, timeout=self.busy_timeout, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
                self._migrate(conn)
                self._connections[key] = conn
            return conn

    @staticmethod
    def _migrate(conn: sqlite3.Connection) -> None:
        version = conn.execute("PRAGMA user_version").fetchone()[0]
        for index, statement in enumerate(MIGRATIONS[version:], start=version + 1):
            conn.execute(statement)
            conn.execute(f"PRAGMA user_version = {index}")
        conn.commit()

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()


__all__ = ["MIGRATIONS", "SQLiteManager"]
