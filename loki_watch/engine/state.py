"""Trigger state persistence: the store contract and its SQLite backend."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from threading import Lock
from typing import Callable, Protocol

from ..infra.storage import SQLiteManager
from .dedup import TriggerState, utcnow
from .errors import StateStoreError


class StateStore(Protocol):
    """Key/value persistence of whole trigger states."""

    def load(self, key: str, ttl: timedelta) -> TriggerState:
        """Return the state for ``key`` with entries older than ``ttl`` removed."""

    def save(self, key: str, state: TriggerState, ttl: timedelta) -> None:
        """Replace the state stored under ``key``."""


class SQLiteStateStore:
    """Store each trigger state as one JSON row with an expiry instant.

    A row that is not re-saved within ``ttl`` is discarded on the next load,
    and individual entries are pruned by their first-seen age.
    """

    def __init__(
        self,
        manager: SQLiteManager,
        db_path: Path,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.manager = manager
        self.db_path = db_path
        self.clock = clock
        self._lock = Lock()
        self._conn = self.manager.connect(db_path)

    def load(self, key: str, ttl: timedelta) -> TriggerState:
        now = self.clock()
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT payload, expires_at FROM trigger_state WHERE state_key = ?", (key,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise StateStoreError(f"Failed to load state {key!r}: {exc}") from exc
        if row is None:
            return TriggerState()
        try:
            if datetime.fromisoformat(row["expires_at"]) <= now:
                return TriggerState()
            state = TriggerState.from_payload(json.loads(row["payload"]))
        except (ValueError, KeyError, TypeError) as exc:
            raise StateStoreError(f"Stored state {key!r} is corrupt: {exc}") from exc
        state.prune(ttl, now)
        return state

    def save(self, key: str, state: TriggerState, ttl: timedelta) -> None:
        now = self.clock()
        state.prune(ttl, now)
        payload = json.dumps(state.to_payload(), ensure_ascii=False)
        try:
            with self._lock:
                self._conn.execute(
                    "INSERT OR REPLACE INTO trigger_state(state_key, payload, updated_at, expires_at) "
                    "VALUES (?, ?, ?, ?)",
                    (key, payload, now.isoformat(), (now + ttl).isoformat()),
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StateStoreError(f"Failed to save state {key!r}: {exc}") from exc

    def delete(self, key: str) -> bool:
        try:
            with self._lock:
                cur = self._conn.execute("DELETE FROM trigger_state WHERE state_key = ?", (key,))
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StateStoreError(f"Failed to delete state {key!r}: {exc}") from exc
        return cur.rowcount > 0

    def purge_expired(self) -> int:
        """Delete rows of every key whose expiry has passed."""

        try:
            with self._lock:
                cur = self._conn.execute(
                    "DELETE FROM trigger_state WHERE expires_at <= ?", (self.clock().isoformat(),)
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StateStoreError(f"Failed to purge expired state: {exc}") from exc
        return cur.rowcount

    def describe(self, key: str) -> dict | None:
        """Return row metadata for ``key`` without pruning, or None."""

        with self._lock:
            row = self._conn.execute(
                "SELECT payload, updated_at, expires_at FROM trigger_state WHERE state_key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return None
        entries = json.loads(row["payload"]).get("entries", [])
        return {
            "state_key": key,
            "entries": len(entries),
            "updated_at": row["updated_at"],
            "expires_at": row["expires_at"],
        }


__all__ = ["SQLiteStateStore", "StateStore"]
