"""Export fired entries into a queryable SQLite table."""

from __future__ import annotations

import json
import re
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from .base import BaseExporter

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SQLiteExporter(BaseExporter):
    """Buffer fired entries and write them in one transaction per flush.

    Content and labels get their own columns so exported entries can be
    filtered with plain SQL; the full record is kept in ``payload``.
    """

    def __init__(self, path: Path, table: str = "entries") -> None:
        if not _TABLE_NAME.match(table):
            raise ValueError(f"Invalid table name: {table!r}")
        self.path = path
        self.table = table
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.path)
        self.conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                trigger_id TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                content TEXT,
                labels TEXT NOT NULL,
                exported_at TEXT NOT NULL,
                payload TEXT NOT NULL
            )
            """
        )
        self.conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_trigger_ts ON {table}(trigger_id, timestamp)")
        self.conn.commit()
        self._pending: list[tuple[str, str, str | None, str, str, str]] = []

    def export(self, record: dict) -> None:
        content = record.get("line", record.get("value"))
        self._pending.append(
            (
                str(record.get("trigger_id") or ""),
                str(record.get("timestamp") or ""),
                None if content is None else str(content),
                json.dumps(record.get("labels") or {}, ensure_ascii=False, sort_keys=True),
                datetime.now(timezone.utc).isoformat(),
                json.dumps(record, ensure_ascii=False),
            )
        )

    def flush(self) -> None:
        if not self._pending:
            return
        with self.conn:
            self.conn.executemany(
                f"INSERT INTO {self.table}(trigger_id, timestamp, content, labels, exported_at, payload) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                self._pending,
            )
        self._pending.clear()

    def close(self) -> None:
        self.flush()
        self.conn.close()


__all__ = ["SQLiteExporter"]
