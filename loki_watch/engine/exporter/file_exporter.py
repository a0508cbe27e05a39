"""Write fired entries to JSON-lines, CSV or plain-text files."""

from __future__ import annotations

import csv
import json
import re
from datetime import datetime, timezone
from pathlib import Path

from .base import BaseExporter

EXTENSIONS = {"json": "jsonl", "csv": "csv", "txt": "txt"}
CSV_FIELDS = ("trigger_id", "timestamp", "content", "labels", "query", "result_type")


def _content(record: dict) -> str:
    value = record.get("line", record.get("value"))
    return "" if value is None else str(value)


def _labels_text(labels: dict) -> str:
    return ", ".join(f'{key}="{value}"' for key, value in sorted(labels.items()))


class FileExporter(BaseExporter):
    """One file per run under ``<output_dir>/<trigger>/``.

    Log lines and metric samples share the CSV ``content`` column; labels are
    stored as a JSON object with sorted keys.
    """

    def __init__(self, output_dir: Path, trigger_id: str, fmt: str, run_tag: str | None = None) -> None:
        if fmt not in EXTENSIONS:
            raise ValueError(f"Unsupported file format: {fmt}")
        self.trigger_id = trigger_id
        self.format = fmt
        self.run_tag = run_tag or datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        slug = re.sub(r"[^0-9A-Za-z_-]+", "_", trigger_id.strip()) or "trigger"
        self.directory = output_dir / slug
        self.directory.mkdir(parents=True, exist_ok=True)
        self.path = self.directory / f"{self.run_tag}.{EXTENSIONS[fmt]}"
        is_new = not self.path.exists() or self.path.stat().st_size == 0
        self._file = self.path.open("a", encoding="utf-8", newline="")
        self._csv: csv.DictWriter | None = None
        if fmt == "csv":
            self._csv = csv.DictWriter(self._file, fieldnames=CSV_FIELDS)
            if is_new:
                self._csv.writeheader()
        self._written = 0

    def export(self, record: dict) -> None:
        self._written += 1
        if self.format == "json":
            self._file.write(json.dumps(record, ensure_ascii=False) + "\n")
        elif self._csv is not None:
            self._csv.writerow(
                {
                    "trigger_id": record.get("trigger_id", self.trigger_id),
                    "timestamp": record.get("timestamp", ""),
                    "content": _content(record),
                    "labels": json.dumps(record.get("labels") or {}, ensure_ascii=False, sort_keys=True),
                    "query": record.get("query", ""),
                    "result_type": record.get("result_type", ""),
                }
            )
        else:
            line = f"{self._written}. [{record.get('timestamp', '-')}] {_content(record)}\n"
            labels = record.get("labels") or {}
            if labels:
                line += f"   {{{_labels_text(labels)}}}\n"
            self._file.write(line)

    def flush(self) -> None:
        self._file.flush()

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()


__all__ = ["FileExporter"]
