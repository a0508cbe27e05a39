import csv
import json
import sqlite3

import pytest

from loki_watch.engine.exporter import FileExporter, SQLiteExporter

OUTPUT = {
    "logs": [
        {"timestamp": "100", "line": "disk full", "labels": {"host": "a", "app": "db"}},
        {"timestamp": "101", "line": "recovered", "labels": {}},
    ],
    "count": 2,
    "query": '{app="db"}',
    "resultType": "streams",
    "lastTimestamp": "101",
}


def test_file_exporter_json(tmp_path):
    with FileExporter(tmp_path, "db alerts", "json", run_tag="test") as exporter:
        assert exporter.export_output(OUTPUT, "db alerts") == 2
    path = tmp_path / "db_alerts" / "test.jsonl"
    assert exporter.path == path
    data = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert data[0]["line"] == "disk full"
    assert data[0]["trigger_id"] == "db alerts"
    assert data[1]["result_type"] == "streams"


def test_file_exporter_csv_has_fixed_columns(tmp_path):
    with FileExporter(tmp_path, "demo", "csv", run_tag="test") as exporter:
        exporter.export_output(OUTPUT, "demo")
    with FileExporter(tmp_path, "demo", "csv", run_tag="test") as exporter:
        exporter.export({"timestamp": "5", "value": "0.5", "labels": {"job": "x"}})

    with (tmp_path / "demo" / "test.csv").open(encoding="utf-8", newline="") as stream:
        rows = list(csv.DictReader(stream))
    assert [row["content"] for row in rows] == ["disk full", "recovered", "0.5"]
    assert rows[0]["labels"] == '{"app": "db", "host": "a"}'
    assert rows[0]["query"] == '{app="db"}'
    assert rows[2]["trigger_id"] == "demo"


def test_file_exporter_txt(tmp_path):
    with FileExporter(tmp_path, "demo", "txt", run_tag="test") as exporter:
        exporter.export_output(OUTPUT, "demo")
    content = (tmp_path / "demo" / "test.txt").read_text(encoding="utf-8")
    assert '1. [100] disk full\n   {app="db", host="a"}\n' in content
    assert "2. [101] recovered\n" in content


def test_file_exporter_rejects_unknown_format(tmp_path):
    with pytest.raises(ValueError):
        FileExporter(tmp_path, "demo", "xml")


def test_sqlite_exporter(tmp_path):
    with SQLiteExporter(tmp_path / "demo.db") as exporter:
        exporter.export_output(OUTPUT, "demo")

    conn = sqlite3.connect(tmp_path / "demo.db")
    rows = conn.execute("SELECT trigger_id, timestamp, content, labels, payload FROM entries ORDER BY id").fetchall()
    conn.close()
    assert [row[:3] for row in rows] == [("demo", "100", "disk full"), ("demo", "101", "recovered")]
    assert rows[0][3] == '{"app": "db", "host": "a"}'
    assert json.loads(rows[0][4])["query"] == '{app="db"}'


def test_sqlite_exporter_rejects_bad_table_name(tmp_path):
    with pytest.raises(ValueError):
        SQLiteExporter(tmp_path / "demo.db", table="entries; DROP TABLE x")
