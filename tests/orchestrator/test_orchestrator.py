from __future__ import annotations

import json
import sqlite3

import pytest

from loki_watch.config.loader import dump_model
from loki_watch.engine import QueryExecutionError, ThreadPoolManager
from loki_watch.infra import SQLiteManager
from loki_watch.orchestrator import Orchestrator


class RecordingScheduler:
    def __init__(self) -> None:
        self.scheduled: list[str] = []
        self.started = False

    def schedule_trigger(self, trigger, callback) -> None:
        self.scheduled.append(trigger.trigger_id)

    def start(self) -> None:
        self.started = True


@pytest.fixture
def build_orchestrator(temp_config_repository, clock):
    created: list[Orchestrator] = []

    def _builder(executor) -> Orchestrator:
        orchestrator = Orchestrator(
            config_repository=temp_config_repository,
            scheduler=RecordingScheduler(),
            thread_pool=ThreadPoolManager(1),
            storage=SQLiteManager(),
            client_factory=lambda trigger: executor,
            clock=clock,
        )
        created.append(orchestrator)
        return orchestrator

    yield _builder
    for orchestrator in created:
        orchestrator.thread_pool.shutdown()
        orchestrator.storage.close_all()


def test_run_trigger_exports_only_new_entries(
    build_orchestrator, temp_config_repository, sample_trigger_config, fake_executor, loki_payload, make_stream
) -> None:
    temp_config_repository.save_trigger(sample_trigger_config())
    first = loki_payload("streams", [make_stream({"job": "x"}, ("100", "a"), ("101", "b"))])
    second = loki_payload("streams", [make_stream({"job": "x"}, ("100", "a"), ("101", "b"), ("102", "c"))])
    orchestrator = build_orchestrator(fake_executor(first, first, second))

    run = orchestrator.run_trigger("errors")
    assert run.exported == 2
    assert run.output_path is not None and run.output_path.suffix == ".jsonl"
    records = [json.loads(line) for line in run.output_path.read_text(encoding="utf-8").splitlines()]
    assert [r["line"] for r in records] == ["a", "b"]

    assert orchestrator.run_trigger("errors").result.empty
    latest = orchestrator.run_trigger("errors")
    assert [entry.content for entry in latest.result.fired] == ["c"]
    assert latest.to_output()["lastTimestamp"] == "102"

    state = orchestrator.view_state("errors")
    assert state["state_key"] == "default.loki.errors"
    assert state["entries"] == 3


def test_reset_state_allows_refire(
    build_orchestrator, temp_config_repository, sample_trigger_config, fake_executor, loki_payload, make_stream
) -> None:
    temp_config_repository.save_trigger(sample_trigger_config())
    body = loki_payload("streams", [make_stream({"job": "x"}, ("100", "a"))])
    orchestrator = build_orchestrator(fake_executor(body))
    assert orchestrator.run_trigger("errors").exported == 1
    assert orchestrator.reset_state("errors") is True
    assert orchestrator.view_state("errors") is None
    assert orchestrator.run_trigger("errors").exported == 1


def test_sqlite_output_format(
    build_orchestrator, temp_config_repository, sample_trigger_config, fake_executor, loki_payload, make_stream
) -> None:
    temp_config_repository.save_trigger(sample_trigger_config(output_format="sqlite"))
    body = loki_payload("streams", [make_stream({"job": "x"}, ("100", "a"))])
    run = build_orchestrator(fake_executor(body)).run_trigger("errors")
    conn = sqlite3.connect(run.output_path)
    assert conn.execute("SELECT COUNT(*) FROM entries").fetchone()[0] == 1
    conn.close()


def test_failed_cycle_raises_and_keeps_state(
    build_orchestrator, temp_config_repository, sample_trigger_config, fake_executor
) -> None:
    temp_config_repository.save_trigger(sample_trigger_config())
    orchestrator = build_orchestrator(fake_executor("boom", status_code=503))
    with pytest.raises(QueryExecutionError):
        orchestrator.run_trigger("errors")
    assert orchestrator.view_state("errors") is None


def test_scheduled_run_swallows_cycle_errors(
    build_orchestrator, temp_config_repository, sample_trigger_config, fake_executor
) -> None:
    trigger = sample_trigger_config()
    temp_config_repository.save_trigger(trigger)
    orchestrator = build_orchestrator(fake_executor("boom", status_code=500))
    orchestrator.run_trigger_scheduled(trigger)


def test_register_schedules(build_orchestrator, sample_trigger_config, fake_executor) -> None:
    orchestrator = build_orchestrator(fake_executor("{}"))
    orchestrator.register_schedules([sample_trigger_config(), sample_trigger_config(trigger_id="latency")])
    assert orchestrator.scheduler.scheduled == ["errors", "latency"]
    assert orchestrator.scheduler.started


def test_run_trigger_async_returns_future(
    build_orchestrator, temp_config_repository, sample_trigger_config, fake_executor, loki_payload, make_stream
) -> None:
    trigger = sample_trigger_config()
    temp_config_repository.save_trigger(trigger)
    body = loki_payload("streams", [make_stream({"job": "x"}, ("100", "a"))])
    orchestrator = build_orchestrator(fake_executor(body))
    run = orchestrator.run_trigger_async(trigger).result(timeout=10)
    assert run.trigger_id == "errors"
    assert run.exported == 1


def test_run_trigger_from_json_file(
    build_orchestrator, temp_config_repository, sample_trigger_config, fake_executor, loki_payload, make_stream
) -> None:
    dump_model(temp_config_repository.locator.triggers_dir / "errors.json", sample_trigger_config())
    body = loki_payload("streams", [make_stream({"job": "x"}, ("100", "a"))])
    orchestrator = build_orchestrator(fake_executor(body))
    [trigger] = temp_config_repository.list_triggers()
    assert orchestrator.run_trigger_async(trigger).result(timeout=10).exported == 1
    assert orchestrator.view_state("errors")["entries"] == 1
