from __future__ import annotations

from datetime import timedelta

import pytest

from loki_watch.engine import (
    MalformedResponseError,
    PollCycle,
    QueryExecutionError,
    SQLiteStateStore,
    StateStoreError,
)
from loki_watch.engine.client import QUERY_RANGE_PATH
from loki_watch.infra import SQLiteManager

KEY = "default.loki.errors"


def _cycle(executor, store, clock) -> PollCycle:
    return PollCycle(executor, store, clock=clock)


def test_first_repeat_and_new_entry(fake_executor, loki_payload, make_stream, memory_store, clock) -> None:
    first = loki_payload("streams", [make_stream({"job": "x"}, ("100", "a"), ("101", "b"))])
    third = loki_payload("streams", [make_stream({"job": "x"}, ("100", "a"), ("101", "b"), ("102", "c"))])
    executor = fake_executor(first, first, third)
    cycle = _cycle(executor, memory_store, clock)

    result = cycle.run('{job="x"}', state_key=KEY)
    assert result.count == 2
    assert result.watermark == "101"
    assert result.to_output()["lastTimestamp"] == "101"

    repeat = cycle.run('{job="x"}', state_key=KEY)
    assert repeat.empty
    assert repeat.watermark is None
    assert memory_store.saves == 1

    latest = cycle.run('{job="x"}', state_key=KEY)
    assert [entry.content for entry in latest.fired] == ["c"]
    assert latest.to_output()["count"] == 1
    assert latest.watermark == "102"


def test_empty_response_touches_no_state(fake_executor, loki_payload, memory_store, clock) -> None:
    cycle = _cycle(fake_executor(loki_payload("streams", [])), memory_store, clock)
    result = cycle.run("{}", state_key=KEY)
    assert result.empty
    assert memory_store.loads == 0
    assert memory_store.saves == 0


def test_request_parameters(fake_executor, loki_payload, memory_store, clock) -> None:
    executor = fake_executor(loki_payload())
    _cycle(executor, memory_store, clock).run('{app="api"}', state_key=KEY, max_records=50, since=timedelta(minutes=5))
    method, path, params = executor.calls[0]
    assert (method, path) == ("GET", QUERY_RANGE_PATH)
    assert params["direction"] == "forward"
    assert params["limit"] == "50"
    assert params["since"] == "5m"
    assert int(params["end"]) - int(params["start"]) == 5 * 60 * 1_000_000_000


def test_explicit_start_is_forwarded(fake_executor, loki_payload, memory_store, clock) -> None:
    executor = fake_executor(loki_payload())
    _cycle(executor, memory_store, clock).run("{}", state_key=KEY, start="1700000000000000000")
    assert executor.calls[0][2]["start"] == "1700000000000000000"


def test_entry_fires_again_after_ttl(fake_executor, loki_payload, make_stream, tmp_path, clock) -> None:
    manager = SQLiteManager()
    store = SQLiteStateStore(manager, tmp_path / "state.db", clock=clock)
    body = loki_payload("streams", [make_stream({"job": "x"}, ("100", "a"))])
    cycle = _cycle(fake_executor(body), store, clock)
    ttl = timedelta(hours=1)
    assert cycle.run("{}", state_key=KEY, ttl=ttl).count == 1
    clock.advance(timedelta(minutes=30))
    assert cycle.run("{}", state_key=KEY, ttl=ttl).empty
    clock.advance(timedelta(minutes=31))
    assert cycle.run("{}", state_key=KEY, ttl=ttl).count == 1
    manager.close_all()


def test_repeated_cycles_are_idempotent(fake_executor, loki_payload, make_stream, memory_store, clock) -> None:
    body = loki_payload("streams", [make_stream({"job": "x"}, ("100", "a"), ("100", "a"))])
    cycle = _cycle(fake_executor(body), memory_store, clock)
    assert cycle.run("{}", state_key=KEY).count == 1
    for _ in range(3):
        assert cycle.run("{}", state_key=KEY).empty
    assert len(memory_store.states[KEY]["entries"]) == 1


def test_invalid_timestamp_is_skipped(fake_executor, loki_payload, make_stream, memory_store, clock) -> None:
    body = loki_payload("streams", [make_stream({"job": "x"}, ("bogus", "a"), ("105", "b"))])
    result = _cycle(fake_executor(body), memory_store, clock).run("{}", state_key=KEY)
    assert [entry.content for entry in result.fired] == ["b"]
    assert result.watermark == "105"


def test_watermark_compares_numerically(fake_executor, loki_payload, make_stream, memory_store, clock) -> None:
    body = loki_payload(
        "streams",
        [make_stream({"job": "x"}, ("999", "a")), make_stream({"job": "y"}, ("1000", "b"))],
    )
    result = _cycle(fake_executor(body), memory_store, clock).run("{}", state_key=KEY)
    assert result.watermark == "1000"


def test_non_success_status_raises_without_state(fake_executor, memory_store, clock) -> None:
    executor = fake_executor("upstream down", status_code=502)
    with pytest.raises(QueryExecutionError) as excinfo:
        _cycle(executor, memory_store, clock).run("{}", state_key=KEY)
    assert excinfo.value.status_code == 502
    assert excinfo.value.body == "upstream down"
    assert memory_store.loads == memory_store.saves == 0


def test_malformed_response_raises(fake_executor, memory_store, clock) -> None:
    with pytest.raises(MalformedResponseError):
        _cycle(fake_executor("<html>"), memory_store, clock).run("{}", state_key=KEY)
    assert memory_store.saves == 0


def test_save_failure_propagates(fake_executor, loki_payload, make_stream, memory_store, clock) -> None:
    memory_store.fail_save = StateStoreError("disk full")
    body = loki_payload("streams", [make_stream({"job": "x"}, ("100", "a"))])
    with pytest.raises(StateStoreError):
        _cycle(fake_executor(body), memory_store, clock).run("{}", state_key=KEY)
    assert KEY not in memory_store.states
