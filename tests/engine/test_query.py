from __future__ import annotations

import pytest

from loki_watch.config import LokiConnection, QueryConfig
from loki_watch.engine import QueryExecutionError, run_query
from loki_watch.engine.client import QUERY_PATH, QUERY_RANGE_PATH

CONNECTION = LokiConnection(url="http://loki")


def test_instant_query_uses_query_endpoint(fake_executor) -> None:
    body = '{"status":"success","data":{"resultType":"vector","result":[{"metric":{"job":"a"},"value":[1700000000,"3"]}]}}'
    executor = fake_executor(body)
    config = QueryConfig(connection=CONNECTION, query="count_over_time({job=\"a\"}[5m])", kind="instant", time="1700000000")
    result = run_query(executor, config)
    method, path, params = executor.calls[0]
    assert path == QUERY_PATH
    assert params["time"] == "1700000000"
    assert params["direction"] == "backward"
    assert result.to_output() == {
        "logs": [{"timestamp": "1700000000000000000", "value": "3", "labels": {"job": "a"}}],
        "resultType": "vector",
        "count": 1,
    }


def test_range_query_forwards_window(fake_executor, loki_payload, make_stream) -> None:
    executor = fake_executor(loki_payload("streams", [make_stream({"a": "b"}, ("1", "x"), ("2", "y"))]))
    config = QueryConfig(connection=CONNECTION, query="{a=\"b\"}", since="1h", limit=5, step="30s")
    result = run_query(executor, config)
    _, path, params = executor.calls[0]
    assert path == QUERY_RANGE_PATH
    assert params == {
        "query": "{a=\"b\"}",
        "since": "1h",
        "step": "30s",
        "limit": "5",
        "direction": "backward",
    }
    assert result.count == 2


def test_query_propagates_http_failure(fake_executor) -> None:
    with pytest.raises(QueryExecutionError):
        run_query(fake_executor("nope", status_code=500), QueryConfig(connection=CONNECTION, query="{}"))
