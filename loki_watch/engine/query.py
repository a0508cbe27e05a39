"""Stateless one-shot instant and range queries."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from ..config import QueryConfig
from .client import QUERY_PATH, QUERY_RANGE_PATH, QueryExecutor, ensure_success
from .normalizer import NormalizedEntry, normalize


@dataclass(slots=True)
class QueryResult:
    query: str
    result_type: str
    entries: list[NormalizedEntry] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.entries)

    def to_output(self) -> dict[str, Any]:
        return {
            "logs": [entry.to_record() for entry in self.entries],
            "resultType": self.result_type,
            "count": self.count,
        }


def run_query(
    executor: QueryExecutor,
    config: QueryConfig,
    logger: structlog.BoundLogger | None = None,
) -> QueryResult:
    """Execute ``config`` once and return every entry, in response order."""

    log = logger or structlog.get_logger("loki_watch.query")
    path = QUERY_PATH if config.kind == "instant" else QUERY_RANGE_PATH
    params = config.to_params()
    log.debug("query_executing", kind=config.kind, params=params)
    response = ensure_success(executor.execute("GET", path, params))
    result_type, entries = normalize(response.text)
    log.info("query_completed", kind=config.kind, records=len(entries), result_type=result_type)
    return QueryResult(query=config.query, result_type=result_type, entries=entries)


__all__ = ["QueryResult", "run_query"]
