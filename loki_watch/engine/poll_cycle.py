"""One polling cycle: query, normalise, deduplicate, persist, report.

A cycle never writes state before it has fully decided what fired, so any
failure ahead of the final save leaves the persisted state untouched and the
next scheduled tick simply retries from it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

import structlog

from ..config.models import Direction, format_duration
from .client import QUERY_RANGE_PATH, QueryExecutor, ensure_success
from .dedup import Deduplicator, utcnow
from .errors import InvalidEntryError
from .identity import datetime_to_nanos, identify, parse_timestamp
from .normalizer import NormalizedEntry, normalize
from .state import StateStore

DEFAULT_SINCE = timedelta(minutes=10)
DEFAULT_TTL = timedelta(days=1)


@dataclass(slots=True)
class QueryWindow:
    """Nanosecond time range queried by a cycle."""

    end: int
    since: timedelta = DEFAULT_SINCE
    explicit_start: str | None = None

    @classmethod
    def ending_at(
        cls, now: datetime, since: timedelta = DEFAULT_SINCE, start: str | None = None
    ) -> "QueryWindow":
        return cls(end=datetime_to_nanos(now), since=since, explicit_start=start)

    @property
    def start(self) -> str:
        if self.explicit_start:
            return self.explicit_start
        return str(self.end - int(self.since.total_seconds() * 1_000_000_000))

    def to_params(self, query: str, max_records: int) -> dict[str, str]:
        # Polling always reads oldest-first so the watermark only moves forward.
        return {
            "query": query,
            "limit": str(max_records),
            "direction": Direction.FORWARD.value,
            "since": format_duration(self.since),
            "start": self.start,
            "end": str(self.end),
        }


@dataclass(slots=True)
class CycleResult:
    query: str
    window: QueryWindow
    result_type: str = ""
    fired: list[NormalizedEntry] = field(default_factory=list)
    watermark: str | None = None

    @property
    def count(self) -> int:
        return len(self.fired)

    @property
    def empty(self) -> bool:
        return not self.fired

    def to_output(self) -> dict[str, Any]:
        return {
            "logs": [entry.to_record() for entry in self.fired],
            "count": self.count,
            "query": self.query,
            "resultType": self.result_type,
            "lastTimestamp": self.watermark,
        }


class PollCycle:
    """Stateful poller that reports only entries not seen in earlier cycles."""

    def __init__(
        self,
        executor: QueryExecutor,
        state_store: StateStore,
        clock: Callable[[], datetime] = utcnow,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.executor = executor
        self.state_store = state_store
        self.clock = clock
        self.deduplicator = Deduplicator(clock)
        self.logger = logger or structlog.get_logger("loki_watch.poll")

    def run(
        self,
        query: str,
        *,
        state_key: str,
        max_records: int = 100,
        since: timedelta = DEFAULT_SINCE,
        ttl: timedelta = DEFAULT_TTL,
        start: str | None = None,
    ) -> CycleResult:
        window = QueryWindow.ending_at(self.clock(), since, start)
        result = CycleResult(query=query, window=window)

        params = window.to_params(query, max_records)
        self.logger.debug("poll_cycle_querying", state_key=state_key, params=params)
        response = ensure_success(self.executor.execute("GET", QUERY_RANGE_PATH, params))

        result.result_type, entries = normalize(response.text)
        if not entries:
            self.logger.debug("poll_cycle_no_entries", state_key=state_key)
            return result
        self.logger.debug("poll_cycle_candidates", state_key=state_key, candidates=len(entries))

        state = self.state_store.load(state_key, ttl)
        for entry in entries:
            try:
                identity = identify(entry.timestamp, entry.content, entry.labels)
            except InvalidEntryError as exc:
                self.logger.warning(
                    "entry_skipped",
                    state_key=state_key,
                    timestamp=entry.timestamp,
                    error=str(exc),
                )
                continue
            decision = self.deduplicator.evaluate(state, identity, entry.timestamp)
            state = decision.state
            if decision.fire:
                result.fired.append(entry)

        if not result.fired:
            self.logger.debug("poll_cycle_nothing_new", state_key=state_key)
            return result

        result.watermark = self._watermark(result.fired, window)
        self.state_store.save(state_key, state, ttl)
        self.logger.info(
            "poll_cycle_fired",
            state_key=state_key,
            count=result.count,
            last_timestamp=result.watermark,
            tracked=len(state),
        )
        return result

    @staticmethod
    def _watermark(entries: list[NormalizedEntry], window: QueryWindow) -> str:
        latest: tuple[int, str] | None = None
        for entry in entries:
            try:
                nanos = parse_timestamp(entry.timestamp)
            except InvalidEntryError:
                continue
            if latest is None or nanos > latest[0]:
                latest = (nanos, entry.timestamp)
        return latest[1] if latest is not None else str(window.end)


__all__ = ["CycleResult", "PollCycle", "QueryWindow"]
