"""Pydantic models used across loki-watch configuration flow."""

from __future__ import annotations

import re
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

_DURATION_PATTERN = re.compile(r"(?P<value>\d+)(?P<unit>ms|[smhdw])", re.IGNORECASE)
_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}
_TIMEDELTA = TypeAdapter(timedelta)


def parse_duration(value: Any) -> timedelta:
    """Parse ``10m``/``1h30m``/``1d`` shorthands, plain seconds or ISO-8601 durations."""

    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Unsupported duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    text = str(value).strip()
    if not text:
        raise ValueError("Duration cannot be empty")
    if text.isdigit():
        return timedelta(seconds=int(text))
    if text[0] in "pP":
        return _TIMEDELTA.validate_python(text.upper())
    total = timedelta()
    index = 0
    for match in _DURATION_PATTERN.finditer(text):
        if match.start() != index:
            raise ValueError(f"Unsupported duration: {value}")
        total += int(match.group("value")) * _DURATION_UNITS[match.group("unit").lower()]
        index = match.end()
    if index != len(text):
        raise ValueError(f"Unsupported duration: {value}")
    return total


def format_duration(value: timedelta) -> str:
    """Render a duration in the Go-style form Loki accepts, e.g. ``1h30m``."""

    millis = value // timedelta(milliseconds=1)
    if millis <= 0:
        return "0s"
    seconds, millis = divmod(millis, 1000)
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs:
        parts.append(f"{secs}s")
    if millis:
        parts.append(f"{millis}ms")
    return "".join(parts)


class Direction(str, Enum):
    """Sort order of returned log lines."""

    FORWARD = "forward"
    BACKWARD = "backward"


class ScheduleType(str, Enum):
    """Scheduler modes for recurring triggers."""

    CRON = "cron"
    INTERVAL = "interval"


class ScheduleConfig(BaseModel):
    """Configuration describing when a trigger should poll."""

    type: ScheduleType = Field(default=ScheduleType.INTERVAL)
    value: Any = Field(
        default=60,
        description="Cron expression, interval seconds / duration string, or IntervalTrigger kwargs.",
    )
    jitter: int | None = Field(default=None, description="Random delay in seconds added to each tick.")

    @model_validator(mode="after")
    def _validate_value(self) -> "ScheduleConfig":
        if self.jitter is not None and self.jitter < 0:
            raise ValueError("jitter cannot be negative")
        if self.type is ScheduleType.CRON and not isinstance(self.value, str):
            raise ValueError("Cron schedule requires string expression")
        if self.type is ScheduleType.INTERVAL:
            if isinstance(self.value, str):
                self.value = parse_duration(self.value).total_seconds()
            if isinstance(self.value, bool) or not isinstance(self.value, (int, float, dict)):
                raise ValueError("Interval schedule requires seconds (int/float) or kwargs dict")
            if isinstance(self.value, (int, float)) and self.value <= 0:
                raise ValueError("Interval schedule must be positive")
        return self


class LokiConnection(BaseModel):
    """Where and how to reach a Loki instance."""

    url: str
    auth_token: str | None = None
    tenant_id: str | None = None
    connect_timeout: int = 30
    read_timeout: int = 60

    @field_validator("url")
    @classmethod
    def _strip_url(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Loki url cannot be empty")
        return value.rstrip("/")

    @field_validator("connect_timeout", "read_timeout")
    @classmethod
    def _positive_timeout(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Timeouts must be positive")
        return value

    @property
    def base_url(self) -> str:
        return self.url


class TriggerConfig(BaseModel):
    """A recurring LogQL query whose new results are exported once."""

    trigger_id: str
    namespace: str = "default"
    flow_id: str = "loki"
    connection: LokiConnection
    query: str
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    max_records: int = 100
    since: timedelta = Field(default=timedelta(minutes=10))
    start: str | None = None
    state_ttl: timedelta = Field(default=timedelta(days=1))
    state_key: str | None = None
    output_format: Literal["json", "csv", "txt", "sqlite"] = "json"

    @field_validator("since", "state_ttl", mode="before")
    @classmethod
    def _coerce_duration(cls, value: Any) -> timedelta:
        return parse_duration(value)

    @model_validator(mode="after")
    def _validate_trigger(self) -> "TriggerConfig":
        if not self.trigger_id.strip():
            raise ValueError("trigger_id cannot be empty")
        if not self.query.strip():
            raise ValueError("query cannot be empty")
        if self.max_records < 1:
            raise ValueError("max_records must be >= 1")
        if self.since < timedelta(milliseconds=1):
            raise ValueError("since must be at least 1ms")
        if self.state_ttl <= timedelta():
            raise ValueError("state_ttl must be positive")
        return self

    def resolved_state_key(self) -> str:
        return self.state_key or f"{self.namespace}.{self.flow_id}.{self.trigger_id}"


class QueryConfig(BaseModel):
    """A one-shot instant or range query."""

    connection: LokiConnection
    query: str
    kind: Literal["instant", "range"] = "range"
    time: str | None = None
    start: str | None = None
    end: str | None = None
    since: str | None = None
    limit: int | None = 100
    direction: Direction = Direction.BACKWARD
    step: str | None = None
    interval: str | None = None

    @model_validator(mode="after")
    def _validate_kind(self) -> "QueryConfig":
        if not self.query.strip():
            raise ValueError("query cannot be empty")
        if self.kind == "instant" and any((self.start, self.end, self.since, self.step, self.interval)):
            raise ValueError("Instant queries only accept 'time', 'limit' and 'direction'")
        if self.kind == "range" and self.time:
            raise ValueError("Range queries use 'start'/'end'/'since' instead of 'time'")
        if self.limit is not None and self.limit < 1:
            raise ValueError("limit must be >= 1")
        return self

    def to_params(self) -> dict[str, str]:
        params: dict[str, str] = {"query": self.query}
        optional = (
            ("time", self.time),
            ("start", self.start),
            ("end", self.end),
            ("since", self.since),
            ("step", self.step),
            ("interval", self.interval),
        )
        for key, value in optional:
            if value:
                params[key] = value
        if self.limit is not None:
            params["limit"] = str(self.limit)
        params["direction"] = self.direction.value
        return params


class GlobalConfig(BaseModel):
    """Global controls shared across triggers."""

    thread_pool_workers: int = 4
    state_dir: Path = Field(default=Path("data/state"))
    state_db_name: str = "state.db"
    outputs_dir: Path = Field(default=Path("data/outputs"))

    @field_validator("state_dir", "outputs_dir", mode="before")
    @classmethod
    def _coerce_dirs(cls, value: Any) -> Path:
        return Path(value)

    @field_validator("thread_pool_workers")
    @classmethod
    def _positive_workers(cls, value: int) -> int:
        if value < 1:
            raise ValueError("thread_pool_workers must be >= 1")
        return value

    def state_db_path(self, base_dir: Path) -> Path:
        """Return the state database path relative to the project root."""

        state_dir = self.state_dir
        if not state_dir.is_absolute():
            state_dir = (base_dir / state_dir).resolve()
        return state_dir / self.state_db_name


__all__ = [
    "Direction",
    "GlobalConfig",
    "LokiConnection",
    "QueryConfig",
    "ScheduleConfig",
    "ScheduleType",
    "TriggerConfig",
    "format_duration",
    "parse_duration",
]
