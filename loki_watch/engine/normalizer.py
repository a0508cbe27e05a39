"""Parse Loki query API payloads and flatten them into ordered entries."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping

from .errors import MalformedResponseError, QueryExecutionError


class GroupShape(str, Enum):
    """Payload carried by one result group."""

    SINGLE = "single"  # vector: "value": [ts, val]
    SERIES = "series"  # streams / matrix: "values": [[ts, val], ...]


@dataclass(frozen=True, slots=True)
class ResultGroup:
    shape: GroupShape
    label_key: str
    labels: Mapping[str, str]
    pairs: tuple[tuple[str, str], ...]


@dataclass(frozen=True, slots=True)
class QueryResponse:
    status: str
    result_type: str
    groups: tuple[ResultGroup, ...]


@dataclass(frozen=True, slots=True)
class NormalizedEntry:
    """One log line or metric sample, independent of the response shape."""

    timestamp: str
    content: str
    labels: Mapping[str, str] = field(default_factory=dict)
    content_field: str = "line"

    def to_record(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            self.content_field: self.content,
            "labels": dict(self.labels),
        }


def parse_response(payload: str | bytes | Mapping[str, Any]) -> QueryResponse:
    """Validate a raw query API body and turn it into a tagged structure."""

    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as exc:
            raise MalformedResponseError(f"Response body is not valid JSON: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise MalformedResponseError("Response body must be a JSON object")

    status = str(payload.get("status") or "success")
    if status == "error":
        raise QueryExecutionError(
            f"Loki reported an error: {payload.get('errorType', 'unknown')}: {payload.get('error', '')}",
            body=json.dumps(dict(payload), ensure_ascii=False),
        )

    data = payload.get("data")
    if data is None:
        return QueryResponse(status=status, result_type="", groups=())
    if not isinstance(data, Mapping):
        raise MalformedResponseError("'data' must be an object")
    result = data.get("result")
    if result is None:
        result = []
    if not isinstance(result, list):
        raise MalformedResponseError("'data.result' must be a list")

    groups = tuple(_parse_group(index, raw) for index, raw in enumerate(result))
    return QueryResponse(status=status, result_type=str(data.get("resultType") or ""), groups=groups)


def normalize(response: QueryResponse | str | bytes | Mapping[str, Any]) -> tuple[str, list[NormalizedEntry]]:
    """Flatten every group into entries, preserving response and pair order."""

    if not isinstance(response, QueryResponse):
        response = parse_response(response)
    entries: list[NormalizedEntry] = []
    for group in response.groups:
        if group.shape is GroupShape.SINGLE:
            content_field = "value"
        else:
            content_field = "line" if group.label_key == "stream" else "value"
        for timestamp, content in group.pairs:
            entries.append(
                NormalizedEntry(
                    timestamp=timestamp,
                    content=content,
                    labels=group.labels,
                    content_field=content_field,
                )
            )
    return response.result_type, entries


def _parse_group(index: int, raw: Any) -> ResultGroup:
    if not isinstance(raw, Mapping):
        raise MalformedResponseError(f"Result group {index} must be an object")
    has_single = raw.get("value") is not None
    has_series = raw.get("values") is not None
    if has_single == has_series:
        raise MalformedResponseError(
            f"Result group {index} must carry exactly one of 'value' or 'values'"
        )

    # Only groups carrying a stream hold log lines; everything else is a sample.
    label_key = "stream" if raw.get("stream") is not None else "metric"
    labels = raw.get(label_key) or {}
    if not isinstance(labels, Mapping):
        raise MalformedResponseError(f"Result group {index} labels must be an object")
    labels = {str(key): str(value) for key, value in labels.items()}

    if has_single:
        pairs = (_parse_pair(index, raw["value"]),)
        shape = GroupShape.SINGLE
    else:
        values = raw["values"]
        if not isinstance(values, list):
            raise MalformedResponseError(f"Result group {index} 'values' must be a list")
        pairs = tuple(_parse_pair(index, item) for item in values)
        shape = GroupShape.SERIES
    return ResultGroup(shape=shape, label_key=label_key, labels=labels, pairs=pairs)


def _parse_pair(index: int, raw: Any) -> tuple[str, str]:
    if not isinstance(raw, (list, tuple)) or len(raw) < 2:
        raise MalformedResponseError(f"Result group {index} has a malformed [timestamp, value] pair")
    return _coerce_timestamp(raw[0]), str(raw[1])


def _coerce_timestamp(value: Any) -> str:
    # Metric results carry float seconds; log streams carry nanosecond strings.
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (int, float)) or (isinstance(value, str) and "." in value):
        try:
            return str(int(Decimal(str(value)) * 1_000_000_000))
        except (InvalidOperation, ValueError, OverflowError):
            return str(value)
    return str(value)


__all__ = [
    "GroupShape",
    "NormalizedEntry",
    "QueryResponse",
    "ResultGroup",
    "normalize",
    "parse_response",
]
