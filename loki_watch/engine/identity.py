"""Stable identities for Loki result rows."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timedelta, timezone
from typing import Mapping

from .errors import InvalidEntryError

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_timestamp(timestamp: str) -> int:
    """Return the nanosecond epoch held by ``timestamp`` or raise InvalidEntryError."""

    text = str(timestamp).strip()
    if not text.isdigit():
        raise InvalidEntryError(f"Timestamp is not a nanosecond epoch: {timestamp!r}")
    return int(text)


def timestamp_to_datetime(timestamp: str) -> datetime:
    nanos = parse_timestamp(timestamp)
    seconds, remainder = divmod(nanos, 1_000_000_000)
    return _EPOCH + timedelta(seconds=seconds, microseconds=remainder // 1000)


def datetime_to_nanos(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1_000_000_000 + delta.microseconds * 1000


def identify(timestamp: str, content: str, labels: Mapping[str, str] | None) -> str:
    """Derive the deduplication key for one row.

    The label set is sorted before hashing so that its ordering never matters,
    and SHA-256 keeps the result reproducible across processes.
    """

    nanos = parse_timestamp(timestamp)
    canonical = json.dumps(
        [str(nanos), content, sorted((str(k), str(v)) for k, v in (labels or {}).items())],
        ensure_ascii=False,
        separators=(",", ":"),
    )
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{nanos}_{digest}"


__all__ = ["datetime_to_nanos", "identify", "parse_timestamp", "timestamp_to_datetime"]
