"""Error taxonomy shared by the polling engine and its collaborators."""

from __future__ import annotations


class LokiWatchError(Exception):
    """Base class for every error raised by loki-watch."""


class MalformedResponseError(LokiWatchError):
    """Loki answered with a payload that does not match the query API shape."""


class QueryExecutionError(LokiWatchError):
    """The query could not be executed: transport failure or non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class StateStoreError(LokiWatchError):
    """Loading or saving persisted trigger state failed."""


class InvalidEntryError(LokiWatchError, ValueError):
    """A single result row cannot be identified; the row is skipped."""


__all__ = [
    "InvalidEntryError",
    "LokiWatchError",
    "MalformedResponseError",
    "QueryExecutionError",
    "StateStoreError",
]
