"""Engine components orchestrating query → normalise → dedup → persist."""

from .client import LokiClient, LokiResponse, QueryExecutor, ensure_success
from .dedup import Decision, Deduplicator, StateEntry, TriggerState
from .errors import (
    InvalidEntryError,
    LokiWatchError,
    MalformedResponseError,
    QueryExecutionError,
    StateStoreError,
)
from .identity import identify
from .normalizer import NormalizedEntry, normalize, parse_response
from .poll_cycle import CycleResult, PollCycle, QueryWindow
from .query import QueryResult, run_query
from .state import SQLiteStateStore, StateStore
from .thread_pool import ThreadPoolManager

__all__ = [
    "CycleResult",
    "Decision",
    "Deduplicator",
    "InvalidEntryError",
    "LokiClient",
    "LokiResponse",
    "LokiWatchError",
    "MalformedResponseError",
    "NormalizedEntry",
    "PollCycle",
    "QueryExecutionError",
    "QueryExecutor",
    "QueryResult",
    "QueryWindow",
    "SQLiteStateStore",
    "StateEntry",
    "StateStore",
    "StateStoreError",
    "ThreadPoolManager",
    "TriggerState",
    "ensure_success",
    "identify",
    "normalize",
    "parse_response",
    "run_query",
]
