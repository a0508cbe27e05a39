"""Trigger orchestrator wiring config, Loki client, poll cycle, state and exporters."""

from __future__ import annotations

import sqlite3
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Callable, Iterable

import httpx

from .config import ConfigRepository, GlobalConfig, QueryConfig, TriggerConfig
from .engine import (
    CycleResult,
    LokiClient,
    LokiWatchError,
    PollCycle,
    QueryResult,
    SQLiteStateStore,
    ThreadPoolManager,
    run_query,
)
from .engine.exporter import BaseExporter, FileExporter, SQLiteExporter
from .infra import SQLiteManager
from .logging_conf import configure_logging, trigger_logger

# Failures of a single trigger run that leave other triggers unaffected.
RUN_ERRORS = (LokiWatchError, httpx.HTTPError, OSError, sqlite3.Error)


@dataclass(slots=True)
class TriggerRun:
    """Outcome of running one trigger, including where its entries went."""

    trigger_id: str
    result: CycleResult
    exported: int = 0
    output_path: Path | None = None

    def to_output(self) -> dict:
        return self.result.to_output()


class Orchestrator:
    """Central coordinator managing the lifecycle of polling triggers."""

    def __init__(
        self,
        config_repository: ConfigRepository,
        scheduler,
        thread_pool: ThreadPoolManager,
        storage: SQLiteManager,
        client_factory: Callable[[TriggerConfig], LokiClient] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config_repository = config_repository
        self.global_config: GlobalConfig = config_repository.load_global_config()
        self.scheduler = scheduler
        self.thread_pool = thread_pool
        self.storage = storage
        self.client_factory = client_factory or (lambda trigger: LokiClient(trigger.connection))
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = configure_logging().bind(component="orchestrator")
        self._locks: dict[str, Lock] = {}
        self._locks_guard = Lock()
        self._store: SQLiteStateStore | None = None

    # ------------------------------------------------------------------
    def register_schedules(self, triggers: Iterable[TriggerConfig]) -> None:
        purged = self._state_store().purge_expired()
        if purged:
            self.logger.info("expired_state_purged", rows=purged)
        for trigger in triggers:
            self.scheduler.schedule_trigger(trigger, self.run_trigger_scheduled)
        self.scheduler.start()

    def run_trigger_async(self, trigger: TriggerConfig) -> Future:
        return self.thread_pool.submit(trigger.resolved_state_key(), self.run_trigger, trigger.trigger_id)

    def run_trigger_scheduled(self, trigger: TriggerConfig) -> None:
        # Scheduled ticks never raise into APScheduler; the next tick retries.
        try:
            self.run_trigger(trigger.trigger_id)
        except RUN_ERRORS as exc:
            self.logger.error("scheduled_run_failed", trigger=trigger.trigger_id, error=str(exc))

    def run_trigger(self, trigger_id: str) -> TriggerRun:
        trigger = self.config_repository.load_trigger(trigger_id)
        log = trigger_logger(trigger.trigger_id)
        with self._lock_for(trigger.resolved_state_key()):
            client = self.client_factory(trigger)
            try:
                cycle = PollCycle(client, self._state_store(), clock=self.clock, logger=log)
                result = cycle.run(
                    trigger.query,
                    state_key=trigger.resolved_state_key(),
                    max_records=trigger.max_records,
                    since=trigger.since,
                    ttl=trigger.state_ttl,
                    start=trigger.start,
                )
            except LokiWatchError as exc:
                log.error("poll_cycle_failed", error_type=type(exc).__name__, error=str(exc))
                raise
            finally:
                client.close()

        run = TriggerRun(trigger_id=trigger.trigger_id, result=result)
        if result.empty:
            return run
        run_tag = self.clock().strftime("%Y%m%d-%H%M%S")
        exporter = self._create_exporter(trigger, run_tag)
        with exporter:
            run.exported = exporter.export_output(result.to_output(), trigger.trigger_id)
        run.output_path = getattr(exporter, "path", None)
        log.info("entries_exported", count=run.exported, output=str(run.output_path))
        return run

    def run_query(self, config: QueryConfig) -> QueryResult:
        with LokiClient(config.connection) as client:
            return run_query(client, config, logger=self.logger)

    # ------------------------------------------------------------------
    def view_state(self, trigger_id: str) -> dict | None:
        trigger = self.config_repository.load_trigger(trigger_id)
        return self._state_store().describe(trigger.resolved_state_key())

    def reset_state(self, trigger_id: str) -> bool:
        trigger = self.config_repository.load_trigger(trigger_id)
        removed = self._state_store().delete(trigger.resolved_state_key())
        self.logger.info("state_reset", trigger=trigger_id, removed=removed)
        return removed

    def _state_store(self) -> SQLiteStateStore:
        if self._store is None:
            path = self.global_config.state_db_path(self.config_repository.locator.project_root)
            self._store = SQLiteStateStore(self.storage, path, clock=self.clock)
        return self._store

    def _lock_for(self, state_key: str) -> Lock:
        with self._locks_guard:
            return self._locks.setdefault(state_key, Lock())

    def _create_exporter(self, trigger: TriggerConfig, run_tag: str) -> BaseExporter:
        base_dir = self.config_repository.locator.resolve(self.global_config.outputs_dir)
        base_dir.mkdir(parents=True, exist_ok=True)
        if trigger.output_format in {"json", "csv", "txt"}:
            return FileExporter(base_dir, trigger.trigger_id, trigger.output_format, run_tag=run_tag)
        if trigger.output_format == "sqlite":
            return SQLiteExporter(base_dir / f"{trigger.trigger_id}.db")
        raise ValueError(f"Unsupported output format: {trigger.output_format}")


__all__ = ["RUN_ERRORS", "Orchestrator", "TriggerRun"]
