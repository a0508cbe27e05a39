"""Typer CLI entrypoint for loki-watch."""

from __future__ import annotations

import json
import time
from concurrent.futures import as_completed
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import typer
import yaml
from rich import box
from rich.console import Console
from rich.table import Table

from .config import (
    ConfigRepository,
    Direction,
    LokiConnection,
    QueryConfig,
    ScheduleConfig,
    ScheduleType,
    TriggerConfig,
    format_duration,
)
from .engine import LokiWatchError, NormalizedEntry, ThreadPoolManager
from .infra import SQLiteManager
from .logging_conf import available_trigger_logs, configure_logging, log_dir, tail_log, trigger_log_path
from .orchestrator import RUN_ERRORS, Orchestrator, TriggerRun
from .scheduler import APSchedulerAdapter

app = typer.Typer(
    help="loki-watch: poll Grafana Loki and act on new entries only.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
trigger_app = typer.Typer(name="trigger", help="Manage polling triggers.", no_args_is_help=True, rich_markup_mode=None)
query_app = typer.Typer(name="query", help="Run one-shot Loki queries.", no_args_is_help=True, rich_markup_mode=None)
log_app = typer.Typer(name="log", help="Inspect log files.", no_args_is_help=True, rich_markup_mode=None)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    scheduler: APSchedulerAdapter
    orchestrator: Orchestrator
    storage: SQLiteManager


def build_state(verbose: bool) -> AppState:
    configure_logging(verbose=verbose)
    repository = ConfigRepository()
    global_config = repository.load_global_config()
    scheduler = APSchedulerAdapter()
    thread_pool = ThreadPoolManager(global_config.thread_pool_workers)
    storage = SQLiteManager()
    orchestrator = Orchestrator(
        config_repository=repository,
        scheduler=scheduler,
        thread_pool=thread_pool,
        storage=storage,
    )
    return AppState(repository=repository, scheduler=scheduler, orchestrator=orchestrator, storage=storage)


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _format_schedule(schedule: ScheduleConfig) -> str:
    if schedule.type is ScheduleType.CRON:
        return f"cron ({schedule.value})"
    return f"interval ({schedule.value})"


def _render_triggers_table(triggers: Sequence[TriggerConfig]) -> Table:
    table = Table(title=f"Triggers · {len(triggers)} configured", box=box.SIMPLE_HEAD)
    table.add_column("Trigger", style="cyan", no_wrap=True)
    table.add_column("Query", style="magenta", overflow="fold")
    table.add_column("Schedule", style="yellow")
    table.add_column("Since", style="green")
    table.add_column("State key", style="dim", overflow="fold")
    for trigger in triggers:
        table.add_row(
            trigger.trigger_id,
            trigger.query,
            _format_schedule(trigger.schedule),
            format_duration(trigger.since),
            trigger.resolved_state_key(),
        )
    return table


def _render_jobs_table(jobs: Iterable[dict]) -> Table:
    table = Table(title="Scheduled jobs", box=box.SIMPLE_HEAD)
    table.add_column("Job ID", style="cyan", no_wrap=True)
    table.add_column("Next run", style="green")
    table.add_column("Trigger", style="magenta", overflow="fold")
    for job in jobs:
        table.add_row(str(job.get("id", "-")), str(job.get("next_run_time", "-")), str(job.get("trigger", "-")))
    return table


def _render_entries_table(title: str, entries: Sequence[NormalizedEntry]) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAD)
    table.add_column("Timestamp", style="cyan", no_wrap=True)
    table.add_column("Content", overflow="fold")
    table.add_column("Labels", style="dim", overflow="fold")
    for entry in entries:
        labels = ", ".join(f"{key}={value}" for key, value in sorted(entry.labels.items()))
        table.add_row(entry.timestamp, entry.content, labels)
    return table


def _print_run(run: TriggerRun, as_json: bool) -> None:
    if as_json:
        typer.echo(json.dumps(run.to_output(), ensure_ascii=False))
        return
    result = run.result
    if result.empty:
        console.print(f"{run.trigger_id}: no new entries.", style="dim")
        return
    console.print(_render_entries_table(f"{run.trigger_id} · {result.count} new entries", result.fired))
    console.print(f"Last timestamp: {result.watermark}", style="green")
    if run.output_path is not None:
        console.print(f"Exported to {run.output_path}", style="dim")


app.add_typer(trigger_app, name="trigger")
app.add_typer(query_app, name="query")
app.add_typer(log_app, name="log")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:
    ctx.obj = build_state(verbose)


@trigger_app.command("list", help="List configured triggers and scheduled jobs.")
def trigger_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    triggers = state.repository.list_triggers()
    if not triggers:
        console.print("No triggers configured yet; create one with `loki-watch trigger add`.", style="yellow")
        raise typer.Exit(code=0)
    console.print(_render_triggers_table(triggers))
    jobs = list(state.scheduler.list_jobs())
    if jobs:
        console.print(_render_jobs_table(jobs))


@trigger_app.command("add", help="Create a trigger configuration.")
def trigger_add(
    ctx: typer.Context,
    trigger_id: str = typer.Argument(..., help="Trigger identifier."),
    url: str = typer.Option(..., "--url", help="Loki base URL, e.g. http://localhost:3100."),
    query: str = typer.Option(..., "--query", help="LogQL query to watch."),
    interval: str = typer.Option("1m", "--interval", help="Polling interval (30s, 5m, PT1M...)."),
    cron: Optional[str] = typer.Option(None, "--cron", help="Cron expression instead of an interval."),
    jitter: Optional[int] = typer.Option(None, "--jitter", help="Random delay in seconds added to each tick."),
    since: str = typer.Option("10m", "--since", help="Lookback window per poll."),
    max_records: int = typer.Option(100, "--max-records", help="Maximum entries per poll."),
    state_ttl: str = typer.Option("1d", "--state-ttl", help="How long seen entries are remembered."),
    state_key: Optional[str] = typer.Option(None, "--state-key", help="Override the state key."),
    auth_token: Optional[str] = typer.Option(None, "--token", help="Bearer token (${ENV} references allowed)."),
    tenant_id: Optional[str] = typer.Option(None, "--tenant", help="X-Scope-OrgID tenant."),
    output_format: str = typer.Option("json", "--output", help="json, csv, txt or sqlite."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing trigger."),
) -> None:
    state = _get_state(ctx)
    if state.repository.find_trigger_file(trigger_id) is not None and not force:
        console.print(f"Trigger `{trigger_id}` already exists; use --force to overwrite.", style="red")
        raise typer.Exit(code=1)
    try:
        if cron:
            schedule = ScheduleConfig(type=ScheduleType.CRON, value=cron, jitter=jitter)
        else:
            schedule = ScheduleConfig(type=ScheduleType.INTERVAL, value=interval, jitter=jitter)
        config = TriggerConfig(
            trigger_id=trigger_id,
            connection=LokiConnection(url=url, auth_token=auth_token, tenant_id=tenant_id),
            query=query,
            schedule=schedule,
            since=since,
            max_records=max_records,
            state_ttl=state_ttl,
            state_key=state_key,
            output_format=output_format,
        )
    except ValueError as exc:
        console.print(f"Invalid trigger: {exc}", style="red")
        raise typer.Exit(code=1) from exc
    path = state.repository.save_trigger(config)
    console.print(f"Trigger `{trigger_id}` saved to {path}", style="green")


@trigger_app.command("show", help="Print a trigger configuration.")
def trigger_show(ctx: typer.Context, trigger_id: str = typer.Argument(...)) -> None:
    state = _get_state(ctx)
    try:
        config = state.repository.load_trigger(trigger_id)
    except FileNotFoundError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1) from exc
    typer.echo(yaml.safe_dump(config.model_dump(mode="json", exclude_none=True), sort_keys=False))


@trigger_app.command("run", help="Run one polling cycle now.")
def trigger_run(
    ctx: typer.Context,
    trigger_id: str = typer.Argument(...),
    as_json: bool = typer.Option(False, "--json", help="Print the cycle output as JSON."),
) -> None:
    state = _get_state(ctx)
    try:
        run = state.orchestrator.run_trigger(trigger_id)
    except FileNotFoundError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1) from exc
    except RUN_ERRORS as exc:
        console.print(f"Cycle failed: {exc}", style="red")
        raise typer.Exit(code=2) from exc
    _print_run(run, as_json)


@trigger_app.command("run-all", help="Run one polling cycle for every trigger concurrently.")
def trigger_run_all(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    triggers = state.repository.list_triggers()
    if not triggers:
        console.print("No triggers configured.", style="yellow")
        raise typer.Exit(code=0)
    outcomes: dict[str, tuple[str, str]] = {}
    futures = {state.orchestrator.run_trigger_async(trigger): trigger.trigger_id for trigger in triggers}
    for future in as_completed(futures):
        trigger_id = futures[future]
        try:
            run = future.result()
        except RUN_ERRORS as exc:
            outcomes[trigger_id] = ("failed", str(exc))
            continue
        outcomes[trigger_id] = ("ok", str(run.result.count))

    table = Table(title="Run-all results", box=box.SIMPLE_HEAD)
    table.add_column("Trigger", style="cyan")
    table.add_column("Status")
    table.add_column("New entries / error", overflow="fold")
    failures = 0
    for trigger in triggers:
        status, detail = outcomes[trigger.trigger_id]
        failures += status == "failed"
        table.add_row(trigger.trigger_id, status, detail)
    console.print(table)
    if failures:
        raise typer.Exit(code=2)


@trigger_app.command("state", help="Show persisted deduplication state for a trigger.")
def trigger_state(ctx: typer.Context, trigger_id: str = typer.Argument(...)) -> None:
    state = _get_state(ctx)
    try:
        info = state.orchestrator.view_state(trigger_id)
    except FileNotFoundError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1) from exc
    if info is None:
        console.print(f"No state stored for `{trigger_id}`.", style="dim")
        return
    table = Table(title=f"{trigger_id} state", box=box.SIMPLE_HEAD, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for key in ("state_key", "entries", "updated_at", "expires_at"):
        table.add_row(key, str(info[key]))
    console.print(table)


@trigger_app.command("reset", help="Forget every entry seen by a trigger.")
def trigger_reset(
    ctx: typer.Context,
    trigger_id: str = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", help="Skip confirmation."),
) -> None:
    state = _get_state(ctx)
    if not yes and not typer.confirm(f"Reset state of `{trigger_id}`?", default=False):
        raise typer.Exit(code=0)
    try:
        removed = state.orchestrator.reset_state(trigger_id)
    except FileNotFoundError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1) from exc
    console.print("State cleared." if removed else "Nothing to clear.", style="green")


@trigger_app.command("remove", help="Delete a trigger and its state.")
def trigger_remove(
    ctx: typer.Context,
    trigger_id: str = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", help="Skip confirmation."),
) -> None:
    state = _get_state(ctx)
    if not yes and not typer.confirm(f"Delete `{trigger_id}` and its state?", default=False):
        raise typer.Exit(code=0)
    try:
        state.orchestrator.reset_state(trigger_id)
    except FileNotFoundError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1) from exc
    state.repository.delete_trigger(trigger_id)
    state.scheduler.remove_trigger(trigger_id)
    console.print(f"Trigger `{trigger_id}` removed.", style="green")


def _run_one_shot(ctx: typer.Context, config: QueryConfig, as_json: bool) -> None:
    state = _get_state(ctx)
    try:
        result = state.orchestrator.run_query(config)
    except LokiWatchError as exc:
        console.print(f"Query failed: {exc}", style="red")
        raise typer.Exit(code=2) from exc
    if as_json:
        typer.echo(json.dumps(result.to_output(), ensure_ascii=False))
        return
    console.print(_render_entries_table(f"{result.result_type or 'result'} · {result.count} entries", result.entries))


@query_app.command("instant", help="Evaluate a query at a single point in time.")
def query_instant(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="LogQL query."),
    url: str = typer.Option(..., "--url"),
    token: Optional[str] = typer.Option(None, "--token"),
    tenant: Optional[str] = typer.Option(None, "--tenant"),
    at: Optional[str] = typer.Option(None, "--time", help="Evaluation time (ns epoch or RFC3339)."),
    limit: int = typer.Option(100, "--limit"),
    direction: Direction = typer.Option(Direction.BACKWARD, "--direction"),
    as_json: bool = typer.Option(False, "--json"),
) -> None:
    config = QueryConfig(
        connection=LokiConnection(url=url, auth_token=token, tenant_id=tenant),
        query=query,
        kind="instant",
        time=at,
        limit=limit,
        direction=direction,
    )
    _run_one_shot(ctx, config, as_json)


@query_app.command("range", help="Query logs or metrics over a time range.")
def query_range(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="LogQL query."),
    url: str = typer.Option(..., "--url"),
    token: Optional[str] = typer.Option(None, "--token"),
    tenant: Optional[str] = typer.Option(None, "--tenant"),
    start: Optional[str] = typer.Option(None, "--start"),
    end: Optional[str] = typer.Option(None, "--end"),
    since: Optional[str] = typer.Option(None, "--since", help="Relative lookback, e.g. 1h."),
    step: Optional[str] = typer.Option(None, "--step", help="Resolution for metric queries."),
    interval: Optional[str] = typer.Option(None, "--interval", help="Entry interval for log queries."),
    limit: int = typer.Option(100, "--limit"),
    direction: Direction = typer.Option(Direction.BACKWARD, "--direction"),
    as_json: bool = typer.Option(False, "--json"),
) -> None:
    config = QueryConfig(
        connection=LokiConnection(url=url, auth_token=token, tenant_id=tenant),
        query=query,
        kind="range",
        start=start,
        end=end,
        since=since,
        step=step,
        interval=interval,
        limit=limit,
        direction=direction,
    )
    _run_one_shot(ctx, config, as_json)


@app.command("serve", help="Schedule every trigger and poll until interrupted.")
def serve(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    triggers = state.repository.list_triggers()
    if not triggers:
        console.print("No triggers configured.", style="yellow")
        raise typer.Exit(code=1)
    state.orchestrator.register_schedules(triggers)
    console.print(_render_jobs_table(state.scheduler.list_jobs()))
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Stopping scheduler…", style="dim")
    finally:
        state.scheduler.shutdown()
        state.orchestrator.thread_pool.shutdown()
        state.storage.close_all()


@log_app.command("list", help="List per-trigger log files.")
def log_list() -> None:
    logs = list(available_trigger_logs())
    if not logs:
        console.print("No trigger logs yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="Show the tail of a log file.")
def log_show(
    trigger_id: Optional[str] = typer.Argument(None, help="Trigger id (global log when omitted)."),
    tail: int = typer.Option(100, "--tail", help="Number of lines."),
) -> None:
    path = trigger_log_path(trigger_id) if trigger_id else log_dir() / "watch.log"
    lines = tail_log(path, tail)
    if not lines:
        console.print("No log lines yet.", style="dim")
        return
    console.print(f"{path.name} · last {len(lines)} lines", style="cyan")
    typer.echo("".join(lines))


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
