"""Typer CLI entrypoint for the lien crawler."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Iterable, Optional, Sequence

import typer
import yaml
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from typer import BadParameter

from .config import ConfigRepository, DateRange, JurisdictionProfile
from .config.loader import ProfileLoadError, slugify
from .engine import (
    BrowserHost,
    DocumentRetriever,
    Pacer,
    PlaywrightSearchSession,
    SearchEngine,
    build_strategies,
)
from .errors import AlreadyRunning, LienCrawlerError, NotRunning
from .infra import RecordStore, SQLiteManager, UserAgentPool
from .ledger import LedgerSyncService, build_ledger_service
from .logging_conf import available_jurisdiction_logs, configure_logging, tail_log
from .models import AutomationRun, LogLevel, TriggerType
from .orchestrator import RunOrchestrator
from .reconciler import ActivityReconciler, build_status_report
from .repair import DocumentRepairer
from .scheduler import APSchedulerAdapter

app = typer.Typer(
    help="County lien crawler command line tool",
    no_args_is_help=True,
    rich_markup_mode=None,
)
run_app = typer.Typer(name="run", help="Automation run commands", no_args_is_help=True)
jurisdiction_app = typer.Typer(
    name="jurisdiction", help="Jurisdiction profile commands", no_args_is_help=True
)
documents_app = typer.Typer(name="documents", help="Document maintenance", no_args_is_help=True)
ledger_app = typer.Typer(name="ledger", help="External ledger sync", no_args_is_help=True)
log_app = typer.Typer(name="log", help="Log viewing commands", no_args_is_help=True)
schedule_app = typer.Typer(name="schedule", help="Scheduled runs", no_args_is_help=True)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    storage: SQLiteManager
    store: RecordStore
    orchestrator: RunOrchestrator
    reconciler: ActivityReconciler
    repairer: DocumentRepairer
    scheduler: APSchedulerAdapter
    ledger: LedgerSyncService | None = None


def build_state(verbose: bool) -> AppState:
    logger = configure_logging(verbose=verbose)
    repository = ConfigRepository()
    global_config = repository.load_global_config()
    storage = SQLiteManager()
    db_path = repository.database_path()
    store = RecordStore.open(storage, db_path)
    monitor_store = RecordStore.open(storage, db_path, dedicated=True)

    ua_pool = UserAgentPool(global_config.user_agent_list or None)
    browser_host = BrowserHost(global_config.browser, logger=logger.bind(component="browser"))
    pacer = Pacer()
    search_engine = SearchEngine(
        pacer,
        lambda profile: PlaywrightSearchSession(profile, browser_host, ua_pool),
        retry=global_config.retry,
        logger=logger.bind(component="search"),
    )
    retriever = DocumentRetriever(
        build_strategies(global_config, browser_host),
        pacer,
        store,
        ua_pool=ua_pool,
        logger=logger.bind(component="documents"),
    )
    ledger = build_ledger_service(global_config.ledger, store, logger.bind(component="ledger"))
    orchestrator = RunOrchestrator(
        repository,
        store,
        search_engine,
        retriever,
        pacer,
        ledger=ledger,
        logger=logger.bind(component="orchestrator"),
    )
    return AppState(
        repository=repository,
        storage=storage,
        store=store,
        orchestrator=orchestrator,
        reconciler=ActivityReconciler(monitor_store),
        repairer=DocumentRepairer(
            repository, store, retriever, pacer, logger.bind(component="repair")
        ),
        scheduler=APSchedulerAdapter(logger=logger),
        ledger=ledger,
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _parse_date_option(value: str, option_name: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise BadParameter(f"{option_name} must be an ISO date such as 2024-03-01.") from exc


def _resolve_date_range(
    start: Optional[str], end: Optional[str], relative: Optional[str]
) -> DateRange:
    if relative and (start or end):
        raise BadParameter("--relative cannot be combined with --start/--end.")
    if relative:
        if relative not in ("yesterday", "today", "last_7_days"):
            raise BadParameter("--relative must be yesterday, today or last_7_days.")
        return DateRange(relative=relative)
    if not start and not end:
        return DateRange.yesterday()
    start_day = _parse_date_option(start, "--start") if start else None
    end_day = _parse_date_option(end, "--end") if end else start_day
    start_day = start_day or end_day
    if end_day < start_day:
        raise BadParameter("--end must not precede --start.")
    return DateRange.between(start_day, end_day)


# ----------------------------------------------------------------------
# Rendering
# ----------------------------------------------------------------------
def _render_runs_table(runs: Sequence[AutomationRun]) -> Table:
    table = Table(title=f"Automation runs · {len(runs)}", box=box.SIMPLE_HEAD)
    table.add_column("Run ID", style="cyan", no_wrap=True)
    table.add_column("Trigger", style="magenta")
    table.add_column("Status", style="green")
    table.add_column("Started", style="dim")
    table.add_column("Found", justify="right")
    table.add_column("With PDF", justify="right")
    table.add_column("Over threshold", justify="right")
    table.add_column("Error", style="red", overflow="fold")
    for run in runs:
        table.add_row(
            run.id,
            run.trigger.value,
            run.status.value,
            run.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            str(run.counters.liens_found),
            str(run.counters.liens_processed),
            str(run.counters.liens_over_threshold),
            run.error_message or "-",
        )
    return table


def _render_profiles_table(profiles: Sequence[JurisdictionProfile]) -> Table:
    table = Table(title=f"Jurisdictions · {len(profiles)}", box=box.SIMPLE_HEAD)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="green")
    table.add_column("Region")
    table.add_column("Active", style="magenta")
    table.add_column("Pagination")
    table.add_column("Pages/run", justify="right")
    table.add_column("Req/min", justify="right")
    for profile in profiles:
        table.add_row(
            profile.id,
            profile.name,
            profile.region,
            "yes" if profile.active else "no",
            profile.pagination.value,
            str(profile.pacing.max_pages_per_run),
            str(profile.pacing.max_requests_per_minute),
        )
    return table


def _render_rejected(errors: Iterable[ProfileLoadError]) -> None:
    for problem in errors:
        console.print(f"- {problem.path.name}: {escape(problem.message)}", style="red")


def _render_jobs_table(jobs: Iterable[dict]) -> Table:
    table = Table(title="Scheduled jobs", box=box.SIMPLE_HEAD)
    table.add_column("Job ID", style="cyan", no_wrap=True)
    table.add_column("Next run", style="green")
    table.add_column("Trigger", style="magenta", overflow="fold")
    for job in jobs:
        table.add_row(
            str(job.get("id", "-")),
            str(job.get("next_run_time", "-")),
            str(job.get("trigger", "-")),
        )
    return table


app.add_typer(run_app, name="run")
app.add_typer(jurisdiction_app, name="jurisdiction")
app.add_typer(documents_app, name="documents")
app.add_typer(ledger_app, name="ledger")
app.add_typer(log_app, name="log")
app.add_typer(schedule_app, name="schedule")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:
    state = build_state(verbose)
    ctx.obj = state
    ctx.call_on_close(state.storage.close_all)


# ----------------------------------------------------------------------
# Runs
# ----------------------------------------------------------------------
@run_app.command("start", help="Run every active jurisdiction now and wait for the result.")
def run_start(
    ctx: typer.Context,
    start: Optional[str] = typer.Option(None, "--start", help="First recording date (ISO)."),
    end: Optional[str] = typer.Option(None, "--end", help="Last recording date (ISO)."),
    relative: Optional[str] = typer.Option(
        None, "--relative", help="yesterday, today or last_7_days."
    ),
) -> None:
    state = _get_state(ctx)
    date_range = _resolve_date_range(start, end, relative)
    try:
        run_id = state.orchestrator.start(TriggerType.MANUAL, date_range)
    except AlreadyRunning as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1)
    console.print(f"Run {run_id} started; press Ctrl+C to stop it.", style="cyan")
    try:
        state.orchestrator.wait()
    except KeyboardInterrupt:
        if state.orchestrator.is_running:
            state.orchestrator.stop()
            console.print("Stopping at the next checkpoint...", style="yellow")
        state.orchestrator.wait()
    run = state.store.get_run(run_id)
    if run is None:
        console.print(f"Run {run_id} finished but its record is missing.", style="red")
        raise typer.Exit(code=1)
    console.print(_render_runs_table([run]))
    if run.error_message:
        raise typer.Exit(code=1)


@run_app.command("stop", help="Ask the in-process run to stop at its next checkpoint.")
def run_stop(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    try:
        state.orchestrator.stop()
    except NotRunning as exc:
        console.print(str(exc), style="yellow")
        raise typer.Exit(code=1)
    console.print("Stop requested.", style="green")


@run_app.command("recover", help="Mark a run orphaned by a crashed process as failed.")
def run_recover(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    try:
        recovered = state.orchestrator.recover_orphaned_run()
    except AlreadyRunning as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1)
    if recovered is None:
        console.print("No orphaned run found.", style="dim")
        return
    console.print(_render_runs_table([recovered]))


@run_app.command("list", help="Show recent automation runs.")
def run_list(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", help="Number of runs to show."),
) -> None:
    state = _get_state(ctx)
    runs = state.store.list_runs(limit)
    if not runs:
        console.print("No runs recorded yet.", style="dim")
        return
    console.print(_render_runs_table(runs))


@app.command("status", help="Compare the orchestrator's reported state with observed activity.")
def status(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print the raw report as JSON."),
) -> None:
    state = _get_state(ctx)
    report = build_status_report(state.orchestrator, state.reconciler)
    if as_json:
        console.print_json(json.dumps(report))
        return
    orchestrator = report["orchestrator"]
    activity = report["activity"]
    table = Table(title="Status", box=box.MINIMAL_DOUBLE_HEAD, show_header=False)
    table.add_column("Field", style="dim")
    table.add_column("Value", style="cyan")
    table.add_row("Reported running", str(orchestrator["is_running"]))
    table.add_row("Latest run", str(orchestrator["latest_run_id"] or "-"))
    table.add_row("Latest run status", str(orchestrator["latest_run_status"] or "-"))
    table.add_row("Classification", activity["classification"])
    for window, count in activity["recent_activity"].items():
        table.add_row(f"Liens created ({window})", str(count))
    console.print(table)


# ----------------------------------------------------------------------
# Jurisdictions
# ----------------------------------------------------------------------
@jurisdiction_app.command("list", help="List configured jurisdiction profiles.")
def jurisdiction_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    profiles, errors = state.repository.load_profiles()
    if not profiles and not errors:
        console.print(
            "No jurisdictions configured; create one with `lien-crawler jurisdiction add`.",
            style="yellow",
        )
        return
    if profiles:
        console.print(_render_profiles_table(profiles))
    if errors:
        console.print("Rejected profiles:", style="red")
        _render_rejected(errors)


@jurisdiction_app.command("add", help="Create a jurisdiction profile from a file or the template.")
def jurisdiction_add(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Display name, e.g. 'Maricopa County'."),
    file: Optional[Path] = typer.Option(None, "--file", help="YAML profile to import."),
) -> None:
    state = _get_state(ctx)
    if file is not None:
        content = file.read_text(encoding="utf-8")
    else:
        template = state.repository.template_path().read_text(encoding="utf-8")
        content = template.replace("maricopa-az", slugify(name)).replace("Maricopa County", name)
        content = typer.edit(text=content)
        if content is None:
            console.print("Profile not created (editor closed without saving).", style="yellow")
            raise typer.Exit(code=0)
    try:
        payload = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        console.print(f"Could not parse YAML: {escape(str(exc))}", style="red")
        raise typer.Exit(code=1)
    if not isinstance(payload, dict):
        console.print("Profile content must be a mapping.", style="red")
        raise typer.Exit(code=1)
    payload["name"] = name
    payload.setdefault("id", slugify(name))
    try:
        profile = JurisdictionProfile.model_validate(payload)
    except (ValidationError, ValueError) as exc:
        console.print(f"Invalid profile: {escape(str(exc))}", style="red")
        raise typer.Exit(code=1)
    path = state.repository.save_profile(profile)
    console.print(f"Jurisdiction `{profile.id}` saved to {path}.", style="green")


@jurisdiction_app.command("validate", help="Validate every profile file.")
def jurisdiction_validate(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    profiles, errors = state.repository.load_profiles()
    console.print(f"{len(profiles)} valid profile(s).", style="green")
    if errors:
        console.print(f"{len(errors)} rejected profile(s):", style="red")
        _render_rejected(errors)
        raise typer.Exit(code=1)


# ----------------------------------------------------------------------
# Maintenance
# ----------------------------------------------------------------------
@documents_app.command("repair", help="Retry PDF retrieval for liens stored without a document.")
def documents_repair(
    ctx: typer.Context,
    jurisdiction: Optional[str] = typer.Option(None, "--jurisdiction", help="Limit to one id."),
    limit: Optional[int] = typer.Option(None, "--limit", help="Maximum liens to examine."),
) -> None:
    state = _get_state(ctx)
    summary = state.repairer.repair(jurisdiction, limit)
    console.print(
        f"Examined {summary.examined}: {summary.repaired} repaired, "
        f"{summary.still_missing} still missing, {len(summary.skipped)} skipped.",
        style="green" if summary.still_missing == 0 else "yellow",
    )


@ledger_app.command("sync", help="Push pending liens to the external ledger.")
def ledger_sync(
    ctx: typer.Context,
    limit: Optional[int] = typer.Option(None, "--limit", help="Maximum liens to sync."),
) -> None:
    state = _get_state(ctx)
    if state.ledger is None:
        console.print("Ledger sync is disabled in the global configuration.", style="yellow")
        raise typer.Exit(code=1)
    summary = state.ledger.sync_pending(limit)
    console.print(
        f"Synced {summary.synced} of {summary.attempted}; {summary.failed} left pending.",
        style="green" if summary.failed == 0 else "yellow",
    )
    if summary.failed:
        raise typer.Exit(code=1)


# ----------------------------------------------------------------------
# Logs
# ----------------------------------------------------------------------
@log_app.command("tail", help="Show the last lines of the global or a jurisdiction log.")
def log_tail(
    ctx: typer.Context,
    jurisdiction: Optional[str] = typer.Option(None, "--jurisdiction", help="Jurisdiction id."),
    lines: int = typer.Option(100, "--lines", help="Number of lines to show."),
) -> None:
    state = _get_state(ctx)
    logs_dir = state.repository.locator.logs_dir
    if jurisdiction:
        path = logs_dir / "jurisdictions" / f"{jurisdiction}.log"
    else:
        path = logs_dir / "crawler.log"
    content = tail_log(path, lines)
    if not content:
        available = ", ".join(p.stem for p in available_jurisdiction_logs())
        console.print("No log output yet.", style="dim")
        if available:
            console.print(f"Jurisdiction logs: {available}", style="dim")
        return
    console.print(f"{path.name} · last {len(content)} lines", style="cyan")
    console.print("".join(content))


@log_app.command("recent", help="Show recent system log entries from the database.")
def log_recent(
    ctx: typer.Context,
    limit: int = typer.Option(50, "--limit", help="Number of entries."),
    component: Optional[str] = typer.Option(None, "--component", help="Filter by component."),
    level: Optional[str] = typer.Option(None, "--level", help="info, success, warning or error."),
) -> None:
    state = _get_state(ctx)
    try:
        level_filter = LogLevel(level) if level else None
    except ValueError as exc:
        raise BadParameter(f"Unknown level: {level}") from exc
    entries = state.store.recent_logs(limit, component=component, level=level_filter)
    if not entries:
        console.print("No system log entries.", style="dim")
        return
    table = Table(title=f"System log · {len(entries)}", box=box.SIMPLE_HEAD)
    table.add_column("Time", style="dim", no_wrap=True)
    table.add_column("Level", style="magenta")
    table.add_column("Component", style="cyan")
    table.add_column("Message", overflow="fold")
    for entry in entries:
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.level.value,
            entry.component,
            escape(entry.message),
        )
    console.print(table)


# ----------------------------------------------------------------------
# Scheduling
# ----------------------------------------------------------------------
@schedule_app.command("serve", help="Run the daily schedule in the foreground until interrupted.")
def schedule_serve(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    schedule = state.repository.load_global_config().schedule
    if not schedule.enabled:
        console.print("Scheduling is disabled in the global configuration.", style="yellow")
        raise typer.Exit(code=1)
    state.scheduler.schedule_daily(schedule, state.orchestrator)
    state.scheduler.start()
    console.print(_render_jobs_table(state.scheduler.list_jobs()))
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Shutting down scheduler.", style="dim")
    finally:
        state.scheduler.shutdown()
        state.orchestrator.shutdown()


def cli() -> None:
    try:
        app()
    except LienCrawlerError as exc:
        console.print(escape(str(exc)), style="red")
        raise SystemExit(1) from exc


if __name__ == "__main__":  # pragma: no cover
    cli()


__all__ = ["AppState", "app", "build_state", "cli"]
