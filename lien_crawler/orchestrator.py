"""Run orchestrator: owns the run lifecycle and sequences jurisdictions."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from threading import Event, Lock
from typing import Any

import structlog

from .config import ConfigRepository, DateRange, GlobalConfig, JurisdictionProfile
from .engine import DocumentRetriever, FieldParser, Pacer, RawResultRow, SearchEngine
from .errors import (
    AlreadyRunning,
    DocumentUnavailable,
    JurisdictionFailed,
    NotRunning,
    PersistenceError,
    ProfileConfigurationError,
    RowDiscarded,
)
from .infra import RecordStore
from .ledger import LedgerSyncService
from .logging_conf import SystemLog, jurisdiction_logger
from .models import (
    AutomationRun,
    LienStatus,
    LogLevel,
    OrchestratorState,
    RunCounters,
    RunStatus,
    TriggerType,
)


class _StopRequested(Exception):
    """Raised at a checkpoint once stop() has been called."""


@dataclass(slots=True)
class OrchestratorStatus:
    """The orchestrator's own view of whether it is running."""

    is_running: bool
    latest_run_status: str | None
    latest_run_id: str | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "latest_run_status": self.latest_run_status,
            "latest_run_id": self.latest_run_id,
        }


_FINAL_LEVEL = {
    RunStatus.COMPLETED: LogLevel.SUCCESS,
    RunStatus.STOPPED: LogLevel.WARNING,
    RunStatus.FAILED: LogLevel.ERROR,
}


class RunOrchestrator:
    """Single-flight state machine: idle -> running -> completed/failed/stopped.

    Jurisdictions run one after another on a single worker thread. The stop
    flag is checked before each jurisdiction and after each results page, so
    a stop never interrupts a record write.
    """

    def __init__(
        self,
        config_repository: ConfigRepository,
        store: RecordStore,
        search_engine: SearchEngine,
        retriever: DocumentRetriever,
        pacer: Pacer,
        parser: FieldParser | None = None,
        ledger: LedgerSyncService | None = None,
        executor: ThreadPoolExecutor | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config_repository = config_repository
        self.global_config: GlobalConfig = config_repository.load_global_config()
        self.store = store
        self.search_engine = search_engine
        self.retriever = retriever
        self.pacer = pacer
        self.parser = parser or FieldParser()
        self.ledger = ledger
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="run")
        self.logger = logger or structlog.get_logger("lien_crawler").bind(component="orchestrator")
        self.system_log = SystemLog(store, "orchestrator", self.logger)
        self._lock = Lock()
        self._stop = Event()
        self._state = OrchestratorState.IDLE
        self._active_run: AutomationRun | None = None
        self._future: Future | None = None

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    @property
    def state(self) -> OrchestratorState:
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state is OrchestratorState.RUNNING

    def start(
        self,
        trigger: TriggerType | str = TriggerType.MANUAL,
        date_range: DateRange | None = None,
        *,
        block: bool = False,
    ) -> str:
        """Begin a run and return its id; raises ``AlreadyRunning`` otherwise."""

        trigger = TriggerType(trigger)
        date_range = date_range or DateRange.yesterday()
        with self._lock:
            if self._state is OrchestratorState.RUNNING:
                raise AlreadyRunning(self._active_run.id if self._active_run else None)
            profiles, rejected = self.config_repository.load_profiles(active_only=True)
            start_day, end_day = date_range.resolve()
            run = AutomationRun(
                trigger=trigger,
                metadata={
                    "start_date": start_day.isoformat(),
                    "end_date": end_day.isoformat(),
                    "jurisdictions": [profile.id for profile in profiles],
                },
            )
            self.store.begin_run(run)
            self._state = OrchestratorState.RUNNING
            self._active_run = run
            self._stop.clear()

        for problem in rejected:
            self.system_log.error(
                f"Rejected jurisdiction profile {problem.path.name}: {problem.message}",
                run_id=run.id,
            )
        self.system_log.info(
            f"Starting {trigger.value} run for {start_day} to {end_day} "
            f"across {len(profiles)} jurisdictions",
            run_id=run.id,
            transition="idle->running",
        )
        if block:
            self._execute(run, profiles, date_range)
        else:
            self._future = self._executor.submit(self._execute, run, profiles, date_range)
        return run.id

    def stop(self) -> bool:
        """Request cooperative cancellation; raises ``NotRunning`` when idle."""

        with self._lock:
            if self._state is not OrchestratorState.RUNNING:
                raise NotRunning()
            self._stop.set()
            run_id = self._active_run.id if self._active_run else None
        self.system_log.info("Stop requested; run ends at the next checkpoint", run_id=run_id)
        return True

    def wait(self, timeout: float | None = None) -> AutomationRun | None:
        """Block until the background run finishes and return its final row."""

        future = self._future
        if future is None:
            return None
        return future.result(timeout=timeout)

    def status(self) -> OrchestratorStatus:
        latest = self.store.latest_run()
        return OrchestratorStatus(
            is_running=self.is_running,
            latest_run_status=latest.status.value if latest else None,
            latest_run_id=latest.id if latest else None,
        )

    def recover_orphaned_run(self) -> AutomationRun | None:
        """Fail a run left ``running`` by a process that no longer exists."""

        with self._lock:
            if self._state is OrchestratorState.RUNNING:
                raise AlreadyRunning(self._active_run.id if self._active_run else None)
            persisted, run_id = self.store.orchestrator_state()
            if persisted is not OrchestratorState.RUNNING or run_id is None:
                return None
            orphan = self.store.get_run(run_id)
            counters = orphan.counters if orphan else RunCounters()
            final = self.store.finish_run(
                run_id, RunStatus.FAILED, counters, "Run interrupted before completion"
            )
        self.system_log.warning(
            f"Recovered orphaned run {run_id}", run_id=run_id, transition="running->failed"
        )
        return final

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
        self.retriever.close()

    # ------------------------------------------------------------------
    # Run execution
    # ------------------------------------------------------------------
    def _execute(
        self, run: AutomationRun, profiles: list[JurisdictionProfile], date_range: DateRange
    ) -> AutomationRun:
        status = RunStatus.COMPLETED
        error_message: str | None = None
        self.pacer.reset_run()
        try:
            for profile in profiles:
                if self._stop.is_set():
                    status = RunStatus.STOPPED
                    break
                try:
                    self._process_jurisdiction(run, profile, date_range)
                except _StopRequested:
                    status = RunStatus.STOPPED
                    break
                except PersistenceError:
                    raise
                except (ProfileConfigurationError, JurisdictionFailed) as exc:
                    self.system_log.warning(
                        f"Jurisdiction {profile.name} failed: {exc}",
                        run_id=run.id,
                        jurisdiction=profile.id,
                    )
                except Exception as exc:  # noqa: BLE001
                    self.system_log.warning(
                        f"Jurisdiction {profile.name} failed unexpectedly: {exc!r}",
                        run_id=run.id,
                        jurisdiction=profile.id,
                    )
                finally:
                    self.search_engine.release(profile.id)
        except PersistenceError as exc:
            status = RunStatus.FAILED
            error_message = f"Persistence failure: {exc}"
        except Exception as exc:  # noqa: BLE001
            status = RunStatus.FAILED
            error_message = f"{type(exc).__name__}: {exc}"
        return self._finalise(run, status, error_message)

    def _process_jurisdiction(
        self, run: AutomationRun, profile: JurisdictionProfile, date_range: DateRange
    ) -> None:
        profile = profile.model_copy(deep=True)
        self.pacer.register(profile)
        log = SystemLog(self.store, "orchestrator", jurisdiction_logger(profile.id))
        found_before = run.counters.liens_found
        log.info(f"Processing {profile.name}", run_id=run.id, jurisdiction=profile.id)
        seen: set[str] = set()
        pages = self.search_engine.search_pages(profile, date_range)
        try:
            for page in pages:
                for row in page.rows:
                    self._process_row(run, profile, row, seen, log)
                if self._stop.is_set():
                    raise _StopRequested()
        finally:
            pages.close()
        log.success(
            f"{profile.name}: {run.counters.liens_found - found_before} liens recorded",
            run_id=run.id,
            jurisdiction=profile.id,
        )

    def _process_row(
        self,
        run: AutomationRun,
        profile: JurisdictionProfile,
        row: RawResultRow,
        seen: set[str],
        log: SystemLog,
    ) -> None:
        try:
            fields = self.parser.parse(row, profile, seen)
            if profile.parsing.use_detail_page:
                detail = self.search_engine.fetch_detail(profile, fields.recording_number)
                fields = self.parser.parse(row.with_detail(detail), profile)
        except RowDiscarded as exc:
            log.warning(f"Row discarded: {exc}", jurisdiction=profile.id, page=row.page_number)
            return
        seen.add(fields.recording_number)
        for warning in fields.warnings:
            log.warning(warning, jurisdiction=profile.id)

        document_id = None
        try:
            document_id = self.retriever.fetch_document(fields.recording_number, profile).id
        except DocumentUnavailable as exc:
            log.warning(
                f"No PDF for {fields.recording_number}; record kept without document",
                jurisdiction=profile.id,
                attempts=len(exc.attempts),
            )

        record = self.store.upsert_lien(fields.to_record(profile.id, document_id))
        counters = run.counters
        counters.liens_found += 1
        if record.document_id:
            counters.liens_processed += 1
        if record.exceeds(self.global_config.over_threshold_amount):
            counters.liens_over_threshold += 1
        self.store.update_run_counters(run.id, counters)
        if self.ledger is not None and record.status is LienStatus.PENDING:
            self.ledger.enqueue(record.id)

    def _finalise(
        self, run: AutomationRun, status: RunStatus, error_message: str | None
    ) -> AutomationRun:
        try:
            final = self.store.finish_run(run.id, status, run.counters, error_message)
        except PersistenceError as exc:
            self.logger.error("run_finalise_failed", run_id=run.id, error=str(exc))
            run.status = status
            run.error_message = error_message
            final = run
        finally:
            with self._lock:
                self._state = OrchestratorState.IDLE
                self._active_run = None
        counters = final.counters
        self.system_log.log(
            _FINAL_LEVEL[status],
            f"Run {run.id} {status.value}: {counters.liens_found} found, "
            f"{counters.liens_processed} with documents, "
            f"{counters.liens_over_threshold} over threshold",
            run_id=run.id,
            transition=f"running->{status.value}",
            error=error_message,
        )
        return final


__all__ = ["OrchestratorStatus", "RunOrchestrator"]
