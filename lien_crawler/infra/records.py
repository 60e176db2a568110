"""Repository over the SQLite tables holding liens, documents, runs and logs."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from threading import Lock
from typing import Any, Iterator

from ..errors import AlreadyRunning, PersistenceError
from ..models import (
    NEEDS_EXTRACTION,
    AutomationRun,
    DocumentBlob,
    LienRecord,
    LienStatus,
    LogLevel,
    OrchestratorState,
    RunCounters,
    RunStatus,
    SystemLogEntry,
    TriggerType,
    utcnow,
)
from .storage import SQLiteManager


def _ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


_UPSERT_LIEN = """
INSERT INTO liens (
    id, jurisdiction_id, recording_number, record_date,
    debtor_name, debtor_address, creditor_name, creditor_address,
    amount, status, external_id, document_id, source_url, failure_reason,
    discovered_at, updated_at
) VALUES (
    :id, :jurisdiction_id, :recording_number, :record_date,
    :debtor_name, :debtor_address, :creditor_name, :creditor_address,
    :amount, :status, :external_id, :document_id, :source_url, :failure_reason,
    :discovered_at, :updated_at
)
ON CONFLICT (jurisdiction_id, recording_number) DO UPDATE SET
    record_date = excluded.record_date,
    debtor_name = CASE WHEN excluded.debtor_name = :sentinel
        THEN liens.debtor_name ELSE excluded.debtor_name END,
    debtor_address = CASE WHEN excluded.debtor_address = :sentinel
        THEN liens.debtor_address ELSE excluded.debtor_address END,
    creditor_name = CASE WHEN excluded.creditor_name = :sentinel
        THEN liens.creditor_name ELSE excluded.creditor_name END,
    creditor_address = CASE WHEN excluded.creditor_address = :sentinel
        THEN liens.creditor_address ELSE excluded.creditor_address END,
    amount = COALESCE(excluded.amount, liens.amount),
    document_id = COALESCE(excluded.document_id, liens.document_id),
    source_url = COALESCE(excluded.source_url, liens.source_url),
    updated_at = excluded.updated_at
"""


class RecordStore:
    """Thread-safe access to persisted crawler state.

    Each instance owns one connection and one lock. The orchestrator and the
    activity reconciler are given separate instances so that a stuck writer
    never blocks the reconciler's reads.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = Lock()

    @classmethod
    def open(cls, manager: SQLiteManager, path: Path, *, dedicated: bool = False) -> "RecordStore":
        try:
            conn = manager.open_dedicated(path) if dedicated else manager.connect(path)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open database {path}: {exc}") from exc
        return cls(conn)

    # ------------------------------------------------------------------
    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as exc:
                raise PersistenceError(str(exc)) from exc

    def _query(self, sql: str, params: Any = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise PersistenceError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Liens
    # ------------------------------------------------------------------
    def upsert_lien(self, record: LienRecord) -> LienRecord:
        """Insert or update a lien keyed by (jurisdiction, recording number).

        Re-discovery never regresses status, external id or discovery time,
        and never replaces extracted values with the placeholder sentinel.
        """

        record.updated_at = utcnow()
        params = {
            "id": record.id,
            "jurisdiction_id": record.jurisdiction_id,
            "recording_number": record.recording_number,
            "record_date": record.record_date.isoformat(),
            "debtor_name": record.debtor_name,
            "debtor_address": record.debtor_address,
            "creditor_name": record.creditor_name,
            "creditor_address": record.creditor_address,
            "amount": str(record.amount) if record.amount is not None else None,
            "status": record.status.value,
            "external_id": record.external_id,
            "document_id": record.document_id,
            "source_url": record.source_url,
            "failure_reason": record.failure_reason,
            "discovered_at": _ts(record.discovered_at),
            "updated_at": _ts(record.updated_at),
            "sentinel": NEEDS_EXTRACTION,
        }
        with self._transaction() as conn:
            conn.execute(_UPSERT_LIEN, params)
            row = conn.execute(
                "SELECT * FROM liens WHERE jurisdiction_id = ? AND recording_number = ?",
                (record.jurisdiction_id, record.recording_number),
            ).fetchone()
        return _row_to_lien(row)

    def get_lien(self, jurisdiction_id: str, recording_number: str) -> LienRecord | None:
        rows = self._query(
            "SELECT * FROM liens WHERE jurisdiction_id = ? AND recording_number = ?",
            (jurisdiction_id, recording_number),
        )
        return _row_to_lien(rows[0]) if rows else None

    def get_lien_by_id(self, lien_id: str) -> LienRecord | None:
        rows = self._query("SELECT * FROM liens WHERE id = ?", (lien_id,))
        return _row_to_lien(rows[0]) if rows else None

    def list_liens(
        self,
        *,
        status: LienStatus | None = None,
        jurisdiction_id: str | None = None,
        limit: int | None = 100,
    ) -> list[LienRecord]:
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if jurisdiction_id is not None:
            clauses.append("jurisdiction_id = ?")
            params.append(jurisdiction_id)
        sql = "SELECT * FROM liens"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY discovered_at DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [_row_to_lien(row) for row in self._query(sql, params)]

    def liens_missing_documents(
        self, jurisdiction_id: str | None = None, limit: int | None = None
    ) -> list[LienRecord]:
        sql = "SELECT * FROM liens WHERE document_id IS NULL"
        params: list[Any] = []
        if jurisdiction_id is not None:
            sql += " AND jurisdiction_id = ?"
            params.append(jurisdiction_id)
        sql += " ORDER BY discovered_at"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [_row_to_lien(row) for row in self._query(sql, params)]

    def attach_document(self, lien_id: str, document_id: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE liens SET document_id = ?, updated_at = ? WHERE id = ?",
                (document_id, _ts(utcnow()), lien_id),
            )

    def mark_synced(self, lien_id: str, external_id: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE liens SET status = ?, external_id = ?, updated_at = ? WHERE id = ?",
                (LienStatus.SYNCED.value, external_id, _ts(utcnow()), lien_id),
            )

    def set_lien_status(
        self, lien_id: str, status: LienStatus, failure_reason: str | None = None
    ) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE liens SET status = ?, failure_reason = ?, updated_at = ? WHERE id = ?",
                (status.value, failure_reason, _ts(utcnow()), lien_id),
            )

    def delete_lien(self, lien_id: str) -> bool:
        """Operator-initiated delete; the lien's document blob goes with it."""

        with self._transaction() as conn:
            row = conn.execute("SELECT document_id FROM liens WHERE id = ?", (lien_id,)).fetchone()
            if row is None:
                return False
            conn.execute("DELETE FROM liens WHERE id = ?", (lien_id,))
            if row["document_id"]:
                conn.execute("DELETE FROM document_blobs WHERE id = ?", (row["document_id"],))
        return True

    def count_liens(self) -> int:
        return self._query("SELECT COUNT(*) AS total FROM liens")[0]["total"]

    def count_liens_created_since(self, since: datetime) -> int:
        rows = self._query(
            "SELECT COUNT(*) AS total FROM liens WHERE discovered_at >= ?", (_ts(since),)
        )
        return rows[0]["total"]

    # ------------------------------------------------------------------
    # Document blobs
    # ------------------------------------------------------------------
    def save_blob(self, blob: DocumentBlob) -> DocumentBlob:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO document_blobs (id, filename, byte_size, content, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (blob.id, blob.filename, blob.byte_size, blob.content, _ts(blob.created_at)),
            )
        return blob

    def get_blob(self, blob_id: str) -> DocumentBlob | None:
        rows = self._query("SELECT * FROM document_blobs WHERE id = ?", (blob_id,))
        if not rows:
            return None
        row = rows[0]
        return DocumentBlob(
            id=row["id"],
            filename=row["filename"],
            content=bytes(row["content"]),
            created_at=_parse_ts(row["created_at"]),
        )

    # ------------------------------------------------------------------
    # Runs and orchestrator state
    # ------------------------------------------------------------------
    def begin_run(self, run: AutomationRun) -> AutomationRun:
        """Create a run and claim the orchestrator slot in one transaction."""

        with self._transaction() as conn:
            claimed = conn.execute(
                "UPDATE orchestrator_state SET status = ?, run_id = ?, updated_at = ? "
                "WHERE id = 1 AND status = ?",
                (
                    OrchestratorState.RUNNING.value,
                    run.id,
                    _ts(run.started_at),
                    OrchestratorState.IDLE.value,
                ),
            )
            if claimed.rowcount == 0:
                current = conn.execute(
                    "SELECT run_id FROM orchestrator_state WHERE id = 1"
                ).fetchone()
                raise AlreadyRunning(current["run_id"] if current else None)
            conn.execute(
                "INSERT INTO automation_runs (id, trigger, status, started_at, metadata) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    run.id,
                    run.trigger.value,
                    run.status.value,
                    _ts(run.started_at),
                    json.dumps(run.metadata),
                ),
            )
        return run

    def update_run_counters(self, run_id: str, counters: RunCounters) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE automation_runs SET liens_found = ?, liens_processed = ?, "
                "liens_over_threshold = ? WHERE id = ? AND ended_at IS NULL",
                (
                    counters.liens_found,
                    counters.liens_processed,
                    counters.liens_over_threshold,
                    run_id,
                ),
            )

    def finish_run(
        self,
        run_id: str,
        status: RunStatus,
        counters: RunCounters,
        error_message: str | None = None,
    ) -> AutomationRun:
        """Write the terminal status and release the orchestrator slot."""

        ended_at = _ts(utcnow())
        with self._transaction() as conn:
            conn.execute(
                "UPDATE automation_runs SET status = ?, ended_at = ?, liens_found = ?, "
                "liens_processed = ?, liens_over_threshold = ?, error_message = ? "
                "WHERE id = ? AND ended_at IS NULL",
                (
                    status.value,
                    ended_at,
                    counters.liens_found,
                    counters.liens_processed,
                    counters.liens_over_threshold,
                    error_message,
                    run_id,
                ),
            )
            conn.execute(
                "UPDATE orchestrator_state SET status = ?, run_id = NULL, updated_at = ? "
                "WHERE id = 1 AND run_id = ?",
                (OrchestratorState.IDLE.value, ended_at, run_id),
            )
        run = self.get_run(run_id)
        if run is None:
            raise PersistenceError(f"Run {run_id} vanished while finalising")
        return run

    def orchestrator_state(self) -> tuple[OrchestratorState, str | None]:
        row = self._query("SELECT status, run_id FROM orchestrator_state WHERE id = 1")[0]
        return OrchestratorState(row["status"]), row["run_id"]

    def get_run(self, run_id: str) -> AutomationRun | None:
        rows = self._query("SELECT * FROM automation_runs WHERE id = ?", (run_id,))
        return _row_to_run(rows[0]) if rows else None

    def latest_run(self) -> AutomationRun | None:
        rows = self._query(
            "SELECT * FROM automation_runs ORDER BY started_at DESC, rowid DESC LIMIT 1"
        )
        return _row_to_run(rows[0]) if rows else None

    def list_runs(self, limit: int = 20) -> list[AutomationRun]:
        rows = self._query(
            "SELECT * FROM automation_runs ORDER BY started_at DESC, rowid DESC LIMIT ?",
            (limit,),
        )
        return [_row_to_run(row) for row in rows]

    # ------------------------------------------------------------------
    # System log
    # ------------------------------------------------------------------
    def append_log(self, entry: SystemLogEntry) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO system_logs (timestamp, level, component, message, metadata) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    _ts(entry.timestamp),
                    entry.level.value,
                    entry.component,
                    entry.message,
                    json.dumps(entry.metadata),
                ),
            )

    def recent_logs(
        self,
        limit: int = 50,
        *,
        component: str | None = None,
        level: LogLevel | None = None,
    ) -> list[SystemLogEntry]:
        sql = "SELECT * FROM system_logs"
        clauses: list[str] = []
        params: list[Any] = []
        if component is not None:
            clauses.append("component = ?")
            params.append(component)
        if level is not None:
            clauses.append("level = ?")
            params.append(level.value)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        return [
            SystemLogEntry(
                level=LogLevel(row["level"]),
                component=row["component"],
                message=row["message"],
                timestamp=_parse_ts(row["timestamp"]),
                metadata=json.loads(row["metadata"] or "{}"),
            )
            for row in self._query(sql, params)
        ]

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def _row_to_lien(row: sqlite3.Row) -> LienRecord:
    amount = row["amount"]
    return LienRecord(
        id=row["id"],
        jurisdiction_id=row["jurisdiction_id"],
        recording_number=row["recording_number"],
        record_date=date.fromisoformat(row["record_date"]),
        debtor_name=row["debtor_name"],
        debtor_address=row["debtor_address"],
        creditor_name=row["creditor_name"],
        creditor_address=row["creditor_address"],
        amount=Decimal(amount) if amount is not None else None,
        status=LienStatus(row["status"]),
        external_id=row["external_id"],
        document_id=row["document_id"],
        source_url=row["source_url"],
        failure_reason=row["failure_reason"],
        discovered_at=_parse_ts(row["discovered_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


def _row_to_run(row: sqlite3.Row) -> AutomationRun:
    return AutomationRun(
        id=row["id"],
        trigger=TriggerType(row["trigger"]),
        status=RunStatus(row["status"]),
        started_at=_parse_ts(row["started_at"]),
        ended_at=_parse_ts(row["ended_at"]),
        counters=RunCounters(
            liens_found=row["liens_found"],
            liens_processed=row["liens_processed"],
            liens_over_threshold=row["liens_over_threshold"],
        ),
        error_message=row["error_message"],
        metadata=json.loads(row["metadata"] or "{}"),
    )


__all__ = ["RecordStore"]
