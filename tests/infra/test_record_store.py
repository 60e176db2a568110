from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from lien_crawler.errors import AlreadyRunning, PersistenceError
from lien_crawler.infra import DEFAULT_USER_AGENT, RecordStore, SQLiteManager, UserAgentPool
from lien_crawler.models import (
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


def _lien(number: str = "20240000001", **overrides) -> LienRecord:  # noqa: ANN003
    values = {
        "jurisdiction_id": "test-county",
        "recording_number": number,
        "record_date": date(2024, 1, 15),
        "amount": Decimal("25000.00"),
        "debtor_name": "SMITH JOHN",
    }
    values.update(overrides)
    return LienRecord(**values)


def test_sqlite_manager_initialises_schema(tmp_path) -> None:
    conn = SQLiteManager().connect(tmp_path / "schema.db")
    tables = {row["name"] for row in conn.execute("SELECT name FROM sqlite_master")}
    assert {"liens", "document_blobs", "automation_runs", "orchestrator_state", "system_logs"} <= tables
    state = conn.execute("SELECT status, run_id FROM orchestrator_state").fetchone()
    assert (state["status"], state["run_id"]) == ("idle", None)


def test_sqlite_manager_reset(tmp_path) -> None:
    manager = SQLiteManager()
    path = tmp_path / "reset.db"
    RecordStore(manager.connect(path)).upsert_lien(_lien())
    manager.reset(path)
    assert not path.exists()
    assert RecordStore(manager.connect(path)).count_liens() == 0


def test_upsert_inserts_then_preserves_lifecycle_fields(record_store: RecordStore) -> None:
    first = record_store.upsert_lien(_lien())
    record_store.mark_synced(first.id, "ext-42")

    again = record_store.upsert_lien(
        _lien(debtor_name=NEEDS_EXTRACTION, amount=Decimal("26000.00"), document_id=None)
    )
    assert again.id == first.id
    assert again.status is LienStatus.SYNCED
    assert again.external_id == "ext-42"
    assert again.discovered_at == first.discovered_at
    assert again.debtor_name == "SMITH JOHN"
    assert again.amount == Decimal("26000.00")
    assert record_store.count_liens() == 1


def test_same_recording_number_in_two_jurisdictions(record_store: RecordStore) -> None:
    record_store.upsert_lien(_lien())
    record_store.upsert_lien(_lien(jurisdiction_id="other-county"))
    assert record_store.count_liens() == 2


def test_documents_attach_and_delete_with_lien(record_store: RecordStore) -> None:
    lien = record_store.upsert_lien(_lien())
    assert [item.id for item in record_store.liens_missing_documents()] == [lien.id]
    blob = record_store.save_blob(DocumentBlob(filename="20240000001.pdf", content=b"%PDF-1.4"))
    record_store.attach_document(lien.id, blob.id)
    assert record_store.liens_missing_documents() == []
    assert record_store.get_lien_by_id(lien.id).document_id == blob.id

    assert record_store.delete_lien(lien.id) is True
    assert record_store.get_blob(blob.id) is None
    assert record_store.delete_lien(lien.id) is False


def test_list_liens_filters(record_store: RecordStore) -> None:
    kept = record_store.upsert_lien(_lien("20240000001"))
    other = record_store.upsert_lien(_lien("20240000002"))
    record_store.set_lien_status(other.id, LienStatus.FAILED, "bad address")
    pending = record_store.list_liens(status=LienStatus.PENDING)
    assert [item.id for item in pending] == [kept.id]
    failed = record_store.get_lien("test-county", "20240000002")
    assert failed.failure_reason == "bad address"


def test_count_liens_created_since(record_store: RecordStore) -> None:
    now = utcnow()
    record_store.upsert_lien(_lien("20240000001", discovered_at=now - timedelta(hours=2)))
    record_store.upsert_lien(_lien("20240000002", discovered_at=now - timedelta(minutes=1)))
    assert record_store.count_liens_created_since(now - timedelta(minutes=5)) == 1
    assert record_store.count_liens_created_since(now - timedelta(days=1)) == 2


def test_run_claims_and_releases_orchestrator_slot(record_store: RecordStore) -> None:
    run = record_store.begin_run(AutomationRun(trigger=TriggerType.MANUAL))
    assert record_store.orchestrator_state() == (OrchestratorState.RUNNING, run.id)
    with pytest.raises(AlreadyRunning) as excinfo:
        record_store.begin_run(AutomationRun(trigger=TriggerType.SCHEDULED))
    assert excinfo.value.run_id == run.id

    record_store.update_run_counters(run.id, RunCounters(liens_found=3))
    final = record_store.finish_run(run.id, RunStatus.COMPLETED, RunCounters(3, 2, 1))
    assert final.status is RunStatus.COMPLETED
    assert final.ended_at is not None
    assert (final.counters.liens_processed, final.counters.liens_over_threshold) == (2, 1)
    assert record_store.orchestrator_state() == (OrchestratorState.IDLE, None)

    # A finished run is immutable.
    record_store.update_run_counters(run.id, RunCounters(liens_found=99))
    assert record_store.get_run(run.id).counters.liens_found == 3
    assert record_store.latest_run().id == run.id


def test_claim_is_shared_across_connections(tmp_path) -> None:
    manager = SQLiteManager()
    path = tmp_path / "shared.db"
    first = RecordStore.open(manager, path)
    second = RecordStore.open(manager, path, dedicated=True)
    first.begin_run(AutomationRun(trigger=TriggerType.MANUAL))
    with pytest.raises(AlreadyRunning):
        second.begin_run(AutomationRun(trigger=TriggerType.MANUAL))
    second.close()


def test_close_all_closes_shared_and_dedicated_connections(tmp_path) -> None:
    manager = SQLiteManager()
    path = tmp_path / "teardown.db"
    shared = RecordStore.open(manager, path)
    monitor = RecordStore.open(manager, path, dedicated=True)
    manager.close_all()
    for store in (shared, monitor):
        with pytest.raises(PersistenceError):
            store.count_liens()
    assert RecordStore.open(manager, path).count_liens() == 0


def test_system_log_entries(record_store: RecordStore) -> None:
    record_store.append_log(SystemLogEntry(LogLevel.INFO, "orchestrator", "started"))
    record_store.append_log(
        SystemLogEntry(LogLevel.WARNING, "search", "slow page", metadata={"page": 2})
    )
    latest = record_store.recent_logs(10)
    assert [entry.message for entry in latest] == ["slow page", "started"]
    warnings = record_store.recent_logs(10, level=LogLevel.WARNING)
    assert warnings[0].metadata == {"page": 2}
    assert record_store.recent_logs(10, component="orchestrator")[0].message == "started"


def test_sqlite_errors_surface_as_persistence_errors(record_store: RecordStore) -> None:
    record_store.close()
    with pytest.raises(PersistenceError):
        record_store.count_liens()


def test_user_agent_pool_prefers_windows_chrome() -> None:
    pool = UserAgentPool(["Mozilla/5.0 (X11; Linux)", "Mozilla/5.0 (Windows NT 10.0)"])
    assert pool.preferred() == "Mozilla/5.0 (Windows NT 10.0)"
    assert UserAgentPool(["  only-agent  "]).preferred() == "only-agent"
    assert UserAgentPool([" "]).preferred() == DEFAULT_USER_AGENT
