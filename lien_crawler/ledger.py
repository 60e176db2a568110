"""External ledger sync: push pending liens downstream and record the foreign id."""

from __future__ import annotations

import os
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Protocol

import httpx
import structlog

from .config import LedgerConfig
from .errors import PersistenceError, SyncError
from .infra import RecordStore
from .logging_conf import SystemLog
from .models import LienRecord, LienStatus


class LedgerSink(Protocol):
    """Downstream system that accepts normalized liens."""

    def sync_record(self, record: LienRecord) -> str:
        """Return the external id, or raise ``SyncError``."""


class HttpLedgerSink:
    """POST each lien as JSON and read the created id from the response."""

    def __init__(self, config: LedgerConfig, client: httpx.Client | None = None) -> None:
        if not config.endpoint_url:
            raise ValueError("HttpLedgerSink requires ledger.endpoint_url")
        self.config = config
        headers = {"Content-Type": "application/json"}
        token = os.environ.get(config.token_env)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.Client(timeout=config.timeout_seconds)
        self._headers = headers

    def sync_record(self, record: LienRecord) -> str:
        try:
            response = self._client.post(
                self.config.endpoint_url,
                json={"fields": record.as_payload()},
                headers=self._headers,
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SyncError(f"Ledger rejected {record.recording_number}: {exc}") from exc
        external_id = body.get("id") if isinstance(body, dict) else None
        if not external_id:
            raise SyncError(f"Ledger response for {record.recording_number} carried no id")
        return str(external_id)

    def close(self) -> None:
        self._client.close()


@dataclass(slots=True)
class SyncSummary:
    attempted: int = 0
    synced: int = 0
    failed: int = 0


class LedgerSyncService:
    """Sync liens in the background; failures leave the lien ``pending``."""

    def __init__(
        self,
        store: RecordStore,
        sink: LedgerSink,
        executor: ThreadPoolExecutor | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.store = store
        self.sink = sink
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="ledger")
        self.system_log = SystemLog(
            store, "ledger", logger or structlog.get_logger("lien_crawler.ledger")
        )

    def enqueue(self, lien_id: str) -> Future:
        return self._executor.submit(self.sync_lien, lien_id)

    def sync_lien(self, lien_id: str) -> bool:
        record = self.store.get_lien_by_id(lien_id)
        if record is None or record.status is not LienStatus.PENDING:
            return False
        try:
            external_id = self.sink.sync_record(record)
        except SyncError as exc:
            self.system_log.warning(
                f"Ledger sync failed for {record.recording_number}; left pending",
                lien_id=lien_id,
                error=str(exc),
            )
            return False
        try:
            self.store.mark_synced(lien_id, external_id)
        except PersistenceError as exc:
            self.system_log.error(
                f"Synced {record.recording_number} but could not store external id {external_id}",
                lien_id=lien_id,
                error=str(exc),
            )
            return False
        self.system_log.success(
            f"Synced {record.recording_number} to ledger",
            lien_id=lien_id,
            external_id=external_id,
        )
        return True

    def sync_pending(self, limit: int | None = None) -> SyncSummary:
        summary = SyncSummary()
        for record in self.store.list_liens(status=LienStatus.PENDING, limit=limit):
            summary.attempted += 1
            if self.sync_lien(record.id):
                summary.synced += 1
            else:
                summary.failed += 1
        return summary

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


def build_ledger_service(
    config: LedgerConfig, store: RecordStore, logger: structlog.BoundLogger | None = None
) -> LedgerSyncService | None:
    """Return a sync service when the ledger is enabled, else ``None``."""

    if not config.enabled:
        return None
    return LedgerSyncService(store, HttpLedgerSink(config), logger=logger)


__all__ = [
    "HttpLedgerSink",
    "LedgerSink",
    "LedgerSyncService",
    "SyncSummary",
    "build_ledger_service",
]
