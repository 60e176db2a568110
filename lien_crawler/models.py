"""Runtime records persisted by the storage layer."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

NEEDS_EXTRACTION = "To be extracted"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class LienStatus(str, Enum):
    """Lifecycle of a lien once discovered."""

    PENDING = "pending"
    PROCESSING = "processing"
    SYNCED = "synced"
    MAILER_SENT = "mailer_sent"
    COMPLETED = "completed"
    FAILED = "failed"


class TriggerType(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class OrchestratorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class LogLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(slots=True)
class DocumentBlob:
    """Immutable PDF payload; liens hold a non-owning reference to it."""

    filename: str
    content: bytes = field(repr=False)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def byte_size(self) -> int:
        return len(self.content)


@dataclass(slots=True)
class LienRecord:
    """Normalized lien filing keyed by (jurisdiction_id, recording_number)."""

    jurisdiction_id: str
    recording_number: str
    record_date: date
    debtor_name: str = NEEDS_EXTRACTION
    debtor_address: str = NEEDS_EXTRACTION
    creditor_name: str = NEEDS_EXTRACTION
    creditor_address: str = NEEDS_EXTRACTION
    amount: Decimal | None = None
    status: LienStatus = LienStatus.PENDING
    external_id: str | None = None
    document_id: str | None = None
    source_url: str | None = None
    failure_reason: str | None = None
    id: str = field(default_factory=new_id)
    discovered_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def exceeds(self, threshold: Decimal) -> bool:
        return self.amount is not None and self.amount > threshold

    def as_payload(self) -> dict[str, Any]:
        """Serialisable view used by the external ledger sink."""

        return {
            "id": self.id,
            "jurisdiction_id": self.jurisdiction_id,
            "recording_number": self.recording_number,
            "record_date": self.record_date.isoformat(),
            "debtor_name": self.debtor_name,
            "debtor_address": self.debtor_address,
            "creditor_name": self.creditor_name,
            "creditor_address": self.creditor_address,
            "amount": str(self.amount) if self.amount is not None else None,
            "document_id": self.document_id,
            "source_url": self.source_url,
            "discovered_at": self.discovered_at.isoformat(),
        }


@dataclass(slots=True)
class RunCounters:
    liens_found: int = 0
    liens_processed: int = 0
    liens_over_threshold: int = 0


@dataclass(slots=True)
class AutomationRun:
    """One execution of the scrape-and-retrieve cycle."""

    trigger: TriggerType
    status: RunStatus = RunStatus.RUNNING
    id: str = field(default_factory=new_id)
    started_at: datetime = field(default_factory=utcnow)
    ended_at: datetime | None = None
    counters: RunCounters = field(default_factory=RunCounters)
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class SystemLogEntry:
    level: LogLevel
    component: str
    message: str
    timestamp: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)


__all__ = [
    "AutomationRun",
    "DocumentBlob",
    "LienRecord",
    "LienStatus",
    "LogLevel",
    "NEEDS_EXTRACTION",
    "OrchestratorState",
    "RunCounters",
    "RunStatus",
    "SystemLogEntry",
    "TriggerType",
    "new_id",
    "utcnow",
]
