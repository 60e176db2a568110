"""Activity reconciler: cross-check reported run status against record creation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from .infra import RecordStore
from .models import RunStatus, utcnow

if TYPE_CHECKING:
    from .orchestrator import RunOrchestrator

RECENT_WINDOW = timedelta(minutes=5)
HOUR_WINDOW = timedelta(hours=1)
DAY_WINDOW = timedelta(days=1)


class ActivityClassification(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STALLED = "stalled"
    ACTIVE_MISMATCH = "active_mismatch"


@dataclass(slots=True)
class ActivityCounts:
    last_5_minutes: int
    last_hour: int
    last_day: int

    def as_dict(self) -> dict[str, int]:
        return {
            "last_5_minutes": self.last_5_minutes,
            "last_hour": self.last_hour,
            "last_day": self.last_day,
        }


@dataclass(slots=True)
class ActivitySnapshot:
    reported_running: bool
    latest_run_id: str | None
    latest_run_status: str | None
    counts: ActivityCounts
    checked_at: datetime

    @property
    def classification(self) -> ActivityClassification:
        return classify_activity(self.reported_running, self.counts.last_5_minutes > 0)

    def as_dict(self) -> dict[str, Any]:
        return {
            "classification": self.classification.value,
            "reported_running": self.reported_running,
            "latest_run_id": self.latest_run_id,
            "latest_run_status": self.latest_run_status,
            "recent_activity": self.counts.as_dict(),
            "checked_at": self.checked_at.isoformat(),
        }


def classify_activity(reported_running: bool, recent_records: bool) -> ActivityClassification:
    if reported_running and recent_records:
        return ActivityClassification.RUNNING
    if recent_records:
        return ActivityClassification.ACTIVE_MISMATCH
    if reported_running:
        return ActivityClassification.STALLED
    return ActivityClassification.IDLE


class ActivityReconciler:
    """Read-only classifier over committed state.

    Give it its own ``RecordStore`` (a dedicated connection) so that it keeps
    answering even when the orchestrator is wedged or its process has died.
    """

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self._clock = clock

    def snapshot(self) -> ActivitySnapshot:
        now = self._clock()
        latest = self.store.latest_run()
        counts = ActivityCounts(
            last_5_minutes=self.store.count_liens_created_since(now - RECENT_WINDOW),
            last_hour=self.store.count_liens_created_since(now - HOUR_WINDOW),
            last_day=self.store.count_liens_created_since(now - DAY_WINDOW),
        )
        return ActivitySnapshot(
            reported_running=latest is not None and latest.status is RunStatus.RUNNING,
            latest_run_id=latest.id if latest else None,
            latest_run_status=latest.status.value if latest else None,
            counts=counts,
            checked_at=now,
        )

    def classify(self) -> ActivityClassification:
        return self.snapshot().classification


def build_status_report(
    orchestrator: "RunOrchestrator", reconciler: ActivityReconciler
) -> dict[str, Any]:
    """Self-reported and observed views side by side, never merged."""

    return {
        "orchestrator": orchestrator.status().as_dict(),
        "activity": reconciler.snapshot().as_dict(),
    }


__all__ = [
    "ActivityClassification",
    "ActivityCounts",
    "ActivityReconciler",
    "ActivitySnapshot",
    "build_status_report",
    "classify_activity",
]
