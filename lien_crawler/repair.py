"""Maintenance pass that re-fetches documents for liens stored without one."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from .config import ConfigRepository
from .engine import DocumentRetriever, Pacer
from .errors import DocumentUnavailable, ProfileConfigurationError
from .infra import RecordStore
from .logging_conf import SystemLog


@dataclass(slots=True)
class RepairSummary:
    examined: int = 0
    repaired: int = 0
    still_missing: int = 0
    skipped: list[str] = field(default_factory=list)


class DocumentRepairer:
    """Re-derive PDF URLs from recording numbers and retry retrieval.

    Invoked on demand (CLI ``documents repair``); never part of a run.
    """

    def __init__(
        self,
        config_repository: ConfigRepository,
        store: RecordStore,
        retriever: DocumentRetriever,
        pacer: Pacer,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config_repository = config_repository
        self.store = store
        self.retriever = retriever
        self.pacer = pacer
        self.system_log = SystemLog(
            store, "repair", logger or structlog.get_logger("lien_crawler.repair")
        )

    def repair(self, jurisdiction_id: str | None = None, limit: int | None = None) -> RepairSummary:
        summary = RepairSummary()
        profiles, _ = self.config_repository.load_profiles()
        by_id = {profile.id: profile for profile in profiles}
        for profile in profiles:
            self.pacer.register(profile)

        for lien in self.store.liens_missing_documents(jurisdiction_id, limit):
            summary.examined += 1
            profile = by_id.get(lien.jurisdiction_id)
            if profile is None:
                summary.skipped.append(lien.recording_number)
                continue
            try:
                blob = self.retriever.fetch_document(lien.recording_number, profile)
            except DocumentUnavailable:
                summary.still_missing += 1
                continue
            except ProfileConfigurationError as exc:
                summary.skipped.append(lien.recording_number)
                self.system_log.warning(
                    f"Cannot repair {lien.recording_number}: {exc}", jurisdiction=profile.id
                )
                continue
            self.store.attach_document(lien.id, blob.id)
            summary.repaired += 1

        self.system_log.info(
            f"Document repair: {summary.repaired} repaired, "
            f"{summary.still_missing} still missing of {summary.examined}",
            skipped=len(summary.skipped),
        )
        return summary


__all__ = ["DocumentRepairer", "RepairSummary"]
