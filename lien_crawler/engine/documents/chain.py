"""Ordered fallback chain for retrieving lien source PDFs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Protocol

import httpx
import structlog

from ...config import JurisdictionProfile
from ...errors import DocumentUnavailable, PageLoadTimeout, TransientNetworkError
from ...infra import RecordStore, UserAgentPool
from ...models import DocumentBlob
from ..pacer import Pacer

PDF_SIGNATURE = b"%PDF"


class StrategyFailed(Exception):
    """A single strategy could not produce a payload for one URL."""


@dataclass(slots=True)
class FetchContext:
    """Everything a strategy needs for one attempt."""

    profile: JurisdictionProfile
    recording_number: str
    url: str
    user_agent: str
    pace: Callable[[], object]

    def document_headers(self) -> dict[str, str]:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "application/pdf,*/*",
            "Referer": self.profile.urls.base_url,
        }
        headers.update(self.profile.headers)
        return headers


class DocumentFetchStrategy(Protocol):
    """One way of obtaining PDF bytes."""

    name: str

    def applies_to(self, profile: JurisdictionProfile) -> bool:
        """Return False when the profile lacks what this strategy needs."""

    def fetch(self, context: FetchContext) -> bytes | None:
        """Return the raw payload or raise ``StrategyFailed``."""

    def close(self) -> None:
        """Release network or browser resources."""


def looks_like_pdf(payload: bytes | None) -> bool:
    return bool(payload) and payload[: len(PDF_SIGNATURE)] == PDF_SIGNATURE


class DocumentRetriever:
    """Try each strategy against each candidate URL until a real PDF arrives."""

    def __init__(
        self,
        strategies: Iterable[DocumentFetchStrategy],
        pacer: Pacer,
        store: RecordStore,
        ua_pool: UserAgentPool | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.strategies = list(strategies)
        self.pacer = pacer
        self.store = store
        self.ua_pool = ua_pool or UserAgentPool()
        self.logger = logger or structlog.get_logger("lien_crawler.documents")

    def close(self) -> None:
        for strategy in self.strategies:
            strategy.close()

    # ------------------------------------------------------------------
    def strategies_for(self, profile: JurisdictionProfile) -> list[DocumentFetchStrategy]:
        by_name = {strategy.name: strategy for strategy in self.strategies}
        ordered = []
        for name in profile.document_strategies:
            strategy = by_name.get(name)
            if strategy is not None and strategy.applies_to(profile):
                ordered.append(strategy)
        return ordered

    def fetch_document(self, recording_number: str, profile: JurisdictionProfile) -> DocumentBlob:
        attempts: list[str] = []
        urls = profile.urls.pdf_urls(recording_number)
        user_agent = self.ua_pool.preferred()
        for strategy in self.strategies_for(profile):
            for url in urls:
                self.pacer.acquire(profile.id)
                context = FetchContext(
                    profile=profile,
                    recording_number=recording_number,
                    url=url,
                    user_agent=user_agent,
                    pace=lambda: self.pacer.acquire(profile.id),
                )
                label = f"{strategy.name} {url}"
                try:
                    payload = strategy.fetch(context)
                except (
                    StrategyFailed,
                    httpx.HTTPError,
                    TransientNetworkError,
                    PageLoadTimeout,
                ) as exc:
                    attempts.append(f"{label}: {exc}")
                    self.logger.debug(
                        "document_attempt_failed",
                        jurisdiction=profile.id,
                        recording_number=recording_number,
                        strategy=strategy.name,
                        url=url,
                        error=str(exc),
                    )
                    continue
                if not looks_like_pdf(payload):
                    attempts.append(f"{label}: payload is not a PDF")
                    self.logger.warning(
                        "document_signature_mismatch",
                        jurisdiction=profile.id,
                        recording_number=recording_number,
                        strategy=strategy.name,
                        url=url,
                        size=len(payload or b""),
                    )
                    continue
                blob = self.store.save_blob(
                    DocumentBlob(filename=f"{recording_number}.pdf", content=payload)
                )
                self.logger.info(
                    "document_retrieved",
                    jurisdiction=profile.id,
                    recording_number=recording_number,
                    strategy=strategy.name,
                    size=blob.byte_size,
                )
                return blob

        self.logger.warning(
            "document_unavailable",
            jurisdiction=profile.id,
            recording_number=recording_number,
            attempts=len(attempts),
        )
        raise DocumentUnavailable(recording_number, attempts)


__all__ = [
    "DocumentFetchStrategy",
    "DocumentRetriever",
    "FetchContext",
    "PDF_SIGNATURE",
    "StrategyFailed",
    "looks_like_pdf",
]
