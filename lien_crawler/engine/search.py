"""Search form automation and result pagination for one jurisdiction."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Callable, Iterator
from urllib.parse import urljoin

import structlog
from selectolax.parser import HTMLParser

from ..config import DateRange, JurisdictionProfile, PaginationMode, RetryPolicy
from ..errors import (
    BudgetExhausted,
    JurisdictionFailed,
    PageLoadTimeout,
    SelectorNotFound,
    TransientNetworkError,
)
from .pacer import Pacer
from .session import SearchSession

SessionFactory = Callable[[JurisdictionProfile], SearchSession]


@dataclass(slots=True, frozen=True)
class RawResultRow:
    """Untyped content of one search-result entry."""

    html: str
    text: str
    page_number: int
    detail_url: str | None = None
    detail_text: str | None = None

    def with_detail(self, detail_text: str | None) -> "RawResultRow":
        return replace(self, detail_text=detail_text)


@dataclass(slots=True)
class ResultPage:
    jurisdiction_id: str
    number: int
    query_start: date
    query_end: date
    rows: list[RawResultRow] = field(default_factory=list)


class SearchEngine:
    """Drive a jurisdiction's search form and yield result rows lazily.

    Every navigation is preceded by ``Pacer.acquire``; every step that
    produces a results page goes through ``Pacer.acquire_page`` so the page
    budget ends pagination cleanly.
    """

    def __init__(
        self,
        pacer: Pacer,
        session_factory: SessionFactory,
        retry: RetryPolicy | None = None,
        logger: structlog.BoundLogger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.pacer = pacer
        self.session_factory = session_factory
        self.retry = retry or RetryPolicy()
        self.logger = logger or structlog.get_logger("lien_crawler.search")
        self._sleep = sleep
        self._detail_sessions: dict[str, SearchSession] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def search(
        self,
        profile: JurisdictionProfile,
        date_range: DateRange,
        document_type: str | None = None,
    ) -> Iterator[RawResultRow]:
        for page in self.search_pages(profile, date_range, document_type):
            yield from page.rows

    def search_pages(
        self,
        profile: JurisdictionProfile,
        date_range: DateRange,
        document_type: str | None = None,
    ) -> Iterator[ResultPage]:
        document_type = document_type or profile.default_document_type
        session = self.session_factory(profile)
        try:
            for start, end in self._queries(profile, date_range):
                try:
                    yield from self._query_pages(session, profile, start, end, document_type)
                except BudgetExhausted as exc:
                    self.logger.info(
                        "page_budget_exhausted",
                        jurisdiction=profile.id,
                        max_pages=exc.max_pages,
                    )
                    return
        finally:
            session.close()

    def fetch_detail(self, profile: JurisdictionProfile, recording_number: str) -> str | None:
        """Return the visible text of a recording's detail page."""

        url = profile.urls.detail_url(recording_number)
        if url is None:
            return None
        session = self._detail_sessions.get(profile.id)
        if session is None:
            session = self.session_factory(profile)
            self._detail_sessions[profile.id] = session
        self.pacer.acquire(profile.id)
        self._navigate(session, profile, url)
        tree = HTMLParser(session.content())
        body = tree.body or tree.root
        return body.text(separator=" ", strip=True) if body is not None else None

    def release(self, jurisdiction_id: str) -> None:
        session = self._detail_sessions.pop(jurisdiction_id, None)
        if session is not None:
            session.close()

    # ------------------------------------------------------------------
    # Query flow
    # ------------------------------------------------------------------
    @staticmethod
    def _queries(profile: JurisdictionProfile, date_range: DateRange) -> list[tuple[date, date]]:
        start, end = date_range.resolve()
        if profile.supports_date_range:
            return [(start, end)]
        return [(day, day) for day in date_range.days()]

    def _query_pages(
        self,
        session: SearchSession,
        profile: JurisdictionProfile,
        start: date,
        end: date,
        document_type: str,
    ) -> Iterator[ResultPage]:
        self._load_first_page(session, profile, start, end, document_type)
        page_number = 1
        while True:
            tree = HTMLParser(session.content())
            if self._has_no_results(tree, profile):
                self.logger.info(
                    "no_results",
                    jurisdiction=profile.id,
                    start=start.isoformat(),
                    end=end.isoformat(),
                    page=page_number,
                )
                return
            rows = self._extract_rows(tree, profile, page_number)
            if not rows:
                return
            self.logger.info(
                "results_page_read",
                jurisdiction=profile.id,
                page=page_number,
                rows=len(rows),
            )
            yield ResultPage(
                jurisdiction_id=profile.id,
                number=page_number,
                query_start=start,
                query_end=end,
                rows=rows,
            )
            page_number += 1
            if not self._advance(session, profile, tree, start, end, document_type, page_number):
                return

    def _load_first_page(
        self,
        session: SearchSession,
        profile: JurisdictionProfile,
        start: date,
        end: date,
        document_type: str,
    ) -> None:
        selectors = profile.selectors
        if profile.urls.results_url_template and not selectors.search_button:
            self.pacer.acquire_page(profile.id)
            self._navigate(session, profile, profile.results_url(start, end, document_type, 1))
        else:
            self.pacer.acquire(profile.id)
            self._navigate(session, profile, profile.urls.search_form_url)
            if profile.requires_disclaimer and session.exists(selectors.disclaimer_button):
                self.pacer.acquire(profile.id)
                self._with_retries(
                    profile, lambda: session.click(selectors.disclaimer_button), "disclaimer"
                )
            self._fill_form(session, profile, start, end, document_type)
            self.pacer.acquire_page(profile.id)
            self._with_retries(profile, lambda: session.click(selectors.search_button), "search")
        session.wait(profile.pacing.after_submit_wait_ms)

    def _fill_form(
        self,
        session: SearchSession,
        profile: JurisdictionProfile,
        start: date,
        end: date,
        document_type: str,
    ) -> None:
        selectors = profile.selectors
        if selectors.document_type_field:
            if selectors.document_type_mode == "select":
                session.select(selectors.document_type_field, document_type)
            else:
                session.fill(selectors.document_type_field, document_type)
        session.fill(selectors.start_date_field, profile.date_format.render(start))
        if selectors.end_date_field:
            session.fill(selectors.end_date_field, profile.date_format.render(end))

    def _advance(
        self,
        session: SearchSession,
        profile: JurisdictionProfile,
        tree: HTMLParser,
        start: date,
        end: date,
        document_type: str,
        page_number: int,
    ) -> bool:
        if profile.pagination is PaginationMode.NONE:
            return False
        if profile.pagination is PaginationMode.NEXT_BUTTON:
            selector = profile.selectors.next_page_button
            if tree.css_first(selector) is None:
                return False
            self.pacer.acquire_page(profile.id)
            self._with_retries(profile, lambda: session.click(selector), f"page {page_number}")
        else:
            self.pacer.acquire_page(profile.id)
            url = profile.results_url(start, end, document_type, page_number)
            self._navigate(session, profile, url)
        session.wait(profile.pacing.page_load_wait_ms)
        return True

    # ------------------------------------------------------------------
    # Page inspection
    # ------------------------------------------------------------------
    @staticmethod
    def _has_no_results(tree: HTMLParser, profile: JurisdictionProfile) -> bool:
        selectors = profile.selectors
        if selectors.no_results_indicator and tree.css_first(selectors.no_results_indicator):
            return True
        if selectors.no_results_text:
            body = tree.body or tree.root
            text = body.text(separator=" ", strip=True) if body is not None else ""
            if re.search(selectors.no_results_text, text, re.IGNORECASE):
                return True
        return False

    @staticmethod
    def _extract_rows(
        tree: HTMLParser, profile: JurisdictionProfile, page_number: int
    ) -> list[RawResultRow]:
        selectors = profile.selectors
        table = tree.css_first(selectors.results_table)
        if table is None:
            raise SelectorNotFound(selectors.results_table, f"{profile.id} page {page_number}")
        rows: list[RawResultRow] = []
        for node in table.css(selectors.result_rows):
            if node.css_first("td") is None:
                continue
            text = node.text(separator=" ", strip=True)
            if not text:
                continue
            detail_url = None
            link = node.css_first("a[href]")
            if link is not None:
                href = (link.attributes.get("href") or "").strip()
                if href and not href.startswith(("javascript:", "#")):
                    detail_url = urljoin(profile.urls.base_url, href)
            rows.append(
                RawResultRow(
                    html=node.html or "",
                    text=text,
                    page_number=page_number,
                    detail_url=detail_url,
                )
            )
        return rows

    # ------------------------------------------------------------------
    # Retry handling
    # ------------------------------------------------------------------
    def _navigate(self, session: SearchSession, profile: JurisdictionProfile, url: str) -> None:
        self._with_retries(profile, lambda: session.open(url), url)

    def _with_retries(
        self, profile: JurisdictionProfile, action: Callable[[], None], description: str
    ) -> None:
        timeouts = 0
        network_failures = 0
        while True:
            try:
                action()
                return
            except PageLoadTimeout as exc:
                timeouts += 1
                if timeouts > self.retry.page_timeout_retries:
                    raise JurisdictionFailed(
                        profile.id, f"timed out loading {description}"
                    ) from exc
                self.logger.warning(
                    "page_load_timeout_retry",
                    jurisdiction=profile.id,
                    target=description,
                    wait_ms=profile.pacing.page_load_wait_ms,
                )
                self._sleep(profile.pacing.page_load_wait_ms / 1000.0)
            except TransientNetworkError as exc:
                network_failures += 1
                if network_failures > self.retry.network_retries:
                    raise JurisdictionFailed(
                        profile.id,
                        f"network error on {description} after {network_failures} attempts: {exc}",
                    ) from exc
                delay = self.retry.backoff(network_failures)
                self.logger.warning(
                    "network_error_retry",
                    jurisdiction=profile.id,
                    target=description,
                    attempt=network_failures,
                    delay=delay,
                    error=str(exc),
                )
                self._sleep(delay)
            self.pacer.acquire(profile.id)


__all__ = ["RawResultRow", "ResultPage", "SearchEngine", "SessionFactory"]
