"""Shared fixtures: config repositories, record stores and scripted browser sessions."""

from __future__ import annotations

import copy
import re
from pathlib import Path
from typing import Any, Callable, Iterable

import pytest

from lien_crawler.config import ConfigLocator, ConfigRepository, GlobalConfig, JurisdictionProfile
from lien_crawler.infra import RecordStore, SQLiteManager

ROW_TEMPLATE = (
    "<tr><td><a href=\"/detail/{number}\">{number}</a></td>"
    "<td>{date}</td><td>${amount}</td><td>{debtor}</td></tr>"
)


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def results_page(
    rows: Iterable[tuple[str, str, str, str]], *, has_next: bool = False
) -> str:
    """Render a county results table; rows are (number, date, amount, debtor)."""

    body = "".join(
        ROW_TEMPLATE.format(number=number, date=day, amount=amount, debtor=debtor)
        for number, day, amount, debtor in rows
    )
    next_link = '<a id="next" href="#">Next</a>' if has_next else ""
    return (
        "<html><body><table id=\"results\">"
        "<tr><th>Recording</th><th>Date</th><th>Amount</th><th>Debtor</th></tr>"
        f"{body}</table>{next_link}</body></html>"
    )


NO_RESULTS_PAGE = "<html><body><p>No records found for this search.</p></body></html>"


class FakeSearchSession:
    """Scripted stand-in for a browser page.

    ``pages`` is the sequence of HTML documents the results view shows;
    clicking the next button or opening a ``page=N`` URL moves through it.
    ``failures`` are raised, in order, by successive ``open`` calls.
    """

    def __init__(
        self,
        pages: list[str],
        *,
        next_selector: str = "#next",
        failures: Iterable[Exception] = (),
        on_content: Callable[[int], None] | None = None,
    ) -> None:
        self.pages = list(pages)
        self.next_selector = next_selector
        self.failures = list(failures)
        self.on_content = on_content
        self.index = 0
        self.calls: list[tuple[str, ...]] = []
        self.closed = False

    def open(self, url: str) -> None:
        self.calls.append(("open", url))
        if self.failures:
            raise self.failures.pop(0)
        match = re.search(r"[?&]page=(\d+)", url)
        if match:
            self.index = int(match.group(1)) - 1

    def fill(self, selector: str, value: str) -> None:
        self.calls.append(("fill", selector, value))

    def select(self, selector: str, value: str) -> None:
        self.calls.append(("select", selector, value))

    def click(self, selector: str) -> None:
        self.calls.append(("click", selector))
        if selector == self.next_selector:
            self.index += 1

    def exists(self, selector: str) -> bool:
        return True

    def wait(self, milliseconds: int) -> None:
        self.calls.append(("wait", str(milliseconds)))

    def content(self) -> str:
        if self.on_content is not None:
            self.on_content(self.index)
        if self.index >= len(self.pages):
            return NO_RESULTS_PAGE
        return self.pages[self.index]

    def cookies(self) -> dict[str, str]:
        return {}

    def close(self) -> None:
        self.closed = True


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class PdfStrategy:
    """Document strategy returning canned payloads without touching the network."""

    def __init__(self, name: str = "direct", payload: bytes | None = b"%PDF-1.7 fake") -> None:
        self.name = name
        self.payload = payload
        self.urls: list[str] = []
        self.closed = False

    def applies_to(self, profile: JurisdictionProfile) -> bool:
        return True

    def fetch(self, context) -> bytes | None:  # noqa: ANN001
        self.urls.append(context.url)
        return self.payload

    def close(self) -> None:
        self.closed = True


BASE_PROFILE: dict[str, Any] = {
    "id": "test-county",
    "name": "Test County",
    "region": "TX",
    "urls": {
        "base_url": "https://records.example.gov",
        "search_form_url": "https://records.example.gov/search",
        "detail_url_template": "https://records.example.gov/detail/{recording_number}",
        "pdf_url_templates": ["https://records.example.gov/pdf/{recording_number}.pdf"],
    },
    "selectors": {
        "start_date_field": "#start",
        "end_date_field": "#end",
        "search_button": "#search",
        "results_table": "#results",
        "next_page_button": "#next",
        "no_results_text": "No records found",
    },
    "parsing": {
        "debtor_name": r"\$[\d,.]+\s+([A-Z][A-Z ]+)",
    },
    "default_document_type": "LIEN",
    "pacing": {
        "page_load_wait_ms": 0,
        "between_requests_ms": 0,
        "after_submit_wait_ms": 0,
        "document_load_wait_ms": 0,
        "max_requests_per_minute": 1000,
        "max_pages_per_run": 10,
    },
}


@pytest.fixture
def profile_payload() -> Callable[..., dict[str, Any]]:
    def _builder(**overrides: Any) -> dict[str, Any]:
        return _merge(BASE_PROFILE, overrides)

    return _builder


@pytest.fixture
def profile_factory(profile_payload) -> Callable[..., JurisdictionProfile]:  # noqa: ANN001
    def _builder(**overrides: Any) -> JurisdictionProfile:
        return JurisdictionProfile.model_validate(profile_payload(**overrides))

    return _builder


@pytest.fixture
def sample_global_config(tmp_path: Path) -> GlobalConfig:
    return GlobalConfig(database_path=tmp_path / "lien_crawler.db")


@pytest.fixture
def temp_config_repository(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Iterable[ConfigRepository]:
    monkeypatch.setenv("LIEN_CRAWLER_HOME", str(tmp_path))
    locator = ConfigLocator(project_root=tmp_path)
    repository = ConfigRepository(locator)
    yield repository


@pytest.fixture
def record_store(tmp_path: Path) -> Iterable[RecordStore]:
    store = RecordStore.open(SQLiteManager(), tmp_path / "records.db")
    yield store
    store.close()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
