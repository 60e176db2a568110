from __future__ import annotations

from datetime import date

import pytest
from conftest import NO_RESULTS_PAGE, FakeSearchSession, results_page

from lien_crawler.config import DateRange, RetryPolicy
from lien_crawler.engine import Pacer, SearchEngine
from lien_crawler.errors import (
    JurisdictionFailed,
    PageLoadTimeout,
    SelectorNotFound,
    TransientNetworkError,
)

DAY = date(2024, 1, 15)
ONE_DAY = DateRange.between(DAY, DAY)


def _pages(count: int) -> list[str]:
    pages = []
    for index in range(count):
        rows = [
            (f"2024000{index:02d}{n:02d}", "01/15/2024", "1,000.00", "DOE JANE")
            for n in range(2)
        ]
        pages.append(results_page(rows, has_next=index < count - 1))
    return pages


def _engine(profile, sessions, sleeps=None, retry=None) -> SearchEngine:  # noqa: ANN001
    pacer = Pacer(sleep=lambda seconds: None)
    pacer.register(profile)
    queue = list(sessions)

    def factory(_profile):  # noqa: ANN001, ANN202
        return queue.pop(0)

    recorder = sleeps if sleeps is not None else []
    return SearchEngine(pacer, factory, retry=retry or RetryPolicy(), sleep=recorder.append)


def test_follows_next_button_across_pages(profile_factory) -> None:
    profile = profile_factory()
    session = FakeSearchSession(_pages(3))
    pages = list(_engine(profile, [session]).search_pages(profile, ONE_DAY))

    assert [page.number for page in pages] == [1, 2, 3]
    assert all(len(page.rows) == 2 for page in pages)
    first = pages[0].rows[0]
    assert first.text.startswith("20240000000 ")
    assert first.detail_url == "https://records.example.gov/detail/20240000000"
    assert ("fill", "#start", "01/15/2024") in session.calls
    assert ("fill", "#end", "01/15/2024") in session.calls
    assert ("click", "#search") in session.calls
    assert session.calls.count(("click", "#next")) == 2
    assert session.closed is True


def test_page_budget_ends_pagination_cleanly(profile_factory) -> None:
    profile = profile_factory(pacing={"max_pages_per_run": 2})
    engine = _engine(profile, [FakeSearchSession(_pages(3))])
    rows = list(engine.search(profile, ONE_DAY))
    assert len(rows) == 4
    assert {row.page_number for row in rows} == {1, 2}
    assert engine.pacer.pages_used(profile.id) == 2


def test_no_results_text_yields_nothing(profile_factory) -> None:
    profile = profile_factory()
    engine = _engine(profile, [FakeSearchSession([NO_RESULTS_PAGE])])
    assert list(engine.search_pages(profile, ONE_DAY)) == []


def test_missing_results_table_is_a_selector_error(profile_factory) -> None:
    profile = profile_factory(selectors={"no_results_text": None})
    engine = _engine(profile, [FakeSearchSession(["<html><body><p>Maintenance</p></body></html>"])])
    with pytest.raises(SelectorNotFound, match="#results"):
        list(engine.search_pages(profile, ONE_DAY))


def test_timeout_is_retried_once(profile_factory) -> None:
    profile = profile_factory(pacing={"page_load_wait_ms": 1500})
    sleeps: list[float] = []
    session = FakeSearchSession(_pages(1), failures=[PageLoadTimeout("slow")])
    pages = list(_engine(profile, [session], sleeps).search_pages(profile, ONE_DAY))
    assert len(pages) == 1
    assert sleeps == [1.5]


def test_second_timeout_fails_the_jurisdiction(profile_factory) -> None:
    profile = profile_factory()
    session = FakeSearchSession(
        _pages(1), failures=[PageLoadTimeout("slow"), PageLoadTimeout("slower")]
    )
    with pytest.raises(JurisdictionFailed, match="timed out"):
        list(_engine(profile, [session]).search_pages(profile, ONE_DAY))
    assert session.closed is True


def test_network_errors_back_off_exponentially(profile_factory) -> None:
    profile = profile_factory()
    sleeps: list[float] = []
    session = FakeSearchSession(
        _pages(1), failures=[TransientNetworkError("reset")] * 3
    )
    retry = RetryPolicy(network_retries=3, backoff_base_seconds=1, backoff_max_seconds=10)
    pages = list(_engine(profile, [session], sleeps, retry).search_pages(profile, ONE_DAY))
    assert len(pages) == 1
    assert sleeps == [1, 2, 4]


def test_network_retries_exhausted(profile_factory) -> None:
    profile = profile_factory()
    session = FakeSearchSession(_pages(1), failures=[TransientNetworkError("reset")] * 3)
    retry = RetryPolicy(network_retries=2)
    with pytest.raises(JurisdictionFailed, match="after 3 attempts"):
        list(_engine(profile, [session], retry=retry).search_pages(profile, ONE_DAY))


def test_single_date_forms_are_searched_day_by_day(profile_factory) -> None:
    profile = profile_factory(selectors={"end_date_field": None})
    session = FakeSearchSession(_pages(1))
    date_range = DateRange.between(date(2024, 1, 15), date(2024, 1, 17))
    pages = list(_engine(profile, [session]).search_pages(profile, date_range))
    assert [page.query_start for page in pages] == [
        date(2024, 1, 15),
        date(2024, 1, 16),
        date(2024, 1, 17),
    ]
    filled = [call[2] for call in session.calls if call[:2] == ("fill", "#start")]
    assert filled == ["01/15/2024", "01/16/2024", "01/17/2024"]


def test_url_template_pagination(profile_factory) -> None:
    profile = profile_factory(
        pagination="url_template",
        selectors={"search_button": None},
        urls={
            "results_url_template": (
                "https://records.example.gov/results?from={start_date}&to={end_date}"
                "&type={document_type}&page={page}"
            )
        },
    )
    session = FakeSearchSession(_pages(2))
    pages = list(_engine(profile, [session]).search_pages(profile, ONE_DAY))
    assert [page.number for page in pages] == [1, 2]
    opened = [call[1] for call in session.calls if call[0] == "open"]
    assert opened[0] == (
        "https://records.example.gov/results?from=01%2F15%2F2024&to=01%2F15%2F2024"
        "&type=LIEN&page=1"
    )
    assert opened[-1].endswith("page=3")


def test_fetch_detail_uses_a_separate_session(profile_factory) -> None:
    profile = profile_factory()
    detail = FakeSearchSession(["<html><body><p>Grantee: STATE OF TEXAS</p></body></html>"])
    engine = _engine(profile, [detail])
    text = engine.fetch_detail(profile, "20240000001")
    assert text == "Grantee: STATE OF TEXAS"
    assert detail.calls[0] == ("open", "https://records.example.gov/detail/20240000001")
    engine.release(profile.id)
    assert detail.closed is True
