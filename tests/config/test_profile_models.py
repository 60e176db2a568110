from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from lien_crawler.config import (
    DateFormat,
    DateRange,
    FieldPattern,
    GlobalConfig,
    JurisdictionProfile,
    LedgerConfig,
    PaginationMode,
    RetryPolicy,
    render_template,
)
from lien_crawler.config.platforms import PLATFORM_DEFAULTS


@pytest.mark.parametrize(
    ("fmt", "text", "expected"),
    [
        (DateFormat.US, "01/15/2024", date(2024, 1, 15)),
        (DateFormat.ISO, "2024-01-15", date(2024, 1, 15)),
        (DateFormat.EUROPEAN, "15/01/2024", date(2024, 1, 15)),
    ],
)
def test_date_format_parse_and_render(fmt: DateFormat, text: str, expected: date) -> None:
    assert fmt.parse(text) == expected
    assert fmt.render(expected) == text


def test_date_format_rejects_wrong_layout() -> None:
    with pytest.raises(ValueError):
        DateFormat.US.parse("2024-01-15")


def test_field_pattern_accepts_string_shorthand() -> None:
    pattern = FieldPattern.model_validate(r"Amount:\s*(\S+)")
    assert pattern.group == 1
    assert pattern.search("amount: $12.00") == "$12.00"
    assert pattern.search("nothing here") is None


def test_field_pattern_validates_group_and_regex() -> None:
    with pytest.raises(ValidationError):
        FieldPattern(pattern=r"(\d+)", group=2)
    with pytest.raises(ValidationError):
        FieldPattern(pattern=r"([unclosed")
    assert FieldPattern(pattern=r"\d+", group=0).search("abc 42") == "42"


def test_render_template_encodes_values() -> None:
    rendered = render_template("https://x.test/r?d={start_date}", start_date="01/15/2024")
    assert rendered == "https://x.test/r?d=01%2F15%2F2024"


def test_profile_builds_pdf_and_detail_urls(profile_factory) -> None:
    profile = profile_factory(
        urls={
            "pdf_url_templates": [
                "https://records.example.gov/pdf/{recording_number}.pdf",
                "https://mirror.example.gov/doc?rec={recording_number}",
            ]
        }
    )
    assert profile.urls.pdf_urls("20240000001") == [
        "https://records.example.gov/pdf/20240000001.pdf",
        "https://mirror.example.gov/doc?rec=20240000001",
    ]
    assert profile.urls.detail_url("20240000001") == "https://records.example.gov/detail/20240000001"


@pytest.mark.parametrize(
    "urls",
    [
        {"pdf_url_templates": []},
        {"pdf_url_templates": ["https://records.example.gov/pdf/static.pdf"]},
        {"pdf_url_templates": ["https://records.example.gov/{recording_number}/{county}.pdf"]},
        {"detail_url_template": "https://records.example.gov/detail/{doc}"},
        {"base_url": "records.example.gov"},
    ],
)
def test_profile_rejects_bad_url_templates(profile_payload, urls) -> None:
    with pytest.raises(ValidationError):
        JurisdictionProfile.model_validate(profile_payload(urls=urls))


def test_profile_requires_next_button_for_next_button_pagination(profile_payload) -> None:
    payload = profile_payload(selectors={"next_page_button": None})
    with pytest.raises(ValidationError, match="next_page_button"):
        JurisdictionProfile.model_validate(payload)


def test_profile_requires_form_without_results_template(profile_payload) -> None:
    with pytest.raises(ValidationError, match="search_button"):
        JurisdictionProfile.model_validate(profile_payload(selectors={"search_button": None}))


def test_url_template_pagination_requires_page_placeholder(profile_payload) -> None:
    payload = profile_payload(
        pagination="url_template",
        urls={"results_url_template": "https://records.example.gov/r?from={start_date}"},
    )
    with pytest.raises(ValidationError, match="page"):
        JurisdictionProfile.model_validate(payload)


def test_disclaimer_and_detail_page_dependencies(profile_payload) -> None:
    with pytest.raises(ValidationError, match="disclaimer"):
        JurisdictionProfile.model_validate(profile_payload(requires_disclaimer=True))
    payload = profile_payload(parsing={"use_detail_page": True})
    payload["urls"].pop("detail_url_template")
    with pytest.raises(ValidationError, match="detail_url_template"):
        JurisdictionProfile.model_validate(payload)


def test_profile_is_frozen(profile_factory) -> None:
    profile = profile_factory()
    with pytest.raises(ValidationError):
        profile.name = "Other"


def test_platform_defaults_fill_selectors_and_keep_overrides() -> None:
    profile = JurisdictionProfile.model_validate(
        {
            "id": "orange-fl",
            "name": "Orange County",
            "region": "FL",
            "platform": "landmark_web",
            "default_document_type": "LN",
            "urls": {
                "base_url": "https://or.example.gov",
                "search_form_url": "https://or.example.gov/search",
                "pdf_url_templates": ["https://or.example.gov/pdf/{recording_number}"],
            },
            "pacing": {"max_pages_per_run": 3},
        }
    )
    defaults = PLATFORM_DEFAULTS["landmark_web"]
    assert profile.selectors.results_table == defaults["selectors"]["results_table"]
    assert profile.requires_disclaimer is True
    assert profile.pacing.max_pages_per_run == 3
    assert profile.pacing.between_requests_ms == defaults["pacing"]["between_requests_ms"]
    assert profile.pagination is PaginationMode.NEXT_BUTTON


def test_unknown_platform_is_rejected(profile_payload) -> None:
    with pytest.raises(ValidationError, match="Unknown platform"):
        JurisdictionProfile.model_validate(profile_payload(platform="mystery"))


def test_supports_date_range_and_date_pattern(profile_factory) -> None:
    assert profile_factory().supports_date_range is True
    single_day = profile_factory(selectors={"end_date_field": None})
    assert single_day.supports_date_range is False
    assert single_day.date_pattern().search("filed 3/7/2024 by") == "3/7/2024"


def test_results_url_renders_dates_in_profile_format(profile_factory) -> None:
    profile = profile_factory(
        date_format="YYYY-MM-DD",
        pagination="url_template",
        selectors={"search_button": None},
        urls={
            "results_url_template": (
                "https://records.example.gov/r?from={start_date}&to={end_date}"
                "&type={document_type}&page={page}"
            )
        },
    )
    url = profile.results_url(date(2024, 1, 1), date(2024, 1, 2), "FED LIEN", 3)
    assert url == (
        "https://records.example.gov/r?from=2024-01-01&to=2024-01-02&type=FED%20LIEN&page=3"
    )
    assert profile.supports_date_range is True


def test_date_range_relative_and_fixed() -> None:
    today = date(2024, 3, 10)
    assert DateRange.yesterday().resolve(today) == (date(2024, 3, 9), date(2024, 3, 9))
    assert DateRange(relative="last_7_days").resolve(today) == (date(2024, 3, 4), today)
    assert len(list(DateRange(relative="last_7_days").days(today))) == 7
    fixed = DateRange.between(date(2024, 3, 1), date(2024, 3, 3))
    assert list(fixed.days()) == [date(2024, 3, 1), date(2024, 3, 2), date(2024, 3, 3)]
    with pytest.raises(ValidationError):
        DateRange(start=date(2024, 3, 2), end=date(2024, 3, 1))
    with pytest.raises(ValidationError):
        DateRange()


def test_retry_policy_backoff_is_capped() -> None:
    policy = RetryPolicy(backoff_base_seconds=2, backoff_max_seconds=5)
    assert [policy.backoff(n) for n in (1, 2, 3, 4)] == [2, 4, 5, 5]


def test_global_config_defaults_and_ledger_validation(tmp_path) -> None:
    config = GlobalConfig()
    assert config.over_threshold_amount == Decimal("20000")
    assert config.resolved_database_path(tmp_path) == (tmp_path / "lien_crawler.db").resolve()
    with pytest.raises(ValidationError):
        LedgerConfig(enabled=True)
