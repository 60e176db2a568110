"""Pydantic models describing jurisdiction profiles and global settings."""

from __future__ import annotations

import re
import string
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterator, Literal
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .platforms import merge_platform_defaults


class DateFormat(str, Enum):
    """Date formats accepted by county search forms."""

    US = "MM/DD/YYYY"
    ISO = "YYYY-MM-DD"
    EUROPEAN = "DD/MM/YYYY"

    @property
    def strftime_pattern(self) -> str:
        return _STRFTIME[self]

    @property
    def default_regex(self) -> str:
        return _DATE_REGEX[self]

    def render(self, value: date) -> str:
        return value.strftime(self.strftime_pattern)

    def parse(self, text: str) -> date:
        return datetime.strptime(text.strip(), self.strftime_pattern).date()


_STRFTIME = {
    DateFormat.US: "%m/%d/%Y",
    DateFormat.ISO: "%Y-%m-%d",
    DateFormat.EUROPEAN: "%d/%m/%Y",
}
_DATE_REGEX = {
    DateFormat.US: r"\b(\d{1,2}/\d{1,2}/\d{4})\b",
    DateFormat.ISO: r"\b(\d{4}-\d{2}-\d{2})\b",
    DateFormat.EUROPEAN: r"\b(\d{1,2}/\d{1,2}/\d{4})\b",
}


class RegexFlag(str, Enum):
    IGNORECASE = "IGNORECASE"
    MULTILINE = "MULTILINE"
    DOTALL = "DOTALL"


class PaginationMode(str, Enum):
    NEXT_BUTTON = "next_button"
    URL_TEMPLATE = "url_template"
    NONE = "none"


DocumentStrategyName = Literal["direct", "session", "browser"]

RESULTS_PLACEHOLDERS = frozenset({"start_date", "end_date", "document_type", "page"})
RECORD_PLACEHOLDERS = frozenset({"recording_number"})


@lru_cache(maxsize=256)
def _compile(pattern: str, flags: int) -> re.Pattern[str]:
    return re.compile(pattern, flags)


def _placeholders(template: str) -> set[str]:
    return {name for _, name, _, _ in string.Formatter().parse(template) if name}


def render_template(template: str, **values: Any) -> str:
    """Fill ``{placeholder}`` tokens with URL-encoded values."""

    encoded = {key: quote(str(value), safe="") for key, value in values.items()}
    return template.format(**encoded)


class FieldPattern(BaseModel):
    """A regex plus the capture group holding the field value."""

    model_config = ConfigDict(frozen=True)

    pattern: str
    group: int = 1
    flags: tuple[RegexFlag, ...] = (RegexFlag.IGNORECASE,)

    @model_validator(mode="before")
    @classmethod
    def _coerce_shorthand(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"pattern": value}
        return value

    @model_validator(mode="after")
    def _validate_pattern(self) -> "FieldPattern":
        if not self.pattern.strip():
            raise ValueError("pattern cannot be empty")
        try:
            compiled = self.compiled()
        except re.error as exc:
            raise ValueError(f"Invalid regex {self.pattern!r}: {exc}") from exc
        if self.group < 0 or self.group > compiled.groups:
            raise ValueError(
                f"group {self.group} out of range for {self.pattern!r} "
                f"({compiled.groups} groups)"
            )
        return self

    def compiled(self) -> re.Pattern[str]:
        bits = 0
        for flag in self.flags:
            bits |= getattr(re, flag.value)
        return _compile(self.pattern, bits)

    def search(self, text: str) -> str | None:
        match = self.compiled().search(text)
        if match is None:
            return None
        return match.group(self.group)


class UrlTemplates(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_url: str
    search_form_url: str
    results_url_template: str | None = None
    detail_url_template: str | None = None
    pdf_url_templates: tuple[str, ...]

    @field_validator("base_url", "search_form_url")
    @classmethod
    def _require_http(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"URL must be absolute http(s): {value!r}")
        return value

    @model_validator(mode="after")
    def _validate_placeholders(self) -> "UrlTemplates":
        if not self.pdf_url_templates:
            raise ValueError("pdf_url_templates requires at least one template")
        for template in self.pdf_url_templates:
            names = _placeholders(template)
            if "recording_number" not in names:
                raise ValueError(f"PDF template lacks {{recording_number}}: {template}")
            unknown = names - RECORD_PLACEHOLDERS
            if unknown:
                raise ValueError(f"Unknown placeholders {sorted(unknown)} in {template}")
        if self.detail_url_template:
            unknown = _placeholders(self.detail_url_template) - RECORD_PLACEHOLDERS
            if unknown:
                raise ValueError(f"Unknown placeholders {sorted(unknown)} in detail template")
        if self.results_url_template:
            unknown = _placeholders(self.results_url_template) - RESULTS_PLACEHOLDERS
            if unknown:
                raise ValueError(f"Unknown placeholders {sorted(unknown)} in results template")
        return self

    def pdf_urls(self, recording_number: str) -> list[str]:
        return [
            render_template(template, recording_number=recording_number)
            for template in self.pdf_url_templates
        ]

    def detail_url(self, recording_number: str) -> str | None:
        if not self.detail_url_template:
            return None
        return render_template(self.detail_url_template, recording_number=recording_number)


class SearchSelectors(BaseModel):
    """CSS selectors used to drive the county search form and read results."""

    model_config = ConfigDict(frozen=True)

    start_date_field: str | None = None
    end_date_field: str | None = None
    document_type_field: str | None = None
    document_type_mode: Literal["select", "type"] = "select"
    search_button: str | None = None
    results_table: str
    result_rows: str = "tr"
    no_results_indicator: str | None = None
    no_results_text: str | None = None
    next_page_button: str | None = None
    disclaimer_button: str | None = None

    @field_validator("results_table", "result_rows")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("selector cannot be empty")
        return value.strip()

    @field_validator("no_results_text")
    @classmethod
    def _valid_regex(cls, value: str | None) -> str | None:
        if value is None:
            return value
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"Invalid no_results_text regex: {exc}") from exc
        return value


class ParsingPatterns(BaseModel):
    model_config = ConfigDict(frozen=True)

    recording_number: FieldPattern = Field(
        default_factory=lambda: FieldPattern(pattern=r"\b(\d{10,12})\b")
    )
    record_date: FieldPattern | None = None
    amount: FieldPattern | None = Field(
        default_factory=lambda: FieldPattern(pattern=r"\$\s*([\d,]+(?:\.\d{1,2})?)")
    )
    debtor_name: FieldPattern | None = None
    debtor_address: FieldPattern | None = None
    creditor_name: FieldPattern | None = None
    creditor_address: FieldPattern | None = None
    use_detail_page: bool = False


class PacingConfig(BaseModel):
    """Per-jurisdiction cadence and budgets (milliseconds unless noted)."""

    model_config = ConfigDict(frozen=True)

    page_load_wait_ms: int = Field(default=3000, ge=0)
    between_requests_ms: int = Field(default=300, ge=0)
    after_submit_wait_ms: int = Field(default=3000, ge=0)
    document_load_wait_ms: int = Field(default=2000, ge=0)
    max_requests_per_minute: int = Field(default=30, ge=1)
    max_pages_per_run: int = Field(default=10, ge=1)


class JurisdictionProfile(BaseModel):
    """Scrape parameters for one county. Frozen once loaded."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    region: str
    active: bool = True
    platform: str | None = None
    urls: UrlTemplates
    selectors: SearchSelectors
    pagination: PaginationMode = PaginationMode.NEXT_BUTTON
    parsing: ParsingPatterns = Field(default_factory=ParsingPatterns)
    default_document_type: str
    date_format: DateFormat = DateFormat.US
    pacing: PacingConfig = Field(default_factory=PacingConfig)
    headers: dict[str, str] = Field(default_factory=dict)
    requires_disclaimer: bool = False
    document_strategies: tuple[DocumentStrategyName, ...] = ("direct", "session", "browser")

    @model_validator(mode="before")
    @classmethod
    def _apply_platform_defaults(cls, value: Any) -> Any:
        if isinstance(value, dict) and value.get("platform"):
            return merge_platform_defaults(value)
        return value

    @field_validator("id", "name", "region", "default_document_type")
    @classmethod
    def _require_text(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("field cannot be empty")
        return value.strip()

    @model_validator(mode="after")
    def _validate_search_flow(self) -> "JurisdictionProfile":
        if self.urls.results_url_template is None:
            if not self.selectors.search_button:
                raise ValueError("search_button is required without results_url_template")
            if not self.selectors.start_date_field:
                raise ValueError("start_date_field is required without results_url_template")
        if self.pagination is PaginationMode.NEXT_BUTTON and not self.selectors.next_page_button:
            raise ValueError("next_button pagination requires selectors.next_page_button")
        if self.pagination is PaginationMode.URL_TEMPLATE:
            template = self.urls.results_url_template or ""
            if "page" not in _placeholders(template):
                raise ValueError("url_template pagination requires {page} in results_url_template")
        if self.requires_disclaimer and not self.selectors.disclaimer_button:
            raise ValueError("requires_disclaimer needs selectors.disclaimer_button")
        if not self.document_strategies:
            raise ValueError("document_strategies cannot be empty")
        if self.parsing.use_detail_page and not self.urls.detail_url_template:
            raise ValueError("use_detail_page requires urls.detail_url_template")
        return self

    @property
    def supports_date_range(self) -> bool:
        """Whether one query can cover several days; otherwise search day by day."""

        if self.selectors.end_date_field:
            return True
        template = self.urls.results_url_template
        return bool(template) and not self.selectors.search_button and (
            "end_date" in _placeholders(template)
        )

    def date_pattern(self) -> FieldPattern:
        return self.parsing.record_date or FieldPattern(pattern=self.date_format.default_regex)

    def results_url(self, start: date, end: date, document_type: str, page: int = 1) -> str:
        if not self.urls.results_url_template:
            raise ValueError(f"{self.id} has no results_url_template")
        return render_template(
            self.urls.results_url_template,
            start_date=self.date_format.render(start),
            end_date=self.date_format.render(end),
            document_type=document_type,
            page=page,
        )


class DateRange(BaseModel):
    """Fixed or relative date window for a run.

    Supports ``start``/``end`` dates or one of the relative expressions
    ``yesterday``, ``today`` and ``last_7_days``.
    """

    start: date | None = None
    end: date | None = None
    relative: Literal["yesterday", "today", "last_7_days"] | None = None

    @model_validator(mode="after")
    def _validate_range(self) -> "DateRange":
        has_fixed = self.start is not None and self.end is not None
        has_relative = self.relative is not None
        if has_fixed and has_relative:
            raise ValueError("Use either fixed dates or a relative expression, not both")
        if not has_fixed and not has_relative:
            raise ValueError("A fixed date range or a relative expression is required")
        if has_fixed and self.end < self.start:
            raise ValueError("end date cannot precede start date")
        return self

    @classmethod
    def yesterday(cls) -> "DateRange":
        return cls(relative="yesterday")

    @classmethod
    def between(cls, start: date, end: date) -> "DateRange":
        return cls(start=start, end=end)

    def resolve(self, today: date | None = None) -> tuple[date, date]:
        if self.start is not None and self.end is not None:
            return self.start, self.end
        today = today or date.today()
        if self.relative == "yesterday":
            day = today - timedelta(days=1)
            return day, day
        if self.relative == "today":
            return today, today
        return today - timedelta(days=6), today

    def days(self, today: date | None = None) -> Iterator[date]:
        start, end = self.resolve(today)
        current = start
        while current <= end:
            yield current
            current += timedelta(days=1)


class RetryPolicy(BaseModel):
    network_retries: int = Field(default=3, ge=0)
    backoff_base_seconds: float = Field(default=2.0, ge=0)
    backoff_max_seconds: float = Field(default=30.0, ge=0)
    page_timeout_retries: int = Field(default=1, ge=0)

    def backoff(self, attempt: int) -> float:
        return min(self.backoff_base_seconds * (2 ** max(attempt - 1, 0)), self.backoff_max_seconds)


class BrowserConfig(BaseModel):
    headless: bool = True
    timeout_ms: int = Field(default=30000, ge=1000)


class ScheduleConfig(BaseModel):
    """Daily trigger for scheduled runs."""

    enabled: bool = False
    hour: int = Field(default=6, ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)
    timezone: str = "UTC"
    skip_weekends: bool = False


class LedgerConfig(BaseModel):
    """Connection settings for the external ledger sink."""

    enabled: bool = False
    endpoint_url: str | None = None
    token_env: str = "LEDGER_API_TOKEN"
    timeout_seconds: float = Field(default=15.0, gt=0)

    @model_validator(mode="after")
    def _validate_endpoint(self) -> "LedgerConfig":
        if self.enabled and not self.endpoint_url:
            raise ValueError("ledger.endpoint_url is required when the ledger is enabled")
        return self


class GlobalConfig(BaseModel):
    """Settings shared across jurisdictions."""

    database_path: Path = Field(default=Path("lien_crawler.db"))
    user_agent_list: list[str] | Path | None = None
    over_threshold_amount: Decimal = Decimal("20000")
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)

    @field_validator("database_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    @model_validator(mode="after")
    def _apply_user_agents(self) -> "GlobalConfig":
        if isinstance(self.user_agent_list, Path):
            if not self.user_agent_list.exists():
                raise ValueError(f"UA file not found: {self.user_agent_list}")
            content = self.user_agent_list.read_text(encoding="utf-8").splitlines()
            self.user_agent_list = [line.strip() for line in content if line.strip()]
        return self

    def resolved_database_path(self, data_dir: Path) -> Path:
        if not self.database_path.is_absolute():
            return (data_dir / self.database_path).resolve()
        return self.database_path


__all__ = [
    "BrowserConfig",
    "DateFormat",
    "DateRange",
    "DocumentStrategyName",
    "FieldPattern",
    "GlobalConfig",
    "JurisdictionProfile",
    "LedgerConfig",
    "PacingConfig",
    "PaginationMode",
    "ParsingPatterns",
    "RegexFlag",
    "RetryPolicy",
    "ScheduleConfig",
    "SearchSelectors",
    "UrlTemplates",
    "render_template",
]
