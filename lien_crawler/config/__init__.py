"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository, ProfileLoadError
from .models import (
    BrowserConfig,
    DateFormat,
    DateRange,
    FieldPattern,
    GlobalConfig,
    JurisdictionProfile,
    LedgerConfig,
    PacingConfig,
    PaginationMode,
    ParsingPatterns,
    RetryPolicy,
    ScheduleConfig,
    SearchSelectors,
    UrlTemplates,
    render_template,
)

__all__ = [
    "BrowserConfig",
    "ConfigLocator",
    "ConfigRepository",
    "DateFormat",
    "DateRange",
    "FieldPattern",
    "GlobalConfig",
    "JurisdictionProfile",
    "LedgerConfig",
    "PacingConfig",
    "PaginationMode",
    "ParsingPatterns",
    "ProfileLoadError",
    "RetryPolicy",
    "ScheduleConfig",
    "SearchSelectors",
    "UrlTemplates",
    "render_template",
]
