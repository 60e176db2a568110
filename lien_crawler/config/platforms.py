"""Built-in defaults for the recorder platforms most counties run on.

A profile naming a ``platform`` inherits these values; anything the profile
sets itself wins. Merging happens before validation so the merged result is
what gets checked.
"""

from __future__ import annotations

import copy
from typing import Any

PLATFORM_DEFAULTS: dict[str, dict[str, Any]] = {
    "landmark_web": {
        "selectors": {
            "disclaimer_button": "#idAcceptYes",
            "document_type_field": "#documentType-DocumentType",
            "document_type_mode": "type",
            "start_date_field": "#beginDate-DocumentType",
            "end_date_field": "#endDate-DocumentType",
            "search_button": "#submit-DocumentType",
            "results_table": "#resultsTable",
            "result_rows": "tbody tr",
            "no_results_text": r"No (?:records|results) found",
            "next_page_button": "#resultsTable_next:not(.disabled)",
        },
        "pagination": "next_button",
        "requires_disclaimer": True,
        "date_format": "MM/DD/YYYY",
        "pacing": {
            "page_load_wait_ms": 3000,
            "between_requests_ms": 500,
            "after_submit_wait_ms": 3000,
            "document_load_wait_ms": 2000,
            "max_requests_per_minute": 30,
            "max_pages_per_run": 10,
        },
    },
    "legacy_recorder": {
        "selectors": {
            "document_type_field": "#ctl00_ContentPlaceHolder1_ddlDocCodes",
            "document_type_mode": "select",
            "start_date_field": "#ctl00_ContentPlaceHolder1_datepicker_dateInput",
            "end_date_field": "#ctl00_ContentPlaceHolder1_datepickerEnd_dateInput",
            "search_button": "#ctl00_ContentPlaceHolder1_btnSearchPanel1",
            "results_table": "table#ctl00_ContentPlaceHolder1_GridView1",
            "result_rows": "tr",
            "no_results_text": r"No records? (?:were )?found",
            "next_page_button": "a#ctl00_ContentPlaceHolder1_lnkNext",
        },
        "pagination": "next_button",
        "date_format": "MM/DD/YYYY",
        "parsing": {
            "recording_number": {"pattern": r"\b(\d{10,12})\b"},
            "amount": {"pattern": r"\$\s*([\d,]+(?:\.\d{1,2})?)"},
        },
        "pacing": {
            "page_load_wait_ms": 3000,
            "between_requests_ms": 300,
            "after_submit_wait_ms": 3000,
            "document_load_wait_ms": 2000,
            "max_requests_per_minute": 60,
            "max_pages_per_run": 10,
        },
    },
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def merge_platform_defaults(payload: dict[str, Any]) -> dict[str, Any]:
    platform = payload.get("platform")
    if platform not in PLATFORM_DEFAULTS:
        raise ValueError(
            f"Unknown platform {platform!r}; expected one of {sorted(PLATFORM_DEFAULTS)}"
        )
    return _deep_merge(PLATFORM_DEFAULTS[platform], payload)


__all__ = ["PLATFORM_DEFAULTS", "merge_platform_defaults"]
