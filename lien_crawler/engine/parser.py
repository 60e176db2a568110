"""Field extraction from raw search-result rows."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import AbstractSet

from selectolax.parser import HTMLParser

from ..config import FieldPattern, JurisdictionProfile
from ..errors import RowDiscarded
from ..models import NEEDS_EXTRACTION, LienRecord
from .search import RawResultRow

CENT = Decimal("0.01")
_WHITESPACE = re.compile(r"\s+")
_AMOUNT_NOISE = re.compile(r"[^\d.\-]")


@dataclass(slots=True, frozen=True)
class ParsedFields:
    """Typed values extracted from one row."""

    recording_number: str
    record_date: date
    amount: Decimal | None = None
    debtor_name: str = NEEDS_EXTRACTION
    debtor_address: str = NEEDS_EXTRACTION
    creditor_name: str = NEEDS_EXTRACTION
    creditor_address: str = NEEDS_EXTRACTION
    source_url: str | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def to_record(self, jurisdiction_id: str, document_id: str | None = None) -> LienRecord:
        return LienRecord(
            jurisdiction_id=jurisdiction_id,
            recording_number=self.recording_number,
            record_date=self.record_date,
            amount=self.amount,
            debtor_name=self.debtor_name,
            debtor_address=self.debtor_address,
            creditor_name=self.creditor_name,
            creditor_address=self.creditor_address,
            source_url=self.source_url,
            document_id=document_id,
        )


def parse_amount(raw: str) -> Decimal | None:
    """Convert ``$12,345.6`` style text to a cent-exact Decimal."""

    cleaned = _AMOUNT_NOISE.sub("", raw)
    if not cleaned or cleaned in {".", "-"}:
        return None
    try:
        return Decimal(cleaned).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    collapsed = _WHITESPACE.sub(" ", value).strip(" ,;:")
    return collapsed or None


class FieldParser:
    """Apply a profile's patterns to a raw row.

    Pure: no I/O and no logging. Rows that cannot produce a record raise
    ``RowDiscarded``; softer problems are returned in ``warnings``.
    """

    def parse(
        self,
        row: RawResultRow,
        profile: JurisdictionProfile,
        seen: AbstractSet[str] = frozenset(),
    ) -> ParsedFields:
        text = self._row_text(row)
        patterns = profile.parsing

        recording_number = _clean(patterns.recording_number.search(text))
        if recording_number is None:
            raise RowDiscarded(f"No recording number in row on page {row.page_number}")
        if recording_number in seen:
            raise RowDiscarded(f"Recording number {recording_number} already seen this run")

        raw_date = _clean(profile.date_pattern().search(text))
        if raw_date is None:
            raise RowDiscarded(f"{recording_number}: no record date")
        try:
            record_date = profile.date_format.parse(raw_date)
        except ValueError as exc:
            raise RowDiscarded(
                f"{recording_number}: invalid record date {raw_date!r} "
                f"for format {profile.date_format.value}"
            ) from exc

        warnings: list[str] = []
        amount = None
        if patterns.amount is not None:
            raw_amount = patterns.amount.search(text)
            if raw_amount is not None:
                amount = parse_amount(raw_amount)
                if amount is None:
                    warnings.append(f"{recording_number}: unparseable amount {raw_amount!r}")

        return ParsedFields(
            recording_number=recording_number,
            record_date=record_date,
            amount=amount,
            debtor_name=self._optional(patterns.debtor_name, text),
            debtor_address=self._optional(patterns.debtor_address, text),
            creditor_name=self._optional(patterns.creditor_name, text),
            creditor_address=self._optional(patterns.creditor_address, text),
            source_url=row.detail_url,
            warnings=tuple(warnings),
        )

    @staticmethod
    def _row_text(row: RawResultRow) -> str:
        text = row.text or HTMLParser(row.html).text(separator=" ", strip=True)
        if row.detail_text:
            text = f"{text}\n{row.detail_text}"
        return text

    @staticmethod
    def _optional(pattern: FieldPattern | None, text: str) -> str:
        if pattern is None:
            return NEEDS_EXTRACTION
        return _clean(pattern.search(text)) or NEEDS_EXTRACTION


__all__ = ["CENT", "FieldParser", "ParsedFields", "parse_amount"]
