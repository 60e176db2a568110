"""Exception taxonomy shared by the engine, orchestrator and storage layers."""

from __future__ import annotations


class LienCrawlerError(Exception):
    """Base class for all errors raised by lien_crawler."""


# ----------------------------------------------------------------------
# Configuration
# ----------------------------------------------------------------------
class ProfileConfigurationError(LienCrawlerError):
    """A jurisdiction profile is invalid or does not match the live site."""


class SelectorNotFound(ProfileConfigurationError):
    """A profile-declared selector matched nothing on the page."""

    def __init__(self, selector: str, context: str = "") -> None:
        self.selector = selector
        self.context = context
        detail = f" ({context})" if context else ""
        super().__init__(f"Selector not found: {selector}{detail}")


# ----------------------------------------------------------------------
# Transient / per-jurisdiction
# ----------------------------------------------------------------------
class TransientNetworkError(LienCrawlerError):
    """Connection level failure worth retrying."""


class PageLoadTimeout(LienCrawlerError):
    """The browser gave up waiting for a page to load."""


class JurisdictionFailed(LienCrawlerError):
    """Processing of one jurisdiction must be abandoned for this run."""

    def __init__(self, jurisdiction_id: str, reason: str) -> None:
        self.jurisdiction_id = jurisdiction_id
        self.reason = reason
        super().__init__(f"{jurisdiction_id}: {reason}")


class BudgetExhausted(LienCrawlerError):
    """The jurisdiction's page budget for the current run is spent."""

    def __init__(self, jurisdiction_id: str, max_pages: int) -> None:
        self.jurisdiction_id = jurisdiction_id
        self.max_pages = max_pages
        super().__init__(f"{jurisdiction_id}: page budget of {max_pages} exhausted")


# ----------------------------------------------------------------------
# Content
# ----------------------------------------------------------------------
class RowDiscarded(LienCrawlerError):
    """A raw result row could not yield a usable lien record."""


class DocumentUnavailable(LienCrawlerError):
    """Every document retrieval strategy failed for a recording number."""

    def __init__(self, recording_number: str, attempts: list[str] | None = None) -> None:
        self.recording_number = recording_number
        self.attempts = attempts or []
        super().__init__(
            f"No valid PDF for {recording_number} after {len(self.attempts)} attempts"
        )


# ----------------------------------------------------------------------
# Run lifecycle
# ----------------------------------------------------------------------
class AlreadyRunning(LienCrawlerError):
    """A run is already in progress somewhere in the system."""

    def __init__(self, run_id: str | None = None) -> None:
        self.run_id = run_id
        suffix = f": {run_id}" if run_id else ""
        super().__init__(f"Automation run already in progress{suffix}")


class NotRunning(LienCrawlerError):
    """stop() was called with no run in progress."""

    def __init__(self) -> None:
        super().__init__("No automation run is in progress")


class PersistenceError(LienCrawlerError):
    """The storage layer failed to commit a write."""


class SyncError(LienCrawlerError):
    """The external ledger rejected or failed to accept a record."""


__all__ = [
    "AlreadyRunning",
    "BudgetExhausted",
    "DocumentUnavailable",
    "JurisdictionFailed",
    "LienCrawlerError",
    "NotRunning",
    "PageLoadTimeout",
    "PersistenceError",
    "ProfileConfigurationError",
    "RowDiscarded",
    "SelectorNotFound",
    "SyncError",
    "TransientNetworkError",
]
