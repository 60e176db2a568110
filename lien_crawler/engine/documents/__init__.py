"""Document retrieval: strategy chain plus PDF validation."""

from .chain import (
    PDF_SIGNATURE,
    DocumentFetchStrategy,
    DocumentRetriever,
    FetchContext,
    StrategyFailed,
    looks_like_pdf,
)
from .strategies import (
    BrowserCaptureStrategy,
    DirectFetchStrategy,
    SessionFetchStrategy,
    build_strategies,
)

__all__ = [
    "BrowserCaptureStrategy",
    "DirectFetchStrategy",
    "DocumentFetchStrategy",
    "DocumentRetriever",
    "FetchContext",
    "PDF_SIGNATURE",
    "SessionFetchStrategy",
    "StrategyFailed",
    "build_strategies",
    "looks_like_pdf",
]
