"""Engine components: pacing, search, field parsing and document retrieval."""

from .browser import BrowserHost
from .documents import DocumentRetriever, build_strategies
from .pacer import Pacer
from .parser import FieldParser, ParsedFields
from .search import RawResultRow, ResultPage, SearchEngine
from .session import PlaywrightSearchSession, SearchSession

__all__ = [
    "BrowserHost",
    "DocumentRetriever",
    "FieldParser",
    "Pacer",
    "ParsedFields",
    "PlaywrightSearchSession",
    "RawResultRow",
    "ResultPage",
    "SearchEngine",
    "SearchSession",
    "build_strategies",
]
