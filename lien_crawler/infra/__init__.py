"""Infrastructure helpers: SQLite storage and browser identity."""

from .records import RecordStore
from .storage import SQLiteManager
from .ua_pool import DEFAULT_USER_AGENT, UserAgentPool

__all__ = ["DEFAULT_USER_AGENT", "RecordStore", "SQLiteManager", "UserAgentPool"]
