"""SQLite connection management and schema for persisted crawler state."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from threading import Lock
from typing import Dict, List

from ..models import utcnow

SCHEMA = """
CREATE TABLE IF NOT EXISTS document_blobs (
    id TEXT PRIMARY KEY,
    filename TEXT NOT NULL,
    byte_size INTEGER NOT NULL,
    content BLOB NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS liens (
    id TEXT PRIMARY KEY,
    jurisdiction_id TEXT NOT NULL,
    recording_number TEXT NOT NULL,
    record_date TEXT NOT NULL,
    debtor_name TEXT,
    debtor_address TEXT,
    creditor_name TEXT,
    creditor_address TEXT,
    amount TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    external_id TEXT,
    document_id TEXT REFERENCES document_blobs(id) ON DELETE SET NULL,
    source_url TEXT,
    failure_reason TEXT,
    discovered_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (jurisdiction_id, recording_number)
);
CREATE INDEX IF NOT EXISTS idx_liens_discovered_at ON liens (discovered_at);
CREATE INDEX IF NOT EXISTS idx_liens_status ON liens (status);

CREATE TABLE IF NOT EXISTS automation_runs (
    id TEXT PRIMARY KEY,
    trigger TEXT NOT NULL,
    status TEXT NOT NULL,
    started_at TEXT NOT NULL,
    ended_at TEXT,
    liens_found INTEGER NOT NULL DEFAULT 0,
    liens_processed INTEGER NOT NULL DEFAULT 0,
    liens_over_threshold INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    metadata TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_runs_started_at ON automation_runs (started_at);

CREATE TABLE IF NOT EXISTS orchestrator_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    status TEXT NOT NULL,
    run_id TEXT,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS system_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    level TEXT NOT NULL,
    component TEXT NOT NULL,
    message TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_system_logs_timestamp ON system_logs (timestamp);
"""


class SQLiteManager:
    """Manage SQLite connections with basic schema guarantees."""

    def __init__(self) -> None:
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._dedicated: List[sqlite3.Connection] = []
        self._lock = Lock()

    def connect(self, path: Path) -> sqlite3.Connection:
        """Return the shared connection for ``path``, creating it on first use."""

        with self._lock:
            if path not in self._connections:
                self._connections[path] = self._open(path)
            return self._connections[path]

    def open_dedicated(self, path: Path) -> sqlite3.Connection:
        """Open a connection nobody else shares; ``close_all`` still closes it."""

        conn = self._open(path)
        with self._lock:
            self._dedicated.append(conn)
        return conn

    def _open(self, path: Path) -> sqlite3.Connection:
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(path, check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        self._ensure_schema(conn)
        return conn

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(SCHEMA)
        conn.execute(
            "INSERT OR IGNORE INTO orchestrator_state (id, status, run_id, updated_at) "
            "VALUES (1, 'idle', NULL, ?)",
            (utcnow().isoformat(timespec="microseconds"),),
        )
        conn.commit()

    def reset(self, path: Path) -> None:
        with self._lock:
            if path in self._connections:
                self._connections[path].close()
                del self._connections[path]
        for suffix in ("", "-wal", "-shm"):
            candidate = path.with_name(path.name + suffix)
            if candidate.exists():
                candidate.unlink()

    def close_all(self) -> None:
        with self._lock:
            for conn in [*self._connections.values(), *self._dedicated]:
                conn.close()
            self._connections.clear()
            self._dedicated.clear()


__all__ = ["SCHEMA", "SQLiteManager"]
