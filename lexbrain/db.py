"""
Storage Port — SQLite Persistent Backend

Tables:
    facts         - Content-addressed facts (append-only, TTL-expired)
    locks         - Advisory lock names (one row = one holder)
    frames        - Work-session snapshots (replaced by id)
    frame_tokens  - Normalized reference-point tokens per frame
    atlas_frames  - Immutable Atlas Frame blobs
    events        - Audit log (append-only)
    schema_meta   - Schema version and provenance

One Database instance is the single shared handle: it is created by the
composition root (lexbrain.service.LexBrain) and injected into every
component. Thread safety: sqlite3 check_same_thread=False with explicit
serialization through one lock; every logical write runs inside
transaction(), so a partially-written row is never observable.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from lexbrain.types import _generate_id, _now_iso

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS facts (
    fact_id       TEXT PRIMARY KEY,
    kind          TEXT NOT NULL,
    repo          TEXT NOT NULL,
    "commit"      TEXT NOT NULL,
    path          TEXT,
    symbol        TEXT,
    inputs_hash   TEXT NOT NULL,
    payload       TEXT NOT NULL,                -- JSON blob (plain value or {ciphertext, iv})
    sealed        INTEGER NOT NULL DEFAULT 0,
    confidence    REAL,
    actor         TEXT,                         -- JSON
    refs          TEXT NOT NULL DEFAULT '[]',   -- JSON array
    created_at    TEXT NOT NULL,
    created_epoch REAL NOT NULL,
    ttl_seconds   INTEGER
);

CREATE TABLE IF NOT EXISTS locks (
    name        TEXT PRIMARY KEY,
    acquired_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS frames (
    id              TEXT PRIMARY KEY,
    timestamp       TEXT NOT NULL,
    branch          TEXT NOT NULL,
    jira            TEXT,
    module_scope    TEXT NOT NULL DEFAULT '[]',  -- JSON array
    reference_point TEXT NOT NULL,
    summary_caption TEXT NOT NULL DEFAULT '',
    status_snapshot TEXT NOT NULL DEFAULT '{}',  -- JSON object
    keywords        TEXT NOT NULL DEFAULT '[]',  -- JSON array
    atlas_frame_id  TEXT
);

CREATE TABLE IF NOT EXISTS frame_tokens (
    frame_id TEXT NOT NULL,
    token    TEXT NOT NULL,
    PRIMARY KEY (frame_id, token)
);

CREATE TABLE IF NOT EXISTS atlas_frames (
    atlas_frame_id   TEXT PRIMARY KEY,
    frame_id         TEXT NOT NULL DEFAULT '',
    atlas_timestamp  TEXT NOT NULL,
    reference_module TEXT NOT NULL,
    fold_radius      INTEGER NOT NULL,
    atlas_json       TEXT NOT NULL,
    created_at       TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS events (
    id           TEXT PRIMARY KEY,
    action       TEXT NOT NULL,
    subject      TEXT,
    details_json TEXT NOT NULL DEFAULT '{}',
    timestamp    TEXT NOT NULL
);

-- Schema metadata for forward compatibility
CREATE TABLE IF NOT EXISTS schema_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_facts_rc ON facts(repo, "commit", kind);
CREATE INDEX IF NOT EXISTS idx_facts_path ON facts(repo, "commit", path);
CREATE INDEX IF NOT EXISTS idx_facts_ttl ON facts(created_epoch, ttl_seconds)
    WHERE ttl_seconds IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_frames_timestamp ON frames(timestamp);
CREATE INDEX IF NOT EXISTS idx_frames_branch ON frames(branch);
CREATE INDEX IF NOT EXISTS idx_frames_jira ON frames(jira);
CREATE INDEX IF NOT EXISTS idx_frame_tokens_token ON frame_tokens(token);
CREATE INDEX IF NOT EXISTS idx_atlas_frames_frame_id ON atlas_frames(frame_id);
CREATE INDEX IF NOT EXISTS idx_events_action ON events(action);
"""

_COUNTED_TABLES = ("facts", "locks", "frames", "atlas_frames", "events")


class Database:
    """
    SQLite-backed storage port shared by every lexbrain component.

    Thread-safe via explicit lock. Writes go through transaction().
    """

    def __init__(
        self,
        db_path: str = ":memory:",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ):
        """Open (and create if needed) the database.

        Args:
            db_path: SQLite database path (or ":memory:" for in-memory).
            wal_mode: Enable WAL journal mode for concurrent readers.
            busy_timeout_ms: How long SQLite waits on a locked database file
                held by another process before failing.
        """
        self._db_path = db_path
        self._lock = threading.Lock()
        # Auto-create parent directory for disk-backed databases.
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            db_path, check_same_thread=False,
            timeout=busy_timeout_ms / 1000.0,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        if wal_mode and db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        self._conn.executescript(_SCHEMA_SQL)
        # Populate schema_meta (idempotent)
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('schema_version', ?)",
                (str(SCHEMA_VERSION),),
            )
            conn.execute(
                "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('created_by', 'lexbrain')",
            )
            conn.execute(
                "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('created_at', datetime('now'))",
            )
        logger.info(f"Database initialized: {db_path}")

    @property
    def path(self) -> str:
        return self._db_path

    # -- Transactions ------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block atomically.

        Holds the in-process lock and an IMMEDIATE SQLite transaction, so
        concurrent writers in other processes are serialized as well.
        Commits on success, rolls back on any exception.
        """
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        """Run a read-only statement and return all rows."""
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        """Run a read-only statement and return the first row, or None."""
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        with self._lock:
            self._conn.close()

    # -- Audit log ---------------------------------------------------------

    @staticmethod
    def log_event(
        conn: sqlite3.Connection,
        action: str,
        subject: Optional[str],
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Write an audit event (must be called within transaction())."""
        conn.execute(
            """INSERT INTO events (id, action, subject, details_json, timestamp)
               VALUES (?,?,?,?,?)""",
            (
                _generate_id("evt"), action, subject,
                json.dumps(details or {}, sort_keys=True), _now_iso(),
            ),
        )

    def read_events(
        self, action: Optional[str] = None, limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """Most recent audit events first, optionally filtered by action."""
        if action:
            rows = self.query(
                "SELECT * FROM events WHERE action=? "
                "ORDER BY timestamp DESC, rowid DESC LIMIT ?",
                (action, limit),
            )
        else:
            rows = self.query(
                "SELECT * FROM events ORDER BY timestamp DESC, rowid DESC LIMIT ?",
                (limit,),
            )
        return [
            {
                "id": r["id"],
                "action": r["action"],
                "subject": r["subject"],
                "details": json.loads(r["details_json"]),
                "timestamp": r["timestamp"],
            }
            for r in rows
        ]

    # -- Stats -------------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        """Row counts per table plus schema metadata."""
        with self._lock:
            counts = {
                table: self._conn.execute(
                    f"SELECT COUNT(*) AS cnt FROM {table}"
                ).fetchone()["cnt"]
                for table in _COUNTED_TABLES
            }
            version = self._conn.execute(
                "SELECT value FROM schema_meta WHERE key='schema_version'"
            ).fetchone()
        return {
            "db_path": self._db_path,
            "schema_version": int(version["value"]) if version else None,
            "total_facts": counts["facts"],
            "total_locks": counts["locks"],
            "total_frames": counts["frames"],
            "total_atlas_frames": counts["atlas_frames"],
            "events_count": counts["events"],
        }
