"""SQLite storage for the profile switch history and the diagnostics trail.

The schema is built from an ordered list of migrations. Each migration runs
once and records its version in ``schema_version``, so opening an older file
brings it up to ``SCHEMA_VERSION`` and opening a current one is a no-op.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

_VERSION_TABLE = """
CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

# ---------------------------------------------------------------------------
# V1: Profile switches
# ---------------------------------------------------------------------------

_SCHEMA_V1 = """
-- seq is the insertion order; it breaks ties between equal effective_from values
CREATE TABLE IF NOT EXISTS profile_switches (
    seq                INTEGER PRIMARY KEY AUTOINCREMENT,
    effective_from     INTEGER NOT NULL,
    source             TEXT NOT NULL,
    selection_kind     TEXT NOT NULL CHECK (selection_kind IN ('store_reference', 'embedded')),
    profile_name       TEXT NOT NULL,

    -- Fernet token of the profile JSON; NULL for store references
    profile_json_enc   TEXT,

    duration_minutes   INTEGER NOT NULL DEFAULT 0,
    percentage         INTEGER NOT NULL DEFAULT 100,
    time_shift_minutes INTEGER NOT NULL DEFAULT 0,
    profile_source     TEXT,
    created_at         TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_switches_effective ON profile_switches(effective_from, seq);
"""

# ---------------------------------------------------------------------------
# V2: Diagnostics log (profile integrity anomalies)
# ---------------------------------------------------------------------------

_SCHEMA_V2 = """
CREATE TABLE IF NOT EXISTS diagnostics_log (
    id           TEXT PRIMARY KEY,
    timestamp    TEXT NOT NULL DEFAULT (datetime('now')),
    kind         TEXT NOT NULL,
    item_id      TEXT,
    reason       TEXT,
    context_json TEXT
);

CREATE INDEX IF NOT EXISTS idx_diagnostics_timestamp ON diagnostics_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_diagnostics_kind      ON diagnostics_log(kind);
"""

_MIGRATIONS: tuple[tuple[int, str, str], ...] = (
    (1, "profile_switches table", _SCHEMA_V1),
    (2, "diagnostics_log table", _SCHEMA_V2),
)

SCHEMA_VERSION = _MIGRATIONS[-1][0]


class DatabaseError(Exception):
    """Raised when database operations fail."""


class ProfileDatabase:
    """One shared SQLite connection for switch history and diagnostics.

    ``db_path`` may be a file (parent directories are created) or
    ``":memory:"`` for tests and non-persistent runs. The connection is used
    from several threads: hold ``lock`` for reads and use ``transaction()``
    for writes.

    Usage::

        with ProfileDatabase("~/.basalsync/profiles.db") as db:
            with db.transaction() as conn:
                conn.execute("INSERT INTO ...", params)
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self.lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        """The open connection.

        Raises:
            DatabaseError: If ``initialize()`` has not been called (or the
                database was closed).
        """
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    def initialize(self) -> None:
        """Open the connection and migrate the schema. Safe to call again."""
        with self.lock:
            if self._conn is not None:
                return
            target = self._db_path
            if target != ":memory:":
                db_file = Path(target).expanduser()
                db_file.parent.mkdir(parents=True, exist_ok=True)
                target = str(db_file)
            conn = sqlite3.connect(target, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            self._conn = conn
            self._migrate()
        logger.info("Profile database ready: %s (schema v%d)", self._db_path, SCHEMA_VERSION)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Hold the lock, commit on success and roll back on error."""
        with self.lock:
            conn = self.connection
            try:
                yield conn
            except Exception:
                conn.rollback()
                raise
            conn.commit()

    def get_schema_version(self) -> int:
        with self.lock:
            row = self.connection.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] or 0

    def close(self) -> None:
        with self.lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
        logger.info("Profile database closed: %s", self._db_path)

    def __enter__(self) -> ProfileDatabase:
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _migrate(self) -> None:
        conn = self.connection
        conn.executescript(_VERSION_TABLE)
        current = self.get_schema_version()
        for version, description, ddl in _MIGRATIONS:
            if version <= current:
                continue
            conn.executescript(ddl)
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
            conn.commit()
            logger.info("Applied schema migration V%d: %s", version, description)
