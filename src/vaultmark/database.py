"""SQLite persistence shared by the credential store and the audit log.

Both components run on one connection so that a credential change and
the audit entry describing it commit together. Writers take the database
lock up front (``BEGIN IMMEDIATE``), which serialises concurrent
processes on the same file.
"""
from __future__ import annotations

import contextlib
import datetime
import logging
import sqlite3
import threading
from collections.abc import Iterator
from pathlib import Path

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS credentials (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    serial INTEGER NOT NULL UNIQUE,
    status TEXT NOT NULL DEFAULT 'active'
        CHECK (status IN ('active', 'expired', 'revoked')),
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    revoked_at TEXT,
    ended_at TEXT,
    ttl_seconds INTEGER NOT NULL,
    host TEXT NOT NULL DEFAULT '',
    principal TEXT NOT NULL DEFAULT '',
    label TEXT NOT NULL DEFAULT '',
    force_command TEXT,
    cert_path TEXT,
    key_path TEXT,
    password_hash TEXT
);

CREATE TABLE IF NOT EXISTS serial_sequence (
    name TEXT PRIMARY KEY,
    value INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_log (
    sequence INTEGER PRIMARY KEY AUTOINCREMENT,
    action TEXT NOT NULL,
    credential_id TEXT,
    details TEXT NOT NULL DEFAULT '',
    timestamp TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_credentials_status ON credentials(status);
CREATE INDEX IF NOT EXISTS idx_credentials_expires ON credentials(expires_at);
CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);

INSERT OR IGNORE INTO serial_sequence (name, value) VALUES ('credential', 0);
"""


def format_timestamp(value: datetime.datetime) -> str:
    """Encode an aware datetime as a sortable UTC ISO-8601 string."""
    if value.tzinfo is None:
        raise ValueError("timestamps must be timezone-aware")
    return value.astimezone(datetime.timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str | None) -> datetime.datetime | None:
    if value is None:
        return None
    return datetime.datetime.fromisoformat(value)


def parse_required_timestamp(value: str | None, column: str) -> datetime.datetime:
    """Decode a timestamp from a NOT NULL column.

    Raises
    ------
    ValueError
        If the stored value is missing.
    """
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValueError(f"column {column!r} has no timestamp")
    return parsed


class Database:
    """Connection owner, schema bootstrap and transaction scope.

    Parameters
    ----------
    path:
        SQLite database file, or ``":memory:"``.
    busy_timeout:
        Seconds to wait for another process holding the write lock.
    """

    def __init__(self, path: Path | str, busy_timeout: float = 30.0) -> None:
        self._path = str(path)
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode; transactions are opened explicitly.
        self._conn = sqlite3.connect(
            self._path,
            timeout=busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        if self._path != ":memory:":
            self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(_SCHEMA)

    @property
    def path(self) -> str:
        return self._path

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements as one atomic, single-writer unit.

        Nested use joins the outermost transaction. Any exception,
        including ``KeyboardInterrupt``, rolls the whole unit back.
        """
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self._conn
                finally:
                    self._depth -= 1
                return

            self._conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                try:
                    self._conn.execute("COMMIT")
                except sqlite3.Error:
                    self._conn.execute("ROLLBACK")
                    raise
            finally:
                self._depth = 0

    def execute(self, sql: str, params: tuple[object, ...] | dict[str, object] = ()) -> sqlite3.Cursor:
        """Execute a single statement (auto-committed outside a transaction)."""
        with self._lock:
            return self._conn.execute(sql, params)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
        logger.debug("Closed database %s", self._path)
