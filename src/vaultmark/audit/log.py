"""AuditLog — append-only record of credential lifecycle events.

Entries live in the ``audit_log`` table of the shared database and are
never updated or deleted. :meth:`AuditLog.append` runs on the same
connection as the credential store, so a caller that wraps the state
change and the append in one :meth:`Database.transaction` gets both or
neither.
"""
from __future__ import annotations

import datetime
import sqlite3
from dataclasses import dataclass, field
from enum import Enum

from vaultmark.database import Database, format_timestamp, parse_required_timestamp
from vaultmark.ttl import utcnow


class AuditAction(str, Enum):
    """Lifecycle actions recorded in the audit log."""

    INIT = "init"
    GRANT = "grant"
    PASSWORD = "password"
    REVOKE = "revoke"
    CLEANUP = "cleanup"
    SETUP_HOST = "setup-host"


@dataclass(frozen=True)
class AuditEntry:
    """A single audit log entry.

    Parameters
    ----------
    sequence:
        Monotonic id assigned by the database.
    action:
        What happened.
    credential_id:
        The credential concerned, if any. Weak reference only.
    details:
        Free-text description.
    timestamp:
        UTC time of the event.
    """

    sequence: int
    action: AuditAction
    credential_id: str | None = None
    details: str = ""
    timestamp: datetime.datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, object]:
        """Serialize to a plain dictionary suitable for JSON encoding."""
        return {
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "credential_id": self.credential_id,
            "details": self.details,
        }


class AuditLog:
    """Append-only audit log over the shared database.

    Parameters
    ----------
    db:
        Database shared with the credential store.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    def append(
        self,
        action: AuditAction,
        credential_id: str | None = None,
        details: str = "",
        timestamp: datetime.datetime | None = None,
    ) -> AuditEntry:
        """Record an event.

        Joins the caller's open transaction if there is one.

        Returns
        -------
        AuditEntry
            The stored entry including its sequence number.
        """
        when = timestamp or utcnow()
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO audit_log (action, credential_id, details, timestamp) "
                "VALUES (?, ?, ?, ?)",
                (AuditAction(action).value, credential_id, details, format_timestamp(when)),
            )
            sequence = cursor.lastrowid
        if sequence is None:
            raise RuntimeError("audit insert did not return a row id")
        return AuditEntry(
            sequence=sequence,
            action=AuditAction(action),
            credential_id=credential_id,
            details=details,
            timestamp=when,
        )

    def query(
        self,
        limit: int | None = None,
        action: AuditAction | None = None,
        credential_id: str | None = None,
        since: datetime.datetime | None = None,
    ) -> list[AuditEntry]:
        """Return matching entries, most recent first.

        Parameters
        ----------
        limit:
            Maximum number of entries to return.
        action:
            Only entries with this action.
        credential_id:
            Only entries referencing this credential.
        since:
            Only entries at or after this time.
        """
        clauses: list[str] = []
        params: list[object] = []

        if action is not None:
            clauses.append("action = ?")
            params.append(AuditAction(action).value)
        if credential_id is not None:
            clauses.append("credential_id = ?")
            params.append(credential_id)
        if since is not None:
            clauses.append("timestamp >= ?")
            params.append(format_timestamp(since))

        sql = "SELECT * FROM audit_log"
        if clauses:
            sql += f" WHERE {' AND '.join(clauses)}"
        sql += " ORDER BY sequence DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        return [_from_row(row) for row in self._db.execute(sql, tuple(params)).fetchall()]

    def count(self) -> int:
        row = self._db.execute("SELECT COUNT(*) AS n FROM audit_log").fetchone()
        return int(row["n"])


def _from_row(row: sqlite3.Row) -> AuditEntry:
    return AuditEntry(
        sequence=int(row["sequence"]),
        action=AuditAction(row["action"]),
        credential_id=row["credential_id"],
        details=row["details"],
        timestamp=parse_required_timestamp(row["timestamp"], "timestamp"),
    )
