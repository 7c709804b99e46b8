"""Credential store — persistent record of every credential ever issued.

Rows are never deleted. Terminal credentials stay queryable for history
and are filtered out of default listings.
"""
from __future__ import annotations

import datetime
import sqlite3

from vaultmark.credentials.models import Credential, CredentialKind, CredentialStatus
from vaultmark.database import (
    Database,
    format_timestamp,
    parse_required_timestamp,
    parse_timestamp,
)
from vaultmark.errors import DuplicateId, InvalidTransition, NotFound

_COLUMNS = (
    "id",
    "kind",
    "serial",
    "status",
    "created_at",
    "expires_at",
    "revoked_at",
    "ended_at",
    "ttl_seconds",
    "host",
    "principal",
    "label",
    "force_command",
    "cert_path",
    "key_path",
    "password_hash",
)


class CredentialStore:
    """SQLite-backed credential repository.

    Parameters
    ----------
    db:
        Shared database; the audit log uses the same instance so both can
        commit in one transaction.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Serial allocation
    # ------------------------------------------------------------------

    def allocate_serial(self) -> int:
        """Return a serial strictly greater than every one handed out before.

        The increment and read happen inside a single write transaction
        on the persisted sequence row, so concurrent processes never see
        the same value.
        """
        with self._db.transaction() as conn:
            conn.execute(
                "UPDATE serial_sequence SET value = value + 1 WHERE name = 'credential'"
            )
            row = conn.execute(
                "SELECT value FROM serial_sequence WHERE name = 'credential'"
            ).fetchone()
        return int(row["value"])

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def insert(self, credential: Credential) -> None:
        """Persist a new credential.

        Raises
        ------
        DuplicateId
            If a credential with the same id already exists.
        """
        row = _to_row(credential)
        placeholders = ", ".join(f":{name}" for name in _COLUMNS)
        with self._db.transaction() as conn:
            if conn.execute(
                "SELECT 1 FROM credentials WHERE id = ?", (credential.id,)
            ).fetchone():
                raise DuplicateId(credential.id)
            try:
                conn.execute(
                    f"INSERT INTO credentials ({', '.join(_COLUMNS)}) "
                    f"VALUES ({placeholders})",
                    row,
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateId(credential.id) from exc

    def transition(
        self,
        credential_id: str,
        status: CredentialStatus,
        timestamp: datetime.datetime,
    ) -> Credential:
        """Move an ACTIVE credential to a terminal *status*.

        The update is conditional on the row still being ACTIVE, so of two
        racing callers exactly one succeeds.

        Returns
        -------
        Credential
            The credential as stored after the transition.

        Raises
        ------
        NotFound
            If *credential_id* is unknown.
        InvalidTransition
            If the credential is already terminal.
        """
        with self._db.transaction() as conn:
            current = self._fetch(conn, credential_id)
            if current is None:
                raise NotFound(credential_id)
            updated = current.with_status(status, timestamp)
            cursor = conn.execute(
                "UPDATE credentials SET status = ?, revoked_at = ?, ended_at = ? "
                "WHERE id = ? AND status = 'active'",
                (
                    updated.status.value,
                    format_timestamp(updated.revoked_at) if updated.revoked_at else None,
                    format_timestamp(timestamp),
                    credential_id,
                ),
            )
            if cursor.rowcount != 1:
                raise InvalidTransition(credential_id, current.status.value, status.value)
        return updated

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, credential_id: str) -> Credential | None:
        """Return the credential with *credential_id*, or None."""
        return self._fetch(self._db, credential_id)

    def list(
        self,
        kind: CredentialKind | None = None,
        status: CredentialStatus | None = None,
        host: str | None = None,
        include_terminal: bool = False,
    ) -> list[Credential]:
        """Return matching credentials, newest first.

        Parameters
        ----------
        kind:
            Restrict to one credential kind.
        status:
            Restrict to one status. Overrides *include_terminal*.
        host:
            Restrict to certificates granted for this host.
        include_terminal:
            Include expired and revoked credentials when no *status* is given.
        """
        clauses: list[str] = []
        params: list[object] = []

        if kind is not None:
            clauses.append("kind = ?")
            params.append(kind.value)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        elif not include_terminal:
            clauses.append("status = 'active'")
        if host:
            clauses.append("host = ?")
            params.append(host)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._db.execute(
            f"SELECT * FROM credentials {where} ORDER BY created_at DESC, serial DESC",
            tuple(params),
        ).fetchall()
        return [_from_row(row) for row in rows]

    def expired_active_as_of(self, now: datetime.datetime) -> list[Credential]:
        """Return ACTIVE credentials whose expiry is at or before *now*."""
        rows = self._db.execute(
            "SELECT * FROM credentials WHERE status = 'active' AND expires_at <= ? "
            "ORDER BY serial",
            (format_timestamp(now),),
        ).fetchall()
        return [_from_row(row) for row in rows]

    def revoked_serials(self, kind: CredentialKind | None = None) -> list[int]:
        """Return serials of every REVOKED credential, optionally of one kind."""
        sql = "SELECT serial FROM credentials WHERE status = 'revoked'"
        params: tuple[object, ...] = ()
        if kind is not None:
            sql += " AND kind = ?"
            params = (kind.value,)
        return [int(row["serial"]) for row in self._db.execute(sql + " ORDER BY serial", params)]

    def counts(self) -> dict[CredentialStatus, int]:
        """Return the number of credentials in each status."""
        counts = {status: 0 for status in CredentialStatus}
        for row in self._db.execute(
            "SELECT status, COUNT(*) AS n FROM credentials GROUP BY status"
        ):
            counts[CredentialStatus(row["status"])] = int(row["n"])
        return counts

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _fetch(conn: Database | sqlite3.Connection, credential_id: str) -> Credential | None:
        row = conn.execute(
            "SELECT * FROM credentials WHERE id = ?", (credential_id,)
        ).fetchone()
        return _from_row(row) if row else None


def _to_row(credential: Credential) -> dict[str, object]:
    return {
        "id": credential.id,
        "kind": credential.kind.value,
        "serial": credential.serial,
        "status": credential.status.value,
        "created_at": format_timestamp(credential.created_at),
        "expires_at": format_timestamp(credential.expires_at),
        "revoked_at": format_timestamp(credential.revoked_at) if credential.revoked_at else None,
        "ended_at": format_timestamp(credential.ended_at) if credential.ended_at else None,
        "ttl_seconds": credential.ttl_seconds,
        "host": credential.host,
        "principal": credential.principal,
        "label": credential.label,
        "force_command": credential.force_command,
        "cert_path": credential.cert_path,
        "key_path": credential.key_path,
        "password_hash": credential.password_hash,
    }


def _from_row(row: sqlite3.Row) -> Credential:
    return Credential(
        id=row["id"],
        kind=CredentialKind(row["kind"]),
        serial=int(row["serial"]),
        status=CredentialStatus(row["status"]),
        created_at=parse_required_timestamp(row["created_at"], "created_at"),
        expires_at=parse_required_timestamp(row["expires_at"], "expires_at"),
        revoked_at=parse_timestamp(row["revoked_at"]),
        ended_at=parse_timestamp(row["ended_at"]),
        ttl_seconds=int(row["ttl_seconds"]),
        host=row["host"],
        principal=row["principal"],
        label=row["label"],
        force_command=row["force_command"],
        cert_path=row["cert_path"],
        key_path=row["key_path"],
        password_hash=row["password_hash"],
    )
