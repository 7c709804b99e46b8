"""Tests for vaultmark.audit.log — AuditLog over the shared database."""
from __future__ import annotations

import datetime
from collections.abc import Iterator
from pathlib import Path

import pytest

from vaultmark.audit.log import AuditAction, AuditEntry, AuditLog
from vaultmark.database import Database

NOW = datetime.datetime(2024, 6, 1, 12, 0, tzinfo=datetime.timezone.utc)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def db(tmp_path: Path) -> Iterator[Database]:
    database = Database(tmp_path / "credentials.db")
    yield database
    database.close()


@pytest.fixture()
def audit(db: Database) -> AuditLog:
    return AuditLog(db)


# ---------------------------------------------------------------------------
# AuditEntry
# ---------------------------------------------------------------------------


class TestAuditEntry:
    def test_to_dict(self) -> None:
        entry = AuditEntry(
            sequence=3,
            action=AuditAction.REVOKE,
            credential_id="abcd0001",
            details="Credential revoked",
            timestamp=NOW,
        )
        data = entry.to_dict()
        assert data["action"] == "revoke"
        assert data["credential_id"] == "abcd0001"
        assert data["timestamp"] == NOW.isoformat()

    def test_action_values(self) -> None:
        assert {a.value for a in AuditAction} == {
            "init",
            "grant",
            "password",
            "revoke",
            "cleanup",
            "setup-host",
        }


# ---------------------------------------------------------------------------
# AuditLog
# ---------------------------------------------------------------------------


class TestAuditLog:
    def test_append_assigns_increasing_sequence(self, audit: AuditLog) -> None:
        first = audit.append(AuditAction.INIT, None, "CA initialized")
        second = audit.append(AuditAction.GRANT, "abcd0001", "granted")
        assert second.sequence > first.sequence
        assert audit.count() == 2

    def test_query_most_recent_first(self, audit: AuditLog) -> None:
        audit.append(AuditAction.INIT, timestamp=NOW)
        audit.append(AuditAction.GRANT, "abcd0001", timestamp=NOW)
        audit.append(AuditAction.REVOKE, "abcd0001", timestamp=NOW)
        actions = [entry.action for entry in audit.query()]
        assert actions == [AuditAction.REVOKE, AuditAction.GRANT, AuditAction.INIT]

    def test_query_limit(self, audit: AuditLog) -> None:
        for _ in range(5):
            audit.append(AuditAction.CLEANUP, "abcd0001")
        assert len(audit.query(limit=2)) == 2

    def test_query_filters(self, audit: AuditLog) -> None:
        audit.append(AuditAction.GRANT, "abcd0001")
        audit.append(AuditAction.GRANT, "abcd0002")
        audit.append(AuditAction.REVOKE, "abcd0001")

        assert len(audit.query(action=AuditAction.GRANT)) == 2
        assert [e.action for e in audit.query(credential_id="abcd0001")] == [
            AuditAction.REVOKE,
            AuditAction.GRANT,
        ]

    def test_query_since(self, audit: AuditLog) -> None:
        audit.append(AuditAction.GRANT, "old", timestamp=NOW - datetime.timedelta(days=2))
        audit.append(AuditAction.GRANT, "new", timestamp=NOW)
        recent = audit.query(since=NOW - datetime.timedelta(days=1))
        assert [e.credential_id for e in recent] == ["new"]

    def test_entries_round_trip(self, audit: AuditLog) -> None:
        stored = audit.append(AuditAction.PASSWORD, "pass0001", 'Password "db"', timestamp=NOW)
        assert audit.query() == [stored]

    def test_append_joins_open_transaction(self, db: Database, audit: AuditLog) -> None:
        with pytest.raises(RuntimeError):
            with db.transaction():
                audit.append(AuditAction.GRANT, "abcd0001")
                raise RuntimeError("abort")
        assert audit.count() == 0

    def test_persists_across_connections(self, tmp_path: Path) -> None:
        path = tmp_path / "audit.db"
        first = Database(path)
        AuditLog(first).append(AuditAction.INIT, None, "CA initialized")
        first.close()

        second = Database(path)
        try:
            assert AuditLog(second).count() == 1
        finally:
            second.close()
