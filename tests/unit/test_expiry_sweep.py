"""Tests for vaultmark.lifecycle.sweep — ExpirySweeper."""
from __future__ import annotations

import datetime
import shutil
from collections.abc import Iterator
from pathlib import Path

import pytest

from vaultmark.audit.log import AuditAction, AuditLog
from vaultmark.credentials.grants import GrantArea
from vaultmark.credentials.models import Credential, CredentialKind, CredentialStatus
from vaultmark.credentials.store import CredentialStore
from vaultmark.database import Database
from vaultmark.lifecycle.sweep import ExpirySweeper

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
def store(db: Database) -> CredentialStore:
    return CredentialStore(db)


@pytest.fixture()
def audit(db: Database) -> AuditLog:
    return AuditLog(db)


@pytest.fixture()
def grants(tmp_path: Path) -> GrantArea:
    return GrantArea(tmp_path / "grants")


@pytest.fixture()
def sweeper(db: Database, store: CredentialStore, audit: AuditLog, grants: GrantArea) -> ExpirySweeper:
    return ExpirySweeper(db, store, audit, grants)


def _issue(store: CredentialStore, grants: GrantArea, credential_id: str, ttl_seconds: int) -> Credential:
    grant_dir = grants.create(credential_id)
    (grant_dir / "id_ed25519").write_text("private")
    credential = Credential(
        id=credential_id,
        kind=CredentialKind.CERTIFICATE,
        serial=store.allocate_serial(),
        status=CredentialStatus.ACTIVE,
        created_at=NOW,
        expires_at=NOW + datetime.timedelta(seconds=ttl_seconds),
        ttl_seconds=ttl_seconds,
    )
    store.insert(credential)
    return credential


def _refuse_rmtree(path: object, *args: object, **kwargs: object) -> None:
    raise PermissionError("read-only filesystem")


# ---------------------------------------------------------------------------
# sweep
# ---------------------------------------------------------------------------


class TestSweep:
    def test_nothing_due(self, sweeper: ExpirySweeper, store: CredentialStore, grants: GrantArea) -> None:
        _issue(store, grants, "live0001", 300)
        assert sweeper.sweep(NOW) == 0

    def test_expires_due_credentials(
        self,
        sweeper: ExpirySweeper,
        store: CredentialStore,
        audit: AuditLog,
        grants: GrantArea,
    ) -> None:
        _issue(store, grants, "short001", 1)
        _issue(store, grants, "long0001", 3600)
        later = NOW + datetime.timedelta(seconds=2)

        assert sweeper.sweep(later) == 1

        expired = store.get("short001")
        assert expired is not None
        assert expired.status is CredentialStatus.EXPIRED
        assert expired.ended_at == later
        assert expired.revoked_at is None
        assert not grants.exists("short001")
        assert grants.exists("long0001")

        entries = audit.query(action=AuditAction.CLEANUP)
        assert [e.credential_id for e in entries] == ["short001"]

    def test_expiry_boundary_is_inclusive(
        self, sweeper: ExpirySweeper, store: CredentialStore, grants: GrantArea
    ) -> None:
        _issue(store, grants, "edge0001", 60)
        assert sweeper.sweep(NOW + datetime.timedelta(seconds=60)) == 1

    def test_idempotent(
        self,
        sweeper: ExpirySweeper,
        store: CredentialStore,
        audit: AuditLog,
        grants: GrantArea,
    ) -> None:
        _issue(store, grants, "short001", 1)
        later = NOW + datetime.timedelta(seconds=5)
        assert sweeper.sweep(later) == 1
        assert sweeper.sweep(later) == 0
        assert audit.count() == 1

    def test_revoked_credentials_untouched(
        self,
        sweeper: ExpirySweeper,
        store: CredentialStore,
        grants: GrantArea,
    ) -> None:
        _issue(store, grants, "gone0001", 1)
        store.transition("gone0001", CredentialStatus.REVOKED, NOW)
        assert sweeper.sweep(NOW + datetime.timedelta(seconds=5)) == 0
        stored = store.get("gone0001")
        assert stored is not None
        assert stored.status is CredentialStatus.REVOKED

    def test_destroy_failure_does_not_block_transition(
        self,
        sweeper: ExpirySweeper,
        store: CredentialStore,
        grants: GrantArea,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        _issue(store, grants, "stuck001", 1)

        monkeypatch.setattr(shutil, "rmtree", _refuse_rmtree)
        with caplog.at_level("WARNING"):
            assert sweeper.sweep(NOW + datetime.timedelta(seconds=5)) == 1

        stored = store.get("stuck001")
        assert stored is not None
        assert stored.status is CredentialStatus.EXPIRED
        assert grants.exists("stuck001")
        assert "will retry" in caplog.text

    def test_leftover_material_retried_on_next_sweep(
        self,
        sweeper: ExpirySweeper,
        store: CredentialStore,
        grants: GrantArea,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        _issue(store, grants, "stuck001", 1)
        with monkeypatch.context() as patch:
            patch.setattr(shutil, "rmtree", _refuse_rmtree)
            sweeper.sweep(NOW + datetime.timedelta(seconds=5))
        assert grants.exists("stuck001")

        assert sweeper.sweep(NOW + datetime.timedelta(seconds=10)) == 0
        assert not grants.exists("stuck001")

    def test_orphan_directory_without_record_kept(
        self, sweeper: ExpirySweeper, grants: GrantArea
    ) -> None:
        grants.create("inflight")
        sweeper.sweep(NOW)
        assert grants.exists("inflight")
