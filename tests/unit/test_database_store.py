"""Tests for vaultmark.database and vaultmark.credentials.store."""
from __future__ import annotations

import datetime
import threading
from collections.abc import Iterator
from pathlib import Path

import pytest

from vaultmark.credentials.models import Credential, CredentialKind, CredentialStatus
from vaultmark.credentials.store import CredentialStore
from vaultmark.database import (
    Database,
    format_timestamp,
    parse_required_timestamp,
    parse_timestamp,
)
from vaultmark.errors import DuplicateId, InvalidTransition, NotFound

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


def _make(
    store: CredentialStore,
    credential_id: str,
    kind: CredentialKind = CredentialKind.CERTIFICATE,
    created_at: datetime.datetime = NOW,
    ttl_seconds: int = 300,
    host: str = "",
) -> Credential:
    credential = Credential(
        id=credential_id,
        kind=kind,
        serial=store.allocate_serial(),
        status=CredentialStatus.ACTIVE,
        created_at=created_at,
        expires_at=created_at + datetime.timedelta(seconds=ttl_seconds),
        ttl_seconds=ttl_seconds,
        host=host,
    )
    store.insert(credential)
    return credential


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class TestDatabase:
    def test_timestamps_round_trip(self) -> None:
        assert parse_timestamp(format_timestamp(NOW)) == NOW

    def test_naive_timestamp_rejected(self) -> None:
        with pytest.raises(ValueError):
            format_timestamp(datetime.datetime(2024, 1, 1))

    def test_parse_none(self) -> None:
        assert parse_timestamp(None) is None

    def test_required_timestamp_missing(self) -> None:
        with pytest.raises(ValueError, match="created_at"):
            parse_required_timestamp(None, "created_at")

    def test_required_timestamp_present(self) -> None:
        assert parse_required_timestamp(format_timestamp(NOW), "created_at") == NOW

    def test_transaction_rolls_back_on_error(self, db: Database, store: CredentialStore) -> None:
        with pytest.raises(RuntimeError):
            with db.transaction():
                _make(store, "aaaa0001")
                raise RuntimeError("boom")
        assert store.get("aaaa0001") is None

    def test_nested_transaction_joins_outer(self, db: Database, store: CredentialStore) -> None:
        with pytest.raises(RuntimeError):
            with db.transaction():
                with db.transaction():
                    _make(store, "aaaa0002")
                raise RuntimeError("boom")
        assert store.get("aaaa0002") is None

    def test_in_memory_database(self) -> None:
        database = Database(":memory:")
        try:
            assert CredentialStore(database).allocate_serial() == 1
        finally:
            database.close()


# ---------------------------------------------------------------------------
# Serial allocation
# ---------------------------------------------------------------------------


class TestSerialAllocation:
    def test_strictly_increasing(self, store: CredentialStore) -> None:
        serials = [store.allocate_serial() for _ in range(5)]
        assert serials == sorted(serials)
        assert len(set(serials)) == 5

    def test_persists_across_connections(self, tmp_path: Path) -> None:
        path = tmp_path / "credentials.db"
        first = Database(path)
        last = CredentialStore(first).allocate_serial()
        first.close()

        second = Database(path)
        try:
            assert CredentialStore(second).allocate_serial() == last + 1
        finally:
            second.close()

    def test_concurrent_allocation_unique(self, tmp_path: Path) -> None:
        path = tmp_path / "credentials.db"
        Database(path).close()
        results: list[int] = []
        lock = threading.Lock()

        def worker() -> None:
            database = Database(path)
            local_store = CredentialStore(database)
            try:
                for _ in range(10):
                    serial = local_store.allocate_serial()
                    with lock:
                        results.append(serial)
            finally:
                database.close()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 40
        assert len(set(results)) == 40


# ---------------------------------------------------------------------------
# Insert / get / list
# ---------------------------------------------------------------------------


class TestCredentialStore:
    def test_insert_and_get(self, store: CredentialStore) -> None:
        created = _make(store, "abcd0001", host="db01")
        assert store.get("abcd0001") == created

    def test_get_unknown_returns_none(self, store: CredentialStore) -> None:
        assert store.get("missing") is None

    def test_duplicate_id_rejected(self, store: CredentialStore) -> None:
        _make(store, "abcd0001")
        with pytest.raises(DuplicateId):
            _make(store, "abcd0001")

    def test_list_newest_first_active_only(self, store: CredentialStore) -> None:
        _make(store, "old00001", created_at=NOW)
        _make(store, "new00001", created_at=NOW + datetime.timedelta(minutes=1))
        _make(store, "gone0001", created_at=NOW + datetime.timedelta(minutes=2))
        store.transition("gone0001", CredentialStatus.REVOKED, NOW)

        assert [c.id for c in store.list()] == ["new00001", "old00001"]
        assert [c.id for c in store.list(include_terminal=True)] == [
            "gone0001",
            "new00001",
            "old00001",
        ]

    def test_list_filters(self, store: CredentialStore) -> None:
        _make(store, "cert0001", host="db01")
        _make(store, "cert0002", host="web01")
        _make(store, "pass0001", kind=CredentialKind.PASSWORD)

        assert [c.id for c in store.list(kind=CredentialKind.PASSWORD)] == ["pass0001"]
        assert [c.id for c in store.list(host="db01")] == ["cert0001"]

    def test_list_status_filter_overrides_terminal_flag(self, store: CredentialStore) -> None:
        _make(store, "abcd0001")
        store.transition("abcd0001", CredentialStatus.EXPIRED, NOW)
        assert [c.id for c in store.list(status=CredentialStatus.EXPIRED)] == ["abcd0001"]

    def test_expired_active_as_of(self, store: CredentialStore) -> None:
        _make(store, "short001", ttl_seconds=60)
        _make(store, "long0001", ttl_seconds=3600)
        due = store.expired_active_as_of(NOW + datetime.timedelta(seconds=60))
        assert [c.id for c in due] == ["short001"]

    def test_counts(self, store: CredentialStore) -> None:
        _make(store, "abcd0001")
        _make(store, "abcd0002")
        store.transition("abcd0002", CredentialStatus.REVOKED, NOW)
        counts = store.counts()
        assert counts[CredentialStatus.ACTIVE] == 1
        assert counts[CredentialStatus.REVOKED] == 1
        assert counts[CredentialStatus.EXPIRED] == 0

    def test_revoked_serials_by_kind(self, store: CredentialStore) -> None:
        cert = _make(store, "cert0001")
        password = _make(store, "pass0001", kind=CredentialKind.PASSWORD)
        store.transition(cert.id, CredentialStatus.REVOKED, NOW)
        store.transition(password.id, CredentialStatus.REVOKED, NOW)

        assert store.revoked_serials() == [cert.serial, password.serial]
        assert store.revoked_serials(kind=CredentialKind.CERTIFICATE) == [cert.serial]


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


class TestTransition:
    def test_revoke_persists(self, store: CredentialStore) -> None:
        _make(store, "abcd0001")
        at = NOW + datetime.timedelta(seconds=30)
        updated = store.transition("abcd0001", CredentialStatus.REVOKED, at)

        stored = store.get("abcd0001")
        assert stored == updated
        assert stored is not None
        assert stored.status is CredentialStatus.REVOKED
        assert stored.revoked_at == at

    def test_unknown_id_raises_not_found(self, store: CredentialStore) -> None:
        with pytest.raises(NotFound):
            store.transition("missing", CredentialStatus.REVOKED, NOW)

    def test_not_found_is_a_key_error(self, store: CredentialStore) -> None:
        with pytest.raises(KeyError):
            store.transition("missing", CredentialStatus.REVOKED, NOW)

    def test_second_transition_rejected(self, store: CredentialStore) -> None:
        _make(store, "abcd0001")
        store.transition("abcd0001", CredentialStatus.EXPIRED, NOW)
        with pytest.raises(InvalidTransition):
            store.transition("abcd0001", CredentialStatus.REVOKED, NOW)
        stored = store.get("abcd0001")
        assert stored is not None
        assert stored.status is CredentialStatus.EXPIRED

    def test_stale_view_loses_race(self, tmp_path: Path) -> None:
        path = tmp_path / "credentials.db"
        first_db, second_db = Database(path), Database(path)
        try:
            first, second = CredentialStore(first_db), CredentialStore(second_db)
            _make(first, "race0001")
            first.transition("race0001", CredentialStatus.REVOKED, NOW)
            with pytest.raises(InvalidTransition):
                second.transition("race0001", CredentialStatus.EXPIRED, NOW)
        finally:
            first_db.close()
            second_db.close()
