"""CredentialManager — issuance, revocation and queries over one vault.

Issuance is all-or-nothing from the caller's point of view: the
credential row and its audit entry commit in one transaction, and any
failure or cancellation before that commit removes the secret material
that was already written to disk.
"""
from __future__ import annotations

import contextlib
import datetime
import logging
import uuid
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path

from vaultmark.audit.log import AuditAction, AuditEntry, AuditLog
from vaultmark.config import Policy, VaultConfig, VaultPaths, load_config, save_config
from vaultmark.credentials.grants import GrantArea
from vaultmark.credentials.models import Credential, CredentialKind, CredentialStatus
from vaultmark.credentials.passwords import generate_password, hash_password
from vaultmark.credentials.store import CredentialStore
from vaultmark.custody.vault import KeyCustody
from vaultmark.database import Database
from vaultmark.errors import NotFound, NotInitialized, PolicyViolation
from vaultmark.lifecycle.sweep import ExpirySweeper
from vaultmark.revocation.artifact import RevocationArtifact
from vaultmark.signing.openssh import OpenSSHSigningOracle
from vaultmark.signing.oracle import SigningOracle, SigningRequest
from vaultmark.ttl import format_duration, parse_ttl, utcnow

logger = logging.getLogger(__name__)

# Certificates become valid slightly in the past to tolerate clock skew.
CLOCK_SKEW = datetime.timedelta(seconds=60)


@dataclass(frozen=True)
class VaultStatus:
    """Snapshot of the vault for status displays."""

    initialized: bool
    counts: dict[CredentialStatus, int]
    revoked_serials: int
    revocation_artifact_present: bool
    max_ttl_seconds: int


class CredentialManager:
    """Lifecycle engine for certificates and one-time passwords.

    Parameters
    ----------
    db:
        Database shared by the store and the audit log.
    custody:
        CA key custody.
    grants:
        Secret-material area.
    revocations:
        Revocation artifact.
    policy:
        TTL and password defaults.
    oracle:
        Certificate-minting capability. Defaults to
        :class:`OpenSSHSigningOracle`.
    clock:
        Returns the current aware UTC time.
    """

    def __init__(
        self,
        db: Database,
        custody: KeyCustody,
        grants: GrantArea,
        revocations: RevocationArtifact,
        policy: Policy | None = None,
        oracle: SigningOracle | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._db = db
        self._custody = custody
        self._grants = grants
        self._revocations = revocations
        self._policy = policy or Policy()
        self._oracle = oracle or OpenSSHSigningOracle()
        self._clock = clock
        self.store = CredentialStore(db)
        self.audit = AuditLog(db)
        self._sweeper = ExpirySweeper(db, self.store, self.audit, grants)

    @classmethod
    def from_paths(
        cls,
        paths: VaultPaths,
        policy: Policy | None = None,
        oracle: SigningOracle | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> "CredentialManager":
        """Open the vault laid out under *paths*.

        The policy is read from ``config.yml`` unless given explicitly.
        """
        paths.ensure_dirs()
        return cls(
            db=Database(paths.db),
            custody=KeyCustody(paths.ca_dir),
            grants=GrantArea(paths.grants_dir),
            revocations=RevocationArtifact(paths.krl),
            policy=policy or load_config(paths).policy,
            oracle=oracle,
            clock=clock,
        )

    @property
    def policy(self) -> Policy:
        return self._policy

    @property
    def custody(self) -> KeyCustody:
        return self._custody

    @property
    def revocations(self) -> RevocationArtifact:
        return self._revocations

    @property
    def grants(self) -> GrantArea:
        return self._grants

    def close(self) -> None:
        self._db.close()

    # ------------------------------------------------------------------
    # CA initialization
    # ------------------------------------------------------------------

    def initialize_ca(self, passphrase: str, key_id: str = "vaultmark-ca", force: bool = False) -> str:
        """Create the CA key, an empty revocation artifact and an ``init`` entry.

        See :meth:`KeyCustody.initialize` for the meaning of *force*.

        Returns
        -------
        str
            The CA public key line.
        """
        public_key = self._custody.initialize(passphrase, key_id, force=force)
        self._revocations.initialize()
        self.audit.append(AuditAction.INIT, None, f"CA initialized with key-id: {key_id}")
        return public_key

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue_certificate(
        self,
        passphrase: str,
        principal: str,
        ttl: str | int | None = None,
        host: str = "",
        force_command: str | None = None,
        identity: str | None = None,
    ) -> Credential:
        """Issue an SSH user certificate for *principal*.

        Parameters
        ----------
        passphrase:
            CA passphrase.
        principal:
            Remote user the certificate is valid for.
        ttl:
            Lifetime (seconds or a duration string); policy default if None.
        host:
            Target host, recorded for listings and connect hints.
        force_command:
            Optional command forced on every login.
        identity:
            Certificate key id; defaults to ``vaultmark-<id>``.

        Raises
        ------
        PolicyViolation
            If *ttl* exceeds the policy maximum.
        NotInitialized
            If the CA has not been initialized.
        AuthenticationFailed
            If *passphrase* is wrong.
        SigningFailed
            If the oracle could not produce a certificate.
        """
        if not principal:
            raise ValueError("principal must not be empty")
        ttl_seconds = self._resolve_ttl(ttl)
        if not self._custody.is_initialized():
            raise NotInitialized()

        self.sweep()

        credential_id = self._new_id()
        key_id = identity or f"vaultmark-{credential_id}"

        with self._custody.unlocked(passphrase) as signing_key:
            serial = self.store.allocate_serial()
            with self._staged(credential_id) as grant_dir:
                keypair = self._oracle.generate_keypair(grant_dir)
                now = self._clock()
                expires_at = now + datetime.timedelta(seconds=ttl_seconds)
                signed = self._oracle.sign(
                    signing_key,
                    SigningRequest(
                        public_key_path=keypair.public_key_path,
                        serial=serial,
                        principals=[principal],
                        valid_after=now - CLOCK_SKEW,
                        valid_before=expires_at,
                        key_id=key_id,
                        force_command=force_command,
                    ),
                )

                credential = Credential(
                    id=credential_id,
                    kind=CredentialKind.CERTIFICATE,
                    serial=serial,
                    status=CredentialStatus.ACTIVE,
                    created_at=now,
                    expires_at=expires_at,
                    ttl_seconds=ttl_seconds,
                    host=host,
                    principal=principal,
                    label=key_id,
                    force_command=force_command,
                    cert_path=str(signed.cert_path),
                    key_path=str(keypair.key_path),
                )
                target = f"{principal}@{host}" if host else principal
                self._commit(
                    credential,
                    AuditAction.GRANT,
                    f"SSH cert for {target} (TTL: {format_duration(ttl_seconds)})",
                )

        logger.info(
            "Issued certificate %s serial=%d principal=%r ttl=%ds",
            credential_id,
            serial,
            principal,
            ttl_seconds,
        )
        return credential

    def issue_password(
        self,
        label: str,
        ttl: str | int | None = None,
        length: int | None = None,
        charset: str | None = None,
    ) -> tuple[Credential, str]:
        """Generate a one-time password.

        Only the SHA-256 hash is stored; the plaintext is returned to the
        caller here and never again.

        Returns
        -------
        tuple[Credential, str]
            The stored credential and the plaintext password.

        Raises
        ------
        PolicyViolation
            If *ttl* exceeds the policy maximum.
        ValueError
            If *length* is not positive or *charset* is unknown.
        """
        ttl_seconds = self._resolve_ttl(ttl)
        password = generate_password(
            length if length is not None else self._policy.password_length,
            charset or self._policy.password_charset,
        )

        self.sweep()

        credential_id = self._new_id()
        serial = self.store.allocate_serial()
        now = self._clock()
        credential = Credential(
            id=credential_id,
            kind=CredentialKind.PASSWORD,
            serial=serial,
            status=CredentialStatus.ACTIVE,
            created_at=now,
            expires_at=now + datetime.timedelta(seconds=ttl_seconds),
            ttl_seconds=ttl_seconds,
            label=label,
            password_hash=hash_password(password),
        )
        self._commit(
            credential,
            AuditAction.PASSWORD,
            f'Password "{label}" (TTL: {format_duration(ttl_seconds)})',
        )
        logger.info("Issued password %s ttl=%ds", credential_id, ttl_seconds)
        return credential, password

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    def revoke(self, credential_id: str) -> Credential:
        """Revoke an ACTIVE credential and destroy its secret material.

        The status change, the audit entry and, for certificates, the
        revocation-artifact record are written before the transaction
        commits; a failure in any of them leaves the credential ACTIVE.

        Raises
        ------
        NotFound
            If *credential_id* is unknown.
        InvalidTransition
            If the credential is already expired or revoked.
        RevocationError
            If the revocation artifact could not be written.
        """
        self.sweep()

        credential = self.store.get(credential_id)
        if credential is None:
            raise NotFound(credential_id)

        now = self._clock()
        with self._db.transaction():
            revoked = self.store.transition(credential_id, CredentialStatus.REVOKED, now)
            self.audit.append(AuditAction.REVOKE, credential_id, "Credential revoked", timestamp=now)
            if credential.kind is CredentialKind.CERTIFICATE:
                self._revocations.revoke(credential.serial, self._read_certificate(credential))

        try:
            self._grants.destroy(credential_id)
        except OSError as exc:
            logger.warning(
                "Could not remove secret material for %s: %s (will retry on next sweep)",
                credential_id,
                exc,
            )

        logger.info("Revoked credential %s serial=%d", credential_id, credential.serial)
        return revoked

    def rebuild_revocations(self) -> int:
        """Regenerate the revocation artifact from REVOKED certificates in the store.

        The database write lock is taken first, then the artifact lock,
        the same order :meth:`revoke` uses. A revocation that has appended
        its serial but not yet committed therefore finishes before the
        store is read, and one that starts later waits for the rebuild.

        Returns
        -------
        int
            Number of serials written.
        """
        with self._db.transaction():
            return self._revocations.rebuild(
                lambda: self.store.revoked_serials(kind=CredentialKind.CERTIFICATE)
            )

    def is_revoked(self, serial: int) -> bool:
        return self._revocations.is_revoked(serial)

    # ------------------------------------------------------------------
    # Sweep and queries
    # ------------------------------------------------------------------

    def sweep(self, now: datetime.datetime | None = None) -> int:
        """Expire overdue credentials; see :class:`ExpirySweeper`."""
        return self._sweeper.sweep(now or self._clock())

    def get(self, credential_id: str) -> Credential | None:
        self.sweep()
        return self.store.get(credential_id)

    def list_credentials(
        self,
        kind: CredentialKind | None = None,
        status: CredentialStatus | None = None,
        host: str | None = None,
        include_terminal: bool = False,
    ) -> list[Credential]:
        self.sweep()
        return self.store.list(
            kind=kind, status=status, host=host, include_terminal=include_terminal
        )

    def audit_entries(
        self,
        limit: int | None = None,
        action: AuditAction | None = None,
        credential_id: str | None = None,
        since: datetime.datetime | None = None,
    ) -> list[AuditEntry]:
        self.sweep()
        return self.audit.query(
            limit=limit, action=action, credential_id=credential_id, since=since
        )

    def status(self) -> VaultStatus:
        self.sweep()
        return VaultStatus(
            initialized=self._custody.is_initialized(),
            counts=self.store.counts(),
            revoked_serials=len(self._revocations.revoked_serials()),
            revocation_artifact_present=self._revocations.path.exists(),
            max_ttl_seconds=self._policy.max_ttl_seconds,
        )

    @staticmethod
    def ssh_command(credential: Credential) -> str:
        """Return an ``ssh`` invocation that uses the credential's key and certificate."""
        target = (
            f"{credential.principal}@{credential.host}" if credential.host else credential.principal
        )
        return (
            f'ssh -i "{credential.key_path}" '
            f'-o CertificateFile="{credential.cert_path}" {target}'
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _resolve_ttl(self, ttl: str | int | None) -> int:
        seconds = parse_ttl(ttl) if ttl is not None else self._policy.default_ttl_seconds
        if seconds <= 0:
            raise ValueError("TTL must be positive")
        if seconds > self._policy.max_ttl_seconds:
            raise PolicyViolation(seconds, self._policy.max_ttl_seconds)
        return seconds

    def _new_id(self) -> str:
        while True:
            candidate = uuid.uuid4().hex[:8]
            if self.store.get(candidate) is None and not self._grants.exists(candidate):
                return candidate

    def _commit(self, credential: Credential, action: AuditAction, details: str) -> None:
        with self._db.transaction():
            self.store.insert(credential)
            self.audit.append(action, credential.id, details, timestamp=credential.created_at)

    @contextlib.contextmanager
    def _staged(self, credential_id: str) -> Iterator[Path]:
        """Create a grant directory that is removed unless the block completes."""
        grant_dir = self._grants.create(credential_id)
        try:
            yield grant_dir
        except BaseException:
            try:
                self._grants.destroy(credential_id)
            except OSError as exc:
                logger.warning("Could not remove staged material for %s: %s", credential_id, exc)
            raise

    @staticmethod
    def _read_certificate(credential: Credential) -> bytes | None:
        if not credential.cert_path:
            return None
        try:
            with open(credential.cert_path, "rb") as fh:
                return fh.read()
        except OSError as exc:
            logger.warning("Could not read certificate %s: %s", credential.cert_path, exc)
            return None


def initialize_vault(
    paths: VaultPaths,
    passphrase: str,
    key_id: str = "vaultmark-ca",
    force: bool = False,
    policy: Policy | None = None,
) -> str:
    """Set up a vault under *paths*: CA key, config file and revocation artifact.

    Returns
    -------
    str
        The CA public key line.
    """
    paths.ensure_dirs()
    config = load_config(paths) if paths.config.exists() else VaultConfig()
    if policy is not None:
        config = config.model_copy(update={"policy": policy})

    manager = CredentialManager.from_paths(paths, policy=config.policy)
    try:
        public_key = manager.initialize_ca(passphrase, key_id, force=force)
    finally:
        manager.close()

    config = config.model_copy(
        update={"key_id": key_id, "created_at": utcnow().isoformat()}
    )
    save_config(config, paths)
    return public_key
