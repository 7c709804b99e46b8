"""Credential record and its status state machine.

A credential is created ACTIVE and leaves that state exactly once, either
through expiry or through explicit revocation. Both terminal states are
final.
"""
from __future__ import annotations

import datetime
from dataclasses import dataclass, replace
from enum import Enum

from vaultmark.errors import InvalidTransition


class CredentialKind(str, Enum):
    """Kind of credential; selects which payload fields are populated."""

    CERTIFICATE = "ssh-cert"
    PASSWORD = "password"


class CredentialStatus(str, Enum):
    """Lifecycle status of a credential."""

    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"

    @property
    def is_terminal(self) -> bool:
        return self is not CredentialStatus.ACTIVE

    def transition(self, target: "CredentialStatus", credential_id: str = "") -> "CredentialStatus":
        """Validate a move from this status to *target*.

        Raises
        ------
        InvalidTransition
            If this status is terminal or *target* is not a terminal state.
        """
        if self.is_terminal or not target.is_terminal:
            raise InvalidTransition(credential_id, self.value, target.value)
        return target


@dataclass(frozen=True)
class Credential:
    """A single issued credential.

    Parameters
    ----------
    id:
        Opaque identifier assigned at creation.
    kind:
        Certificate or password.
    serial:
        Unique, strictly increasing serial number.
    status:
        Current lifecycle status.
    created_at:
        UTC issuance time.
    expires_at:
        UTC expiry time, ``created_at + ttl_seconds``.
    ttl_seconds:
        Requested lifetime in seconds.
    revoked_at:
        Set only when the credential is revoked.
    ended_at:
        Time of the terminal transition (expiry sweep or revocation).
    host:
        Target host the certificate was granted for (informational).
    principal:
        Principal (remote user) baked into the certificate.
    label:
        Certificate key id, or the operator label of a password.
    force_command:
        Forced command critical option of the certificate, if any.
    cert_path:
        Path to the signed certificate artifact.
    key_path:
        Path to the ephemeral private key.
    password_hash:
        SHA-256 hex digest of the generated password.
    """

    id: str
    kind: CredentialKind
    serial: int
    status: CredentialStatus
    created_at: datetime.datetime
    expires_at: datetime.datetime
    ttl_seconds: int
    revoked_at: datetime.datetime | None = None
    ended_at: datetime.datetime | None = None
    host: str = ""
    principal: str = ""
    label: str = ""
    force_command: str | None = None
    cert_path: str | None = None
    key_path: str | None = None
    password_hash: str | None = None

    def with_status(
        self, status: CredentialStatus, timestamp: datetime.datetime
    ) -> "Credential":
        """Return a copy moved to *status*, enforcing the state machine."""
        new_status = self.status.transition(status, self.id)
        return replace(
            self,
            status=new_status,
            ended_at=timestamp,
            revoked_at=timestamp if new_status is CredentialStatus.REVOKED else None,
        )

    def is_expired(self, now: datetime.datetime) -> bool:
        return self.expires_at <= now

    def remaining_seconds(self, now: datetime.datetime) -> int:
        return max(0, int((self.expires_at - now).total_seconds()))

    def to_dict(self) -> dict[str, object]:
        """Serialize to a plain dictionary suitable for JSON encoding."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "serial": self.serial,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "ttl_seconds": self.ttl_seconds,
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "host": self.host,
            "principal": self.principal,
            "label": self.label,
            "force_command": self.force_command,
            "cert_path": self.cert_path,
            "key_path": self.key_path,
            "password_hash": self.password_hash,
        }
