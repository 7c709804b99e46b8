"""Typed failures raised by the vaultmark core.

Every error carries a human-readable message naming the violated
constraint, plus an optional list of suggestions the presentation layer
can show to the operator.
"""
from __future__ import annotations


class VaultMarkError(Exception):
    """Base class for all vaultmark errors.

    Parameters
    ----------
    message:
        Description of what went wrong.
    suggestions:
        Optional follow-up actions for the caller.
    """

    def __init__(self, message: str, suggestions: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.suggestions: list[str] = list(suggestions or [])

    def __str__(self) -> str:
        return self.message


class PolicyViolation(VaultMarkError):
    """Raised when a requested TTL exceeds the configured maximum."""

    def __init__(self, ttl_seconds: int, max_ttl_seconds: int) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_ttl_seconds = max_ttl_seconds
        super().__init__(
            f"TTL {ttl_seconds}s exceeds maximum {max_ttl_seconds}s",
            [f"Request a TTL of at most {max_ttl_seconds}s"],
        )


class AuthenticationFailed(VaultMarkError):
    """Raised when the CA passphrase is wrong or the key material is corrupt."""

    def __init__(self, reason: str = "invalid passphrase or corrupted key material") -> None:
        super().__init__(
            f"Could not unlock CA key: {reason}",
            ["Check the passphrase used when the CA was initialized"],
        )


class NotInitialized(VaultMarkError):
    """Raised when no CA key material exists yet."""

    def __init__(self) -> None:
        super().__init__("CA not initialized", ["Run: vaultmark init"])


class AlreadyInitialized(VaultMarkError):
    """Raised when initializing over existing CA key material without force."""

    def __init__(self) -> None:
        super().__init__(
            "CA already initialized",
            [
                "Use --force to reinitialize",
                "WARNING: reinitializing invalidates ALL existing certificates",
            ],
        )


class NotFound(VaultMarkError, KeyError):
    """Raised when a credential id is unknown."""

    def __init__(self, credential_id: str) -> None:
        self.credential_id = credential_id
        super().__init__(
            f"Credential {credential_id!r} not found",
            ["Run: vaultmark list --all"],
        )


class DuplicateId(VaultMarkError):
    """Raised when inserting a credential whose id already exists."""

    def __init__(self, credential_id: str) -> None:
        self.credential_id = credential_id
        super().__init__(f"Credential {credential_id!r} already exists")


class InvalidTransition(VaultMarkError):
    """Raised when a status change starts from a terminal state."""

    def __init__(self, credential_id: str, current: str, target: str) -> None:
        self.credential_id = credential_id
        self.current = current
        self.target = target
        super().__init__(
            f"Credential {credential_id!r} is already {current}; "
            f"cannot transition to {target}"
        )


class SigningFailed(VaultMarkError):
    """Raised when the signing oracle cannot produce a certificate."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Signing failed: {reason}")


class RevocationError(VaultMarkError):
    """Raised when the revocation artifact cannot be updated or rebuilt."""


class ConfigError(VaultMarkError):
    """Raised when the configuration file is unreadable or invalid."""
