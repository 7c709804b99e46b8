"""vaultmark — short-lived SSH certificates and one-time passwords.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import vaultmark
>>> vaultmark.__version__
'0.1.0'

Quick start
-----------
::

    from vaultmark import CredentialManager, VaultPaths, initialize_vault

    paths = VaultPaths.default()
    initialize_vault(paths, passphrase="correct horse battery")
    manager = CredentialManager.from_paths(paths)
    cert = manager.issue_certificate("correct horse battery", principal="deploy", ttl="5m")
    manager.revoke(cert.id)
"""
from __future__ import annotations

__version__: str = "0.1.0"

# ------------------------------------------------------------------
# Errors
# ------------------------------------------------------------------
from vaultmark.errors import (
    AlreadyInitialized,
    AuthenticationFailed,
    ConfigError,
    DuplicateId,
    InvalidTransition,
    NotFound,
    NotInitialized,
    PolicyViolation,
    RevocationError,
    SigningFailed,
    VaultMarkError,
)

# ------------------------------------------------------------------
# Configuration
# ------------------------------------------------------------------
from vaultmark.config import Policy, VaultConfig, VaultPaths, load_config, save_config

# ------------------------------------------------------------------
# Credentials and audit
# ------------------------------------------------------------------
from vaultmark.audit.log import AuditAction, AuditEntry, AuditLog
from vaultmark.credentials.grants import GrantArea
from vaultmark.credentials.models import Credential, CredentialKind, CredentialStatus
from vaultmark.credentials.store import CredentialStore
from vaultmark.database import Database

# ------------------------------------------------------------------
# Custody, signing and revocation
# ------------------------------------------------------------------
from vaultmark.custody.vault import KeyCustody, SigningKeyHandle
from vaultmark.revocation.artifact import RevocationArtifact
from vaultmark.signing.openssh import OpenSSHSigningOracle
from vaultmark.signing.oracle import SignedCertificate, SigningOracle, SigningRequest

# ------------------------------------------------------------------
# Lifecycle
# ------------------------------------------------------------------
from vaultmark.lifecycle.manager import CredentialManager, VaultStatus, initialize_vault
from vaultmark.lifecycle.sweep import ExpirySweeper

__all__ = [
    "__version__",
    # errors
    "AlreadyInitialized",
    "AuthenticationFailed",
    "ConfigError",
    "DuplicateId",
    "InvalidTransition",
    "NotFound",
    "NotInitialized",
    "PolicyViolation",
    "RevocationError",
    "SigningFailed",
    "VaultMarkError",
    # configuration
    "Policy",
    "VaultConfig",
    "VaultPaths",
    "load_config",
    "save_config",
    # credentials and audit
    "AuditAction",
    "AuditEntry",
    "AuditLog",
    "Credential",
    "CredentialKind",
    "CredentialStatus",
    "CredentialStore",
    "Database",
    "GrantArea",
    # custody, signing, revocation
    "KeyCustody",
    "OpenSSHSigningOracle",
    "RevocationArtifact",
    "SignedCertificate",
    "SigningKeyHandle",
    "SigningOracle",
    "SigningRequest",
    # lifecycle
    "CredentialManager",
    "ExpirySweeper",
    "VaultStatus",
    "initialize_vault",
]
