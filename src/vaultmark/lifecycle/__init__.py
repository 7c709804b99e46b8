"""Credential lifecycle: issuance, revocation and expiry."""
from __future__ import annotations

from vaultmark.lifecycle.manager import (
    CLOCK_SKEW,
    CredentialManager,
    VaultStatus,
    initialize_vault,
)
from vaultmark.lifecycle.sweep import ExpirySweeper

__all__ = [
    "CLOCK_SKEW",
    "CredentialManager",
    "ExpirySweeper",
    "VaultStatus",
    "initialize_vault",
]
