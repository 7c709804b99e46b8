"""Credential records, persistence and secret-material storage."""
from __future__ import annotations

from vaultmark.credentials.grants import GrantArea
from vaultmark.credentials.models import Credential, CredentialKind, CredentialStatus
from vaultmark.credentials.passwords import CHARSETS, generate_password, hash_password
from vaultmark.credentials.store import CredentialStore

__all__ = [
    "CHARSETS",
    "Credential",
    "CredentialKind",
    "CredentialStatus",
    "CredentialStore",
    "GrantArea",
    "generate_password",
    "hash_password",
]
