"""Custody of the CA signing key: encryption at rest and scoped unlock."""
from __future__ import annotations

from vaultmark.custody.crypto import SecretBuffer, decrypt, derive_key, encrypt, generate_salt
from vaultmark.custody.vault import KeyCustody, SigningKeyHandle

__all__ = [
    "KeyCustody",
    "SecretBuffer",
    "SigningKeyHandle",
    "decrypt",
    "derive_key",
    "encrypt",
    "generate_salt",
]
