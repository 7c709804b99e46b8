"""Certificate signing capability and its OpenSSH implementation."""
from __future__ import annotations

from vaultmark.signing.openssh import OpenSSHSigningOracle, load_certificate
from vaultmark.signing.oracle import (
    EphemeralKeyPair,
    SignedCertificate,
    SigningOracle,
    SigningRequest,
)

__all__ = [
    "EphemeralKeyPair",
    "OpenSSHSigningOracle",
    "SignedCertificate",
    "SigningOracle",
    "SigningRequest",
    "load_certificate",
]
