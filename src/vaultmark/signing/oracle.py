"""Signing oracle — the capability that mints certificates.

The lifecycle engine never builds certificates itself. It hands an
unlocked CA key and a validated :class:`SigningRequest` to a
:class:`SigningOracle` and records whatever artifact comes back.
"""
from __future__ import annotations

import datetime
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from vaultmark.custody.vault import SigningKeyHandle


@dataclass(frozen=True)
class EphemeralKeyPair:
    """Key pair generated for a single credential.

    Parameters
    ----------
    key_path:
        Private key file.
    public_key_path:
        Public key file submitted for signing.
    """

    key_path: Path
    public_key_path: Path


@dataclass(frozen=True)
class SigningRequest:
    """Validated parameters for one certificate.

    Parameters
    ----------
    public_key_path:
        Subject public key to certify.
    serial:
        Serial number to burn into the certificate.
    principals:
        Principals (remote users) the certificate is valid for.
    valid_after:
        Start of the validity window.
    valid_before:
        End of the validity window.
    key_id:
        Identity string recorded in the certificate.
    force_command:
        Optional forced command.
    """

    public_key_path: Path
    serial: int
    principals: list[str]
    valid_after: datetime.datetime
    valid_before: datetime.datetime
    key_id: str
    force_command: str | None = None


@dataclass(frozen=True)
class SignedCertificate:
    """Certificate artifact returned by the oracle."""

    cert_path: Path
    serial: int
    principals: list[str] = field(default_factory=list)
    valid_after: datetime.datetime | None = None
    valid_before: datetime.datetime | None = None
    force_command: str | None = None


class SigningOracle(ABC):
    """Abstract certificate-minting capability."""

    @abstractmethod
    def generate_keypair(self, directory: Path) -> EphemeralKeyPair:
        """Create a fresh key pair inside *directory*.

        Raises
        ------
        SigningFailed
            If the key pair could not be produced.
        """

    @abstractmethod
    def sign(self, signing_key: SigningKeyHandle, request: SigningRequest) -> SignedCertificate:
        """Sign the request's public key with the CA key.

        Raises
        ------
        SigningFailed
            If the certificate could not be produced.
        """
