"""OpenSSH user-certificate oracle built on ``cryptography``.

Produces the same file set as ``ssh-keygen``::

    id_ed25519            ephemeral private key (0600)
    id_ed25519.pub        ephemeral public key
    id_ed25519-cert.pub   CA-signed user certificate
"""
from __future__ import annotations

import datetime
import logging
import os
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    SSHCertificate,
    SSHCertificateBuilder,
    SSHCertificateType,
    load_ssh_public_identity,
    load_ssh_public_key,
)

from vaultmark.custody.vault import SigningKeyHandle
from vaultmark.errors import SigningFailed
from vaultmark.signing.oracle import (
    EphemeralKeyPair,
    SignedCertificate,
    SigningOracle,
    SigningRequest,
)

logger = logging.getLogger(__name__)

KEY_FILENAME = "id_ed25519"

# Default extensions granted by ssh-keygen, in wire order.
DEFAULT_EXTENSIONS: tuple[bytes, ...] = (
    b"permit-X11-forwarding",
    b"permit-agent-forwarding",
    b"permit-port-forwarding",
    b"permit-pty",
    b"permit-user-rc",
)


class OpenSSHSigningOracle(SigningOracle):
    """Issue Ed25519 OpenSSH user certificates."""

    def generate_keypair(self, directory: Path) -> EphemeralKeyPair:
        key_path = directory / KEY_FILENAME
        public_key_path = directory / f"{KEY_FILENAME}.pub"

        try:
            directory.mkdir(parents=True, exist_ok=True, mode=0o700)
            key = Ed25519PrivateKey.generate()
            fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as fh:
                fh.write(key.private_bytes(Encoding.PEM, PrivateFormat.OpenSSH, NoEncryption()))
            public_key_path.write_bytes(
                key.public_key().public_bytes(Encoding.OpenSSH, PublicFormat.OpenSSH) + b"\n"
            )
        except OSError as exc:
            raise SigningFailed(f"could not write key pair to {directory}: {exc}") from exc

        return EphemeralKeyPair(key_path=key_path, public_key_path=public_key_path)

    def sign(self, signing_key: SigningKeyHandle, request: SigningRequest) -> SignedCertificate:
        cert_path = _cert_path_for(request.public_key_path)
        try:
            subject = load_ssh_public_key(request.public_key_path.read_bytes())
            builder = (
                SSHCertificateBuilder()
                .public_key(subject)  # type: ignore[arg-type]
                .serial(request.serial)
                .type(SSHCertificateType.USER)
                .key_id(request.key_id.encode("utf-8"))
                .valid_principals([p.encode("utf-8") for p in request.principals])
                .valid_after(int(request.valid_after.timestamp()))
                .valid_before(int(request.valid_before.timestamp()))
            )
            if request.force_command:
                builder = builder.add_critical_option(
                    b"force-command", request.force_command.encode("utf-8")
                )
            for extension in DEFAULT_EXTENSIONS:
                builder = builder.add_extension(extension, b"")

            certificate = builder.sign(signing_key.private_key())
            cert_path.write_bytes(certificate.public_bytes() + b"\n")
        except SigningFailed:
            raise
        except (OSError, ValueError, TypeError) as exc:
            raise SigningFailed(str(exc)) from exc

        logger.debug(
            "Signed certificate serial=%d principals=%s", request.serial, request.principals
        )
        return SignedCertificate(
            cert_path=cert_path,
            serial=request.serial,
            principals=list(request.principals),
            valid_after=request.valid_after,
            valid_before=request.valid_before,
            force_command=request.force_command,
        )


def load_certificate(data: bytes) -> SSHCertificate:
    """Parse an OpenSSH certificate.

    Raises
    ------
    ValueError
        If *data* is not an OpenSSH certificate.
    """
    try:
        identity = load_ssh_public_identity(data.strip())
    except UnsupportedAlgorithm as exc:
        raise ValueError(str(exc)) from exc
    if not isinstance(identity, SSHCertificate):
        raise ValueError("data is a plain public key, not a certificate")
    return identity


def certificate_window(cert: SSHCertificate) -> tuple[datetime.datetime, datetime.datetime]:
    """Return the certificate's validity window as aware UTC datetimes."""
    return (
        datetime.datetime.fromtimestamp(cert.valid_after, datetime.timezone.utc),
        datetime.datetime.fromtimestamp(cert.valid_before, datetime.timezone.utc),
    )


def _cert_path_for(public_key_path: Path) -> Path:
    name = public_key_path.name
    stem = name[: -len(".pub")] if name.endswith(".pub") else name
    return public_key_path.with_name(f"{stem}-cert.pub")
