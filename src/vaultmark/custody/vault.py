"""KeyCustody — encrypted storage of the CA signing key.

The CA is an Ed25519 key pair. The private key is kept only in encrypted
form on disk and is decrypted into a :class:`SigningKeyHandle` for the
duration of a single signing operation.
"""
from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from collections.abc import Iterator
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_ssh_private_key,
)

from vaultmark.custody.crypto import SecretBuffer, decrypt, encrypt, generate_salt
from vaultmark.errors import AlreadyInitialized, AuthenticationFailed, NotInitialized

logger = logging.getLogger(__name__)

MIN_PASSPHRASE_LENGTH = 8


class SigningKeyHandle:
    """Decrypted CA private key, valid until :meth:`KeyCustody.lock`.

    Parameters
    ----------
    key_id:
        Comment stored with the CA public key.
    secret:
        OpenSSH-encoded private key bytes. Ownership moves to the handle.
    """

    def __init__(self, key_id: str, secret: SecretBuffer) -> None:
        self.key_id = key_id
        self._secret = secret

    @property
    def is_locked(self) -> bool:
        return self._secret.is_wiped

    def private_key(self) -> Ed25519PrivateKey:
        """Parse the buffered key for immediate use.

        Raises
        ------
        RuntimeError
            If the handle has already been locked.
        """
        if self.is_locked:
            raise RuntimeError("signing key handle has been locked")
        key = load_ssh_private_key(bytes(self._secret.view()), password=None)
        if not isinstance(key, Ed25519PrivateKey):
            raise AuthenticationFailed("CA key is not an Ed25519 key")
        return key

    def wipe(self) -> None:
        self._secret.wipe()

    def __repr__(self) -> str:
        state = "locked" if self.is_locked else "unlocked"
        return f"SigningKeyHandle(key_id={self.key_id!r}, {state})"


class KeyCustody:
    """Encrypted-at-rest custody of the CA key.

    Parameters
    ----------
    ca_dir:
        Directory holding ``ca_key.enc``, ``ca_key.pub`` and ``ca_key.salt``.
    """

    def __init__(self, ca_dir: Path) -> None:
        self._ca_dir = ca_dir

    @property
    def key_path(self) -> Path:
        return self._ca_dir / "ca_key.enc"

    @property
    def public_key_path(self) -> Path:
        return self._ca_dir / "ca_key.pub"

    @property
    def salt_path(self) -> Path:
        return self._ca_dir / "ca_key.salt"

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def is_initialized(self) -> bool:
        return self.key_path.exists() and self.salt_path.exists()

    def initialize(self, passphrase: str, key_id: str, force: bool = False) -> str:
        """Generate a new CA key pair and store it encrypted.

        Parameters
        ----------
        passphrase:
            Passphrase protecting the private key (at least 8 characters).
        key_id:
            Comment embedded in the public key.
        force:
            Acknowledge replacing existing key material. Every certificate
            issued under the old key stops verifying against the new one.

        Returns
        -------
        str
            The CA public key in OpenSSH format.

        Raises
        ------
        AlreadyInitialized
            If key material exists and *force* is False.
        ValueError
            If the passphrase is too short.
        """
        if len(passphrase) < MIN_PASSPHRASE_LENGTH:
            raise ValueError(
                f"Passphrase must be at least {MIN_PASSPHRASE_LENGTH} characters"
            )
        if self.is_initialized():
            if not force:
                raise AlreadyInitialized()
            logger.warning(
                "Rotating CA key in %s; all previously issued certificates are invalidated",
                self._ca_dir,
            )

        self._ca_dir.mkdir(parents=True, exist_ok=True, mode=0o700)

        ca_key = Ed25519PrivateKey.generate()
        public_line = (
            ca_key.public_key()
            .public_bytes(Encoding.OpenSSH, PublicFormat.OpenSSH)
            .decode("ascii")
            + f" {key_id}"
        )

        salt = generate_salt()
        with SecretBuffer(
            ca_key.private_bytes(Encoding.PEM, PrivateFormat.OpenSSH, NoEncryption())
        ) as private_bytes:
            sealed = encrypt(private_bytes.view(), passphrase, salt)

        _install_private({self.salt_path: salt, self.key_path: sealed})
        self.public_key_path.write_text(public_line + "\n", encoding="utf-8")
        os.chmod(self.public_key_path, 0o644)

        logger.info("Initialized CA key %r in %s", key_id, self._ca_dir)
        return public_line

    # ------------------------------------------------------------------
    # Unlock / lock
    # ------------------------------------------------------------------

    def unlock(self, passphrase: str) -> SigningKeyHandle:
        """Decrypt the CA key into a handle.

        Raises
        ------
        NotInitialized
            If no key material exists.
        AuthenticationFailed
            If the passphrase is wrong or the key material is corrupt.
        """
        if not self.is_initialized():
            raise NotInitialized()

        sealed = self.key_path.read_bytes()
        salt = self.salt_path.read_bytes()
        secret = decrypt(sealed, passphrase, salt)
        return SigningKeyHandle(self._key_id(), secret)

    def lock(self, handle: SigningKeyHandle) -> None:
        """Overwrite the handle's key buffer with zeros."""
        handle.wipe()

    @contextlib.contextmanager
    def unlocked(self, passphrase: str) -> Iterator[SigningKeyHandle]:
        """Scope a decrypted key handle; it is locked on every exit path."""
        handle = self.unlock(passphrase)
        try:
            yield handle
        finally:
            self.lock(handle)

    # ------------------------------------------------------------------
    # Public material
    # ------------------------------------------------------------------

    def public_key(self) -> str:
        """Return the CA public key line.

        Raises
        ------
        NotInitialized
            If the public key file does not exist.
        """
        if not self.public_key_path.exists():
            raise NotInitialized()
        return self.public_key_path.read_text(encoding="utf-8").strip()

    def _key_id(self) -> str:
        if not self.public_key_path.exists():
            return ""
        parts = self.public_key_path.read_text(encoding="utf-8").split(maxsplit=2)
        return parts[2].strip() if len(parts) == 3 else ""


def _stage_private(path: Path, data: bytes) -> Path:
    """Write *data* to an owner-only temp file beside *path* and return it."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp_name, 0o600)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise
    return Path(tmp_name)


def _install_private(files: dict[Path, bytes]) -> None:
    """Replace every target in *files* with its new content.

    All content is staged before the first rename, so a failure while
    writing leaves the previous files untouched.
    """
    staged: list[tuple[Path, Path]] = []
    try:
        for target, data in files.items():
            staged.append((_stage_private(target, data), target))
        for tmp_path, target in staged:
            os.replace(tmp_path, target)
    finally:
        for tmp_path, _ in staged:
            with contextlib.suppress(FileNotFoundError):
                tmp_path.unlink()
