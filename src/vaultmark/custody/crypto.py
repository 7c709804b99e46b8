"""Passphrase-based encryption of key material at rest.

Keys are derived with scrypt (memory-hard, salted) and data is sealed
with AES-256-GCM. Blob layout::

    nonce (12 bytes) || ciphertext || tag (16 bytes)

Decryption with a wrong passphrase or a tampered blob fails with
:class:`~vaultmark.errors.AuthenticationFailed`; it never returns
unauthenticated plaintext.
"""
from __future__ import annotations

import os
from types import TracebackType

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from vaultmark.errors import AuthenticationFailed

KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16
SALT_LENGTH = 32
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


class SecretBuffer:
    """Mutable byte buffer that is overwritten with zeros when wiped.

    Use as a context manager to guarantee the wipe on every exit path::

        with SecretBuffer(raw) as secret:
            use(secret.view())

    Only the buffer's own bytearray is zeroed. A ``bytes`` source, the
    plaintext returned by :meth:`AESGCM.decrypt` and any ``bytes`` copy
    handed to a ``cryptography`` API are immutable; they are released by
    the garbage collector and never overwritten. The same holds for the
    key parsed by :meth:`SigningKeyHandle.private_key`, which lives inside
    OpenSSL until the object is collected.
    """

    __slots__ = ("_data",)

    def __init__(self, data: bytes | bytearray) -> None:
        self._data = bytearray(data)
        if isinstance(data, bytearray):
            data[:] = b"\x00" * len(data)

    def view(self) -> memoryview:
        """Return a read-only view of the secret bytes."""
        return memoryview(self._data).toreadonly()

    def wipe(self) -> None:
        """Overwrite every byte with zero."""
        for index in range(len(self._data)):
            self._data[index] = 0

    @property
    def is_wiped(self) -> bool:
        return not any(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __enter__(self) -> "SecretBuffer":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.wipe()

    def __repr__(self) -> str:
        return f"SecretBuffer(<{len(self._data)} bytes>)"


def generate_salt() -> bytes:
    return os.urandom(SALT_LENGTH)


def derive_key(passphrase: str, salt: bytes) -> SecretBuffer:
    """Derive a 256-bit key from *passphrase* and *salt* with scrypt.

    The same passphrase and salt always yield the same key.
    """
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return SecretBuffer(kdf.derive(passphrase.encode("utf-8")))


def encrypt(data: bytes | bytearray | memoryview, passphrase: str, salt: bytes) -> bytes:
    """Encrypt *data* under a key derived from *passphrase* and *salt*."""
    nonce = os.urandom(NONCE_LENGTH)
    with derive_key(passphrase, salt) as key:
        sealed = AESGCM(bytes(key.view())).encrypt(nonce, bytes(data), None)
    return nonce + sealed


def decrypt(blob: bytes, passphrase: str, salt: bytes) -> SecretBuffer:
    """Decrypt a blob produced by :func:`encrypt`.

    Returns
    -------
    SecretBuffer
        The plaintext; the caller owns it and must wipe it.

    Raises
    ------
    AuthenticationFailed
        If the blob is truncated, tampered with, or the passphrase is wrong.
    """
    if len(blob) < NONCE_LENGTH + TAG_LENGTH:
        raise AuthenticationFailed("encrypted key material is truncated")

    nonce, sealed = blob[:NONCE_LENGTH], blob[NONCE_LENGTH:]
    with derive_key(passphrase, salt) as key:
        try:
            plaintext = AESGCM(bytes(key.view())).decrypt(nonce, sealed, None)
        except InvalidTag:
            raise AuthenticationFailed() from None
    return SecretBuffer(plaintext)
