"""One-time password generation and hashing."""
from __future__ import annotations

import hashlib
import secrets

CHARSETS: dict[str, str] = {
    "alphanumeric": "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789",
    "alpha": "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ",
    "numeric": "0123456789",
    "special": (
        "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
        "!@#$%^&*()-_=+[]{}|;:,.<>?"
    ),
    "hex": "0123456789abcdef",
}


def generate_password(length: int, charset: str = "alphanumeric") -> str:
    """Return a random password drawn from a named character set.

    Uses :func:`secrets.choice`, so every character is chosen uniformly
    from a CSPRNG.

    Raises
    ------
    ValueError
        If *length* is not positive or *charset* is unknown.
    """
    if length < 1:
        raise ValueError(f"length must be positive, got {length}")
    try:
        alphabet = CHARSETS[charset]
    except KeyError:
        raise ValueError(
            f"unknown charset {charset!r}; expected one of {sorted(CHARSETS)}"
        ) from None
    return "".join(secrets.choice(alphabet) for _ in range(length))


def hash_password(password: str) -> str:
    """Return the SHA-256 hex digest of *password*."""
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def available_charsets() -> list[str]:
    return list(CHARSETS)
