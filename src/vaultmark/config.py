"""Configuration and on-disk layout.

The vault lives under a single root directory (``~/.vaultmark`` unless
``VAULTMARK_HOME`` or an explicit path says otherwise)::

    config.yml          policy and CA metadata (YAML)
    ca/ca_key.enc       AES-GCM encrypted CA private key
    ca/ca_key.pub       CA public key (OpenSSH format)
    ca/ca_key.salt      scrypt salt
    grants/<id>/        per-credential secret material
    credentials.db      credential store and audit log (SQLite)
    krl                 revocation artifact
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from vaultmark.credentials.passwords import CHARSETS
from vaultmark.errors import ConfigError
from vaultmark.ttl import parse_ttl

HOME_ENV_VAR = "VAULTMARK_HOME"


@dataclass(frozen=True)
class VaultPaths:
    """Filesystem layout of a vault rooted at *root*."""

    root: Path

    @classmethod
    def default(cls) -> "VaultPaths":
        """Resolve the root from ``VAULTMARK_HOME`` or fall back to ``~/.vaultmark``."""
        env_root = os.environ.get(HOME_ENV_VAR)
        if env_root:
            return cls(Path(env_root).expanduser())
        return cls(Path.home() / ".vaultmark")

    @property
    def config(self) -> Path:
        return self.root / "config.yml"

    @property
    def ca_dir(self) -> Path:
        return self.root / "ca"

    @property
    def grants_dir(self) -> Path:
        return self.root / "grants"

    @property
    def db(self) -> Path:
        return self.root / "credentials.db"

    @property
    def krl(self) -> Path:
        return self.root / "krl"

    def grant_dir(self, credential_id: str) -> Path:
        return self.grants_dir / credential_id

    def ensure_dirs(self) -> None:
        """Create the root, CA and grants directories with owner-only access."""
        for directory in (self.root, self.ca_dir, self.grants_dir):
            directory.mkdir(parents=True, exist_ok=True, mode=0o700)


class Policy(BaseModel):
    """Issuance policy handed to the orchestrator as plain values."""

    max_ttl: str = "24h"
    default_ttl: str = Field(default="1h", alias="ttl")
    password_length: int = Field(default=32, ge=1, le=1024)
    password_charset: str = "alphanumeric"

    model_config = {"populate_by_name": True}

    @field_validator("max_ttl", "default_ttl")
    @classmethod
    def _valid_ttl(cls, value: str) -> str:
        parse_ttl(value)
        return value

    @field_validator("password_charset")
    @classmethod
    def _known_charset(cls, value: str) -> str:
        if value not in CHARSETS:
            raise ValueError(
                f"unknown charset {value!r}; expected one of {sorted(CHARSETS)}"
            )
        return value

    @model_validator(mode="after")
    def _default_within_max(self) -> "Policy":
        if parse_ttl(self.default_ttl) > parse_ttl(self.max_ttl):
            raise ValueError(
                f"default ttl {self.default_ttl} exceeds max ttl {self.max_ttl}"
            )
        return self

    @property
    def max_ttl_seconds(self) -> int:
        return parse_ttl(self.max_ttl)

    @property
    def default_ttl_seconds(self) -> int:
        return parse_ttl(self.default_ttl)


class VaultConfig(BaseModel):
    """Top-level contents of ``config.yml``."""

    key_id: str = "vaultmark-ca"
    created_at: str = ""
    policy: Policy = Field(default_factory=Policy)


def load_config(paths: VaultPaths) -> VaultConfig:
    """Read ``config.yml``; a missing file yields the defaults.

    Raises
    ------
    ConfigError
        If the file is not valid YAML or fails validation.
    """
    if not paths.config.exists():
        return VaultConfig()

    try:
        raw = yaml.safe_load(paths.config.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Could not parse {paths.config}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"{paths.config} must contain a mapping")

    try:
        return VaultConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(
            f"Invalid configuration in {paths.config}: {exc}",
            ["Fix or remove the offending keys in config.yml"],
        ) from exc


def save_config(config: VaultConfig, paths: VaultPaths) -> None:
    """Write *config* to ``config.yml`` with owner-only permissions."""
    paths.ensure_dirs()
    payload = config.model_dump(by_alias=True)
    paths.config.write_text(
        yaml.safe_dump(payload, sort_keys=False), encoding="utf-8"
    )
    os.chmod(paths.config, 0o600)
