"""Tests for vaultmark.config — paths, policy validation and YAML persistence."""
from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from vaultmark.config import Policy, VaultConfig, VaultPaths, load_config, save_config
from vaultmark.errors import ConfigError


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def paths(tmp_path: Path) -> VaultPaths:
    return VaultPaths(tmp_path / "vault")


# ---------------------------------------------------------------------------
# VaultPaths
# ---------------------------------------------------------------------------


class TestVaultPaths:
    def test_layout(self, paths: VaultPaths) -> None:
        assert paths.config == paths.root / "config.yml"
        assert paths.ca_dir == paths.root / "ca"
        assert paths.grant_dir("abc") == paths.root / "grants" / "abc"
        assert paths.db.name == "credentials.db"

    def test_default_honours_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("VAULTMARK_HOME", str(tmp_path / "elsewhere"))
        assert VaultPaths.default().root == tmp_path / "elsewhere"

    def test_default_falls_back_to_home(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("VAULTMARK_HOME", raising=False)
        assert VaultPaths.default().root == Path.home() / ".vaultmark"

    def test_ensure_dirs_owner_only(self, paths: VaultPaths) -> None:
        paths.ensure_dirs()
        assert paths.grants_dir.is_dir()
        assert paths.ca_dir.stat().st_mode & 0o077 == 0


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class TestPolicy:
    def test_defaults(self) -> None:
        policy = Policy()
        assert policy.max_ttl_seconds == 86400
        assert policy.default_ttl_seconds == 3600
        assert policy.password_length == 32

    def test_ttl_alias_accepted(self) -> None:
        assert Policy.model_validate({"ttl": "5m"}).default_ttl_seconds == 300

    def test_invalid_ttl_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Policy(max_ttl="forever")

    def test_unknown_charset_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Policy(password_charset="emoji")

    def test_default_above_max_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Policy(max_ttl="1h", default_ttl="2h")


# ---------------------------------------------------------------------------
# load_config / save_config
# ---------------------------------------------------------------------------


class TestConfigFile:
    def test_missing_file_yields_defaults(self, paths: VaultPaths) -> None:
        config = load_config(paths)
        assert config.key_id == "vaultmark-ca"
        assert config.policy == Policy()

    def test_round_trip(self, paths: VaultPaths) -> None:
        config = VaultConfig(key_id="team-ca", created_at="2024-01-01T00:00:00+00:00",
                             policy=Policy(max_ttl="8h", default_ttl="30m"))
        save_config(config, paths)
        assert load_config(paths) == config

    def test_saved_file_is_private(self, paths: VaultPaths) -> None:
        save_config(VaultConfig(), paths)
        assert paths.config.stat().st_mode & 0o777 == 0o600

    def test_saved_file_uses_ttl_key(self, paths: VaultPaths) -> None:
        save_config(VaultConfig(), paths)
        assert "ttl: 1h" in paths.config.read_text()

    def test_invalid_yaml_raises(self, paths: VaultPaths) -> None:
        paths.ensure_dirs()
        paths.config.write_text("policy: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(paths)

    def test_non_mapping_raises(self, paths: VaultPaths) -> None:
        paths.ensure_dirs()
        paths.config.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(paths)

    def test_invalid_values_raise(self, paths: VaultPaths) -> None:
        paths.ensure_dirs()
        paths.config.write_text("policy:\n  max_ttl: soon\n")
        with pytest.raises(ConfigError) as exc_info:
            load_config(paths)
        assert exc_info.value.suggestions

    def test_empty_file_yields_defaults(self, paths: VaultPaths) -> None:
        paths.ensure_dirs()
        paths.config.write_text("")
        assert load_config(paths) == VaultConfig()
