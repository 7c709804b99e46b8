"""Revocation artifact management."""
from __future__ import annotations

from vaultmark.revocation.artifact import HEADER, RevocationArtifact, parse_artifact

__all__ = ["HEADER", "RevocationArtifact", "parse_artifact"]
