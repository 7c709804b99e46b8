"""Append-only audit trail of credential lifecycle events."""
from __future__ import annotations

from vaultmark.audit.log import AuditAction, AuditEntry, AuditLog

__all__ = ["AuditAction", "AuditEntry", "AuditLog"]
