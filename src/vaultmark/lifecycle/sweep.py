"""Expiry sweep — reconcile stored status with wall-clock time."""
from __future__ import annotations

import datetime
import logging

from vaultmark.audit.log import AuditAction, AuditLog
from vaultmark.credentials.grants import GrantArea
from vaultmark.credentials.models import CredentialStatus
from vaultmark.credentials.store import CredentialStore
from vaultmark.database import Database
from vaultmark.errors import InvalidTransition

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Moves ACTIVE credentials past their expiry to EXPIRED.

    Secret-material deletion is best-effort: a failure is logged and the
    status transition still happens. Leftover directories belonging to
    terminal credentials are retried on every sweep.

    Parameters
    ----------
    db:
        Shared database providing the transaction scope.
    store:
        Credential store.
    audit:
        Audit log receiving one ``cleanup`` entry per transition.
    grants:
        Secret-material area.
    """

    def __init__(
        self,
        db: Database,
        store: CredentialStore,
        audit: AuditLog,
        grants: GrantArea,
    ) -> None:
        self._db = db
        self._store = store
        self._audit = audit
        self._grants = grants

    def sweep(self, now: datetime.datetime) -> int:
        """Expire every overdue ACTIVE credential.

        Parameters
        ----------
        now:
            The reference time; credentials with ``expires_at <= now``
            are expired.

        Returns
        -------
        int
            Number of credentials transitioned by this call.
        """
        count = 0
        for credential in self._store.expired_active_as_of(now):
            self._destroy(credential.id)
            try:
                with self._db.transaction():
                    self._store.transition(credential.id, CredentialStatus.EXPIRED, now)
                    self._audit.append(
                        AuditAction.CLEANUP,
                        credential.id,
                        "Credential expired and cleaned up",
                        timestamp=now,
                    )
            except InvalidTransition:
                # Another sweep or a revocation got there first.
                logger.debug("Credential %s already terminal; skipping", credential.id)
                continue
            count += 1

        self._purge_leftovers()

        if count:
            logger.info("Expired %d credential(s)", count)
        return count

    def _purge_leftovers(self) -> None:
        """Retry deletion for terminal credentials whose material survived."""
        for credential_id in self._grants.list_ids():
            credential = self._store.get(credential_id)
            # Directories without a row may belong to an issuance in flight.
            if credential is None or not credential.status.is_terminal:
                continue
            self._destroy(credential_id)

    def _destroy(self, credential_id: str) -> None:
        try:
            self._grants.destroy(credential_id)
        except OSError as exc:
            logger.warning(
                "Could not remove secret material for %s: %s (will retry on next sweep)",
                credential_id,
                exc,
            )
