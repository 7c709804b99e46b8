"""Secret-material area — one directory per credential.

Ephemeral key pairs and signed certificates live under
``<grants_dir>/<credential_id>/``. A directory exists only while its
credential is ACTIVE; revocation and the expiry sweep destroy it.
"""
from __future__ import annotations

import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


class GrantArea:
    """Filesystem area holding per-credential secret material.

    Parameters
    ----------
    base_dir:
        Root directory for grant subdirectories. Created with mode 0700.
    """

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = base_dir
        self._base_dir.mkdir(parents=True, exist_ok=True, mode=0o700)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def path_for(self, credential_id: str) -> Path:
        """Return the directory path for *credential_id*."""
        safe_name = credential_id.replace("/", "_").replace("\\", "_")
        return self._base_dir / safe_name

    def create(self, credential_id: str) -> Path:
        """Create and return an owner-only directory for *credential_id*."""
        grant_dir = self.path_for(credential_id)
        grant_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
        return grant_dir

    def exists(self, credential_id: str) -> bool:
        return self.path_for(credential_id).exists()

    def destroy(self, credential_id: str) -> bool:
        """Recursively delete the directory for *credential_id*.

        Returns
        -------
        bool
            True if a directory was removed, False if none existed.

        Raises
        ------
        OSError
            If the directory exists but could not be removed.
        """
        grant_dir = self.path_for(credential_id)
        if not grant_dir.exists():
            return False
        shutil.rmtree(grant_dir)
        logger.debug("Destroyed secret material in %s", grant_dir)
        return True

    def list_ids(self) -> list[str]:
        """Return sorted ids of every credential that still has a directory."""
        return sorted(d.name for d in self._base_dir.iterdir() if d.is_dir())
