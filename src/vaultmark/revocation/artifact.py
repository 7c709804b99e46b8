"""Revocation artifact — the persisted list of revoked serials.

The artifact is a small text file consumed by whatever checks
certificates at use time::

    vaultmark-krl v1
    17:5c3a1f0e
    23:9b0d44a1

Each record is ``<serial>:<crc32 of the serial, hex>`` terminated by a
newline. Revocations are appended one record at a time. Before appending,
the existing content is validated; if it is empty, truncated mid-record
or otherwise inconsistent, the file is recreated from scratch holding only
the serial being revoked. Serials that were recorded solely in the damaged
file are not recovered by that path; :meth:`RevocationArtifact.rebuild`
regenerates the full list from an authoritative source instead.

All writers hold an exclusive ``flock`` on a sidecar ``.lock`` file, so a
second revocation never works from a stale view of the first.
"""
from __future__ import annotations

import contextlib
import fcntl
import logging
import os
import tempfile
import zlib
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path

from vaultmark.errors import RevocationError
from vaultmark.signing.openssh import load_certificate

logger = logging.getLogger(__name__)

HEADER = b"vaultmark-krl v1\n"


def _record(serial: int) -> bytes:
    text = str(serial).encode("ascii")
    return text + b":" + f"{zlib.crc32(text):08x}".encode("ascii") + b"\n"


def _parse_record(line: bytes) -> int | None:
    """Return the serial of a well-formed record line, else None."""
    serial_text, sep, checksum = line.partition(b":")
    if not sep or not serial_text.isdigit():
        return None
    if checksum != f"{zlib.crc32(serial_text):08x}".encode("ascii"):
        return None
    return int(serial_text)


def parse_artifact(data: bytes) -> tuple[set[int], bool]:
    """Decode artifact bytes.

    Returns
    -------
    tuple[set[int], bool]
        Serials from every well-formed record, and whether the whole
        artifact is consistent (header present, every line valid, ends
        with a newline).
    """
    if not data.startswith(HEADER):
        return set(), False

    *lines, tail = data[len(HEADER):].split(b"\n")
    # A non-empty tail is a record cut off before its newline.
    consistent = tail == b""
    serials: set[int] = set()
    for line in lines:
        serial = _parse_record(line)
        if serial is None:
            consistent = False
            continue
        serials.add(serial)
    return serials, consistent


class RevocationArtifact:
    """File-backed, lock-serialised set of revoked serials.

    Parameters
    ----------
    path:
        Location of the artifact file.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock_path = path.with_name(path.name + ".lock")

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Create a zero-length placeholder if no artifact exists yet."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._locked(fcntl.LOCK_EX):
            if not self._path.exists():
                self._path.write_bytes(b"")

    def revoke(self, serial: int, certificate: bytes | None = None) -> None:
        """Record *serial* as revoked.

        Parameters
        ----------
        serial:
            Serial number of the certificate.
        certificate:
            Optional OpenSSH certificate bytes; if it parses, its embedded
            serial must equal *serial*.

        Raises
        ------
        ValueError
            If *serial* is negative or does not match *certificate*.
        RevocationError
            If the artifact could neither be updated nor rebuilt.
        """
        if serial < 0:
            raise ValueError(f"serial must be non-negative, got {serial}")
        if certificate is not None:
            try:
                embedded = load_certificate(certificate).serial
            except ValueError as exc:
                logger.warning("Unreadable certificate for serial %d: %s", serial, exc)
                embedded = serial
            if embedded != serial:
                raise ValueError(
                    f"certificate serial {embedded} does not match {serial}"
                )

        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._locked(fcntl.LOCK_EX):
            data = self._path.read_bytes() if self._path.exists() else b""
            serials, consistent = parse_artifact(data)

            if consistent:
                if serial in serials:
                    return
                try:
                    self._append(_record(serial))
                    logger.info("Added serial %d to revocation artifact", serial)
                    return
                except OSError as exc:
                    logger.warning(
                        "Incremental update of %s failed (%s); recreating it", self._path, exc
                    )
            elif data:
                logger.warning(
                    "Revocation artifact %s is inconsistent; recreating it with serial %d only",
                    self._path,
                    serial,
                )

            self._replace([serial])
            logger.info("Created revocation artifact %s with serial %d", self._path, serial)

    def rebuild(self, serials: Iterable[int] | Callable[[], Iterable[int]]) -> int:
        """Regenerate the artifact from an authoritative set of serials.

        Parameters
        ----------
        serials:
            The serials to write, or a callable returning them. A callable
            is evaluated while the exclusive lock is held, so no revocation
            can append between reading the source and replacing the file.

        Returns
        -------
        int
            Number of serials written.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._locked(fcntl.LOCK_EX):
            unique = sorted(set(serials() if callable(serials) else serials))
            self._replace(unique)
        logger.info("Rebuilt revocation artifact %s with %d serial(s)", self._path, len(unique))
        return len(unique)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def is_revoked(self, serial: int) -> bool:
        """Return True if *serial* is recorded in the persisted artifact."""
        return serial in self.revoked_serials()

    def revoked_serials(self) -> frozenset[int]:
        """Return every serial readable from the persisted artifact."""
        if not self._path.exists():
            return frozenset()
        with self._locked(fcntl.LOCK_SH):
            serials, _ = parse_artifact(self._path.read_bytes())
        return frozenset(serials)

    def is_consistent(self) -> bool:
        """Return True if the artifact exists and passes validation."""
        if not self._path.exists():
            return False
        with self._locked(fcntl.LOCK_SH):
            _, consistent = parse_artifact(self._path.read_bytes())
        return consistent

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def _locked(self, mode: int) -> Iterator[None]:
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._lock_path, "a+b") as lock_file:
            fcntl.flock(lock_file.fileno(), mode)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _append(self, record: bytes) -> None:
        with open(self._path, "ab") as fh:
            fh.write(record)
            fh.flush()
            os.fsync(fh.fileno())

    def _replace(self, serials: list[int]) -> None:
        content = HEADER + b"".join(_record(serial) for serial in serials)
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", dir=self._path.parent
            )
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(content)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.chmod(tmp_name, 0o644)
                os.replace(tmp_name, self._path)
            except BaseException:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise RevocationError(
                f"Could not rebuild revocation artifact {self._path}: {exc}"
            ) from exc
