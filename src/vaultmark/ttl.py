"""Duration parsing and formatting for credential lifetimes.

TTLs are written as an integer followed by a unit: ``30s``, ``5m``,
``1h`` or ``1d``. Plain integers are taken as seconds.
"""
from __future__ import annotations

import datetime
import re

_TTL_PATTERN = re.compile(r"^(\d+)(s|m|h|d)$")

_MULTIPLIERS: dict[str, int] = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}


def parse_ttl(ttl: str | int) -> int:
    """Convert a TTL expression to seconds.

    Parameters
    ----------
    ttl:
        Either a non-negative integer number of seconds or a duration
        string such as ``"5m"``.

    Returns
    -------
    int
        The duration in seconds.

    Raises
    ------
    ValueError
        If *ttl* is negative or not in a recognised format.
    """
    if isinstance(ttl, bool):
        raise ValueError(f"Invalid TTL: {ttl!r}")
    if isinstance(ttl, int):
        if ttl < 0:
            raise ValueError(f"TTL must not be negative, got {ttl}")
        return ttl

    match = _TTL_PATTERN.match(ttl.strip())
    if match is None:
        raise ValueError(
            f"Invalid TTL format: {ttl!r}. Use format like 30s, 5m, 1h, 1d"
        )
    return int(match.group(1)) * _MULTIPLIERS[match.group(2)]


def format_duration(seconds: int) -> str:
    """Render *seconds* compactly, e.g. ``1h30m`` or ``45s``."""
    if seconds < 0:
        return "expired"

    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)

    parts: list[str] = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return "".join(parts)


def remaining_seconds(
    expires_at: datetime.datetime, now: datetime.datetime | None = None
) -> int:
    """Return whole seconds left until *expires_at*, never below zero."""
    current = now or utcnow()
    return max(0, int((expires_at - current).total_seconds()))


def format_relative(
    expires_at: datetime.datetime, now: datetime.datetime | None = None
) -> str:
    """Return ``"<duration> remaining"`` or ``"expired"``."""
    remaining = remaining_seconds(expires_at, now)
    if remaining <= 0:
        return "expired"
    return f"{format_duration(remaining)} remaining"


def utcnow() -> datetime.datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)
