# Overview: UTC clock helpers shared by grants, sessions, caches and stream events.

"""
Every datetime stored by Cost Compass is UTC without tzinfo. Grants,
delegations and sessions carry an optional expires_at; cache entries
derived from them must not outlive the earliest of those expiries.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    ISO-8601 string -> naive UTC datetime.

    Blank input is None. Offsets (including a trailing "Z") are converted
    to UTC; a string without an offset is taken as UTC already.
    """
    if value is None or not value.strip():
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Second-precision ISO-8601 with a trailing 'Z'; naive input is UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def utc_timestamp_ms(dt: Optional[datetime] = None) -> int:
    """Milliseconds since the epoch (default: now)."""
    dt = dt or utcnow()
    return int(dt.replace(tzinfo=timezone.utc).timestamp() * 1000)


def as_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Drop tzinfo after converting to UTC; some backends return aware values."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """A missing expiry never expires."""
    if expires_at is None:
        return False
    return as_naive_utc(expires_at) <= (now or utcnow())


def earliest_expiry(rows: Iterable) -> Optional[datetime]:
    """Earliest non-null expires_at among rows (None when nothing expires)."""
    expiries = [as_naive_utc(row.expires_at) for row in rows if row.expires_at is not None]
    return min(expiries) if expiries else None


def seconds_until(moment: Optional[datetime], now: datetime) -> Optional[float]:
    """Cache lifetime cap for an expiry; None means uncapped."""
    if moment is None:
        return None
    return (as_naive_utc(moment) - now).total_seconds()
