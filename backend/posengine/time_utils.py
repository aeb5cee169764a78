# Overview: UTC time helpers shared by models, services and routes.

"""
All timestamps are stored and compared as naive UTC.

SQLite hands back naive datetimes while PostgreSQL hands back aware ones
for timezone=True columns, so anything compared against `utcnow()` goes
through `to_naive_utc` first.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


WINDOW_NOT_STARTED = "not_started"
WINDOW_EXPIRED = "expired"


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Aware -> converted to UTC and stripped; naive is assumed to be UTC already."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def window_status(now: datetime, starts_at: Optional[datetime], expires_at: Optional[datetime]) -> Optional[str]:
    """
    Where `now` falls relative to an optional [starts_at, expires_at] window.

    Returns WINDOW_NOT_STARTED, WINDOW_EXPIRED, or None when inside.
    Both bounds are inclusive.
    """
    now = to_naive_utc(now)
    starts_at = to_naive_utc(starts_at)
    expires_at = to_naive_utc(expires_at)

    if starts_at is not None and now < starts_at:
        return WINDOW_NOT_STARTED
    if expires_at is not None and now > expires_at:
        return WINDOW_EXPIRED
    return None


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Query-string datetime -> naive UTC.

    Accepts a bare date (midnight UTC), a naive datetime (taken as UTC), or
    an offset / trailing Z. Empty input is None; anything else unparseable
    raises ValueError for the caller to turn into a 400.
    """
    if value is None or not value.strip():
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(text))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with a trailing Z, seconds precision."""
    if dt is None:
        return None
    aware = dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)
    return aware.replace(microsecond=0).isoformat().replace("+00:00", "Z")
