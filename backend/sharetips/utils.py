"""
backend/sharetips/utils.py

Purpose:
    Clock helpers for the jobs. Every job takes an optional `now` and
    falls back to `utcnow()`; Mongo hands datetimes back naive, so values
    read from a document go through `ensure_utc()` before being compared
    with `now`.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Aware UTC now, the default `now` of every job run."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Treat a naive datetime read back from Mongo as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt
