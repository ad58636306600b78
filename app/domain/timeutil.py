from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive values; everything we store is UTC
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def occurrence_key(occurrence_date: Optional[datetime]) -> str:
    """Comparable, non-null key for an occurrence ('' = the single non-recurring occurrence)."""
    if occurrence_date is None:
        return ""
    return as_utc(occurrence_date).strftime("%Y-%m-%dT%H:%M:%SZ")
