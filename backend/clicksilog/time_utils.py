from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value) -> Optional[datetime]:
    """
    Parse an ISO-8601 value and normalize to a UTC-naive datetime.

    Accepts datetimes as-is, "" / None -> None, a trailing "Z", and
    explicit offsets (converted to UTC). Naive strings are taken as UTC.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value).strip()
        if not s:
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        dt = datetime.fromisoformat(s)

    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize to ISO-8601 with a trailing 'Z'. Naive values are UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def within_last(dt: Optional[datetime], window: timedelta, now: Optional[datetime] = None) -> bool:
    """True when dt falls inside (now - window, now]."""
    if dt is None:
        return False
    now = now or utcnow()
    return now - window < dt <= now
