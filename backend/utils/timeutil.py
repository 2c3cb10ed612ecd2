"""UTC helpers shared by the store, the job-status guard and log output.

Timestamps are persisted as **naive** UTC datetimes; everything leaving the
process (API payloads, JSON logs) is rendered as ISO-8601 with a ``Z`` suffix.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Return the current UTC time as a naive (tzinfo=None) datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return as_naive_utc(dt).isoformat() + "Z"


def is_older_than(dt: Optional[datetime], window: timedelta, now: Optional[datetime] = None) -> bool:
    """True when ``dt`` is missing or lies further back than ``window``."""
    if dt is None:
        return True
    reference = as_naive_utc(now) if now is not None else utcnow()
    return as_naive_utc(dt) <= reference - window
