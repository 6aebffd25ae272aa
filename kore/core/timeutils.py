"""UTC helpers shared by models and services."""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC now; all persisted timestamps are compared as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """PostgreSQL hands back aware datetimes, SQLite naive ones."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def from_timestamp(ts: float) -> datetime:
    """Naive UTC datetime for a JWT ``exp``/``iat`` value."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)
