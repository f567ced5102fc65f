from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to a naive datetime; aware values are returned unchanged."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def duration_ms(start: Optional[datetime], end: Optional[datetime]) -> Optional[int]:
    """Milliseconds between ``start`` and ``end`` or ``None`` if either is unknown."""
    if start is None or end is None:
        return None
    return int((as_utc(end) - as_utc(start)).total_seconds() * 1000)
