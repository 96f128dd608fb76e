"""UTC clock helpers.

All timestamps are timezone-aware UTC, both in memory and as returned by
the `UTCDateTime` column type in `models.py`.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Return `value` as aware UTC; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """Serialize a timestamp as ISO-8601 with an explicit UTC offset."""
    if value is None:
        return None
    return to_utc(value).isoformat()


def parse_isoformat(raw: str) -> datetime:
    return to_utc(datetime.fromisoformat(raw))
