from datetime import datetime, timezone
from typing import Optional


def now_utc() -> datetime:
    """Return the current time as an aware UTC datetime.

    Message timestamps are assigned here on insert, so every ordering
    decision in the messaging module is made against server time.
    """
    return datetime.now(timezone.utc)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        # pymongo hands back naive datetimes unless tz_aware=True
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()
