from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_timezone_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (SQLite drops tzinfo) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
