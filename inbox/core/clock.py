"""
שעון UTC משותף.

SQLite (בבדיקות) מחזיר datetime ללא tzinfo גם לעמודות timezone=True,
ולכן כל השוואת זמנים עוברת דרך as_utc.
"""
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """מנרמל datetime ל-UTC aware. ערך naive נחשב UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
