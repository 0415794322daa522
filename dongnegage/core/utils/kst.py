"""
Korea Standard Time helpers
===========================
Everything is stored in UTC; shop owners type and read times in KST.
"""

from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo

KST = ZoneInfo("Asia/Seoul")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Treats naive datetimes (SQLite round-trips) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_kst_to_utc(value: datetime | None) -> datetime | None:
    """A naive datetime typed in KST (e.g. a deadline picker) converted to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=KST)
    return value.astimezone(timezone.utc)


def kst_day_bounds(now: datetime | None = None) -> tuple[datetime, datetime]:
    """UTC first and last instant of the current KST calendar day."""
    now_kst = (now or utcnow()).astimezone(KST)
    start = datetime.combine(now_kst.date(), time.min, tzinfo=KST)
    end = datetime.combine(now_kst.date(), time.max, tzinfo=KST)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)
