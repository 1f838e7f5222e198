from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo

from tableside.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def local_today():
    return datetime.now(ZoneInfo(settings.TZ)).date()


def day_start_utc() -> datetime:
    """Start of the outlet's business day (settings.TZ) as a UTC timestamp."""
    start = datetime.combine(local_today(), time.min, tzinfo=ZoneInfo(settings.TZ))
    return start.astimezone(timezone.utc)
