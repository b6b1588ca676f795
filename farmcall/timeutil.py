from datetime import datetime, timezone, date
from zoneinfo import ZoneInfo

from .config import settings


def now_utc() -> datetime:
    """Naive UTC timestamp; every datetime column is stored this way."""
    return datetime.now(tz=timezone.utc).replace(tzinfo=None)


def local_today(now: datetime | None = None) -> date:
    now = now or now_utc()
    return now.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(settings.TIMEZONE)).date()


def days_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / 86400.0


def as_naive_utc(dt: datetime | None) -> datetime | None:
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)
