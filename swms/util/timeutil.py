from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from swms.config import settings


def local_tz() -> ZoneInfo:
    return ZoneInfo(settings.TZ)


def as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive values; everything we store is UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def as_local(dt: datetime) -> datetime:
    return as_utc(dt).astimezone(local_tz())


def today() -> date:
    return datetime.now(local_tz()).date()


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Half-open [start, end) covering the local calendar ``day``, in UTC."""
    tz = local_tz()
    start = datetime.combine(day, time.min).replace(tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min).replace(tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def month_bounds(day: date) -> tuple[datetime, datetime]:
    first = day.replace(day=1)
    nxt = (first.replace(year=first.year + 1, month=1) if first.month == 12
           else first.replace(month=first.month + 1))
    return day_bounds(first)[0], day_bounds(nxt)[0]


def parse_day(value: str | None) -> date:
    """``YYYY-MM-DD`` or today; unparseable input also falls back to today."""
    if not value:
        return today()
    try:
        return date.fromisoformat(value)
    except ValueError:
        return today()
