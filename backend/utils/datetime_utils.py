from datetime import datetime, date, timedelta, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _zone(tz_name: str | None):
    if tz_name:
        try:
            return ZoneInfo(tz_name)
        except Exception:
            pass
    return timezone.utc


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: datetime) -> datetime:
    """Storage form used by the SQLite columns."""
    return as_utc(value).replace(tzinfo=None)


def local_date(moment: datetime, tz_name: str | None = None) -> date:
    """Return the calendar date of ``moment`` in the user's timezone."""
    return as_utc(moment).astimezone(_zone(tz_name)).date()


def start_of_day(d: date, tz_name: str | None = None) -> datetime:
    """Return start of day as a UTC datetime, optionally in user's timezone."""
    local = datetime(d.year, d.month, d.day, tzinfo=_zone(tz_name))
    return local.astimezone(timezone.utc)


def end_of_day(d: date, tz_name: str | None = None) -> datetime:
    """Return end of day as a UTC datetime, optionally in user's timezone."""
    local = datetime(d.year, d.month, d.day, 23, 59, 59, 999999, tzinfo=_zone(tz_name))
    return local.astimezone(timezone.utc)


def day_bounds(moment: datetime, tz_name: str | None = None) -> tuple[datetime, datetime]:
    d = local_date(moment, tz_name)
    return start_of_day(d, tz_name), end_of_day(d, tz_name)


def lookback_start(now: datetime, days: int) -> datetime:
    return as_utc(now) - timedelta(days=max(int(days), 0))


def parse_iso_datetime(raw: str | None) -> datetime | None:
    if not raw:
        return None
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        return None
