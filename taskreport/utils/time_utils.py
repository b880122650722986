from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from ..config import get_settings


def get_app_tz() -> ZoneInfo:
    s = get_settings()
    try:
        return ZoneInfo(s.app.timezone)
    except Exception:
        return ZoneInfo("UTC")


def now_utc() -> datetime:
    # Stored timestamps are naive UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def app_today() -> date:
    """Today's calendar date in the app timezone."""
    return datetime.now(get_app_tz()).date()


def to_utc_naive(dt: datetime) -> datetime:
    """Normalize a datetime to naive UTC.

    Aware values are converted; naive values are assumed to already be UTC.
    """
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def as_aware_utc(dt_utc_naive: datetime) -> datetime:
    return dt_utc_naive.replace(tzinfo=timezone.utc)


def local_date(dt_utc_naive: datetime, tz: ZoneInfo) -> date:
    return as_aware_utc(dt_utc_naive).astimezone(tz).date()


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600


def iso_week_key(dt: datetime) -> str:
    """Return the ISO week label, e.g. '2024-W02'."""
    year, week, _ = dt.isocalendar()
    return f"{year}-W{week:02d}"


def iso_week_start(dt: datetime) -> str:
    """Return Monday 00:00 UTC of the ISO week containing dt, as '...T00:00:00Z'."""
    monday = dt.date() - timedelta(days=dt.weekday())
    return datetime.combine(monday, time.min).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_query_datetime(raw: str | None, *, end_of_day: bool = False) -> datetime | None:
    """Parse an ISO date/datetime query value into naive UTC.

    Unparseable input yields None. A bare date used as an upper bound covers
    the whole day.
    """
    if raw is None:
        return None
    value = str(raw).strip()
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        if len(value) == 10:
            d = date.fromisoformat(value)
            return datetime.combine(d, time.max if end_of_day else time.min)
        return to_utc_naive(datetime.fromisoformat(value))
    except ValueError:
        return None
