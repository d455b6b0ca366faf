# agenda/core/timeutils.py
from __future__ import annotations

import datetime as dt
from functools import lru_cache
from zoneinfo import ZoneInfo

from agenda.core.config import settings


@lru_cache(maxsize=8)
def clinic_tz(name: str | None = None) -> ZoneInfo:
    """Time zone every wall-clock value (HH:MM, weekdays, dates) refers to."""
    return ZoneInfo(name or settings.CLINIC_TIMEZONE)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def ensure_aware(value: dt.datetime) -> dt.datetime:
    """
    Rows read back from drivers without tz support come back naive;
    they were written as UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value


def to_clinic(value: dt.datetime) -> dt.datetime:
    return ensure_aware(value).astimezone(clinic_tz())


def to_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=clinic_tz())
    return value.astimezone(dt.timezone.utc)


def local_date(value: dt.datetime) -> dt.date:
    return to_clinic(value).date()


def hhmm(value: dt.datetime | dt.time) -> str:
    if isinstance(value, dt.datetime):
        value = to_clinic(value)
    return f"{value.hour:02d}:{value.minute:02d}"


def parse_hhmm(value: str) -> dt.time:
    hours, minutes = value.split(":")
    return dt.time(int(hours), int(minutes))


def minutes_of_day(value: dt.datetime | dt.time | str) -> int:
    if isinstance(value, str):
        value = parse_hhmm(value)
    elif isinstance(value, dt.datetime):
        value = to_clinic(value)
    return value.hour * 60 + value.minute


def day_of_week(value: dt.date) -> int:
    """Stored weekday convention: 0 = Sunday ... 6 = Saturday."""
    return (value.isoweekday()) % 7


def local_day_bounds(day: dt.date) -> tuple[dt.datetime, dt.datetime]:
    """[00:00, next 00:00) of a clinic-local day, as UTC instants."""
    start = dt.datetime.combine(day, dt.time(0, 0), tzinfo=clinic_tz())
    end = start + dt.timedelta(days=1)
    return start.astimezone(dt.timezone.utc), end.astimezone(dt.timezone.utc)
