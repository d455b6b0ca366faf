# agenda/modules/recurrences/calculator.py
"""
Pure date arithmetic for recurring appointments.

Every function here is synchronous and storage-free: it expands a recurrence
definition into concrete occurrences, manages the skipped-dates list and
answers biweekly parity questions. Wall-clock values (dates, "HH:MM") are
interpreted in the clinic time zone; generated instants are tz-aware.
"""
from __future__ import annotations

import calendar
import datetime as dt
from enum import Enum as PyEnum
from typing import Iterable, Optional, Union
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from agenda.core.timeutils import clinic_tz, day_of_week, parse_hhmm

MAX_OCCURRENCES = 52  # one year of weekly sessions
INDEFINITE_WINDOW_MONTHS = 6
DEFAULT_EXTENSION_MONTHS = 3

DateLike = Union[dt.date, dt.datetime, str]


class RecurrenceType(str, PyEnum):
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"


class RecurrenceEndType(str, PyEnum):
    BY_DATE = "BY_DATE"
    BY_OCCURRENCES = "BY_OCCURRENCES"
    INDEFINITE = "INDEFINITE"


class RecurrenceOptions(BaseModel):
    recurrence_type: RecurrenceType
    recurrence_end_type: RecurrenceEndType
    # Kept loose on purpose: validate_recurrence_options reports bad values
    end_date: Optional[Union[dt.date, str]] = None
    occurrences: Optional[int] = None


class RecurrenceValidation(BaseModel):
    valid: bool
    error: Optional[str] = None


class RecurrenceDate(BaseModel):
    date: str  # YYYY-MM-DD
    scheduled_at: dt.datetime
    end_at: dt.datetime


class RecurrenceDateWithException(RecurrenceDate):
    is_exception: bool


class ShiftedDates(BaseModel):
    scheduled_at: dt.datetime
    end_at: dt.datetime


# --- helpers ---


def format_date(value: dt.date | dt.datetime) -> str:
    """YYYY-MM-DD; aware datetimes are read in clinic time."""
    if isinstance(value, dt.datetime):
        if value.tzinfo is not None:
            value = value.astimezone(clinic_tz())
        value = value.date()
    return value.isoformat()


def to_date(value: DateLike) -> dt.date:
    if isinstance(value, str):
        return dt.date.fromisoformat(value[:10])
    if isinstance(value, dt.datetime):
        if value.tzinfo is not None:
            value = value.astimezone(clinic_tz())
        return value.date()
    return value


def add_months(value: dt.date, months: int) -> dt.date:
    """Same day of month, clamped to the last day of shorter months."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return dt.date(year, month, min(value.day, last_day))


def interval_days(recurrence_type: RecurrenceType | str) -> int:
    rtype = RecurrenceType(recurrence_type)
    if rtype is RecurrenceType.BIWEEKLY:
        return 14
    if rtype is RecurrenceType.MONTHLY:
        return 0  # calendar months, see add_months
    return 7


def _occurrence(day: dt.date, start: dt.time, duration_minutes: int, tz: ZoneInfo) -> RecurrenceDate:
    scheduled = dt.datetime.combine(day, start, tzinfo=tz)
    return RecurrenceDate(
        date=day.isoformat(),
        scheduled_at=scheduled,
        end_at=scheduled + dt.timedelta(minutes=duration_minutes),
    )


def _nth_date(anchor: dt.date, recurrence_type: RecurrenceType, n: int) -> dt.date:
    if recurrence_type is RecurrenceType.MONTHLY:
        # Always from the anchor so a day-31 series returns to 31
        return add_months(anchor, n)
    return anchor + dt.timedelta(days=n * interval_days(recurrence_type))


# --- validation ---


def validate_recurrence_options(options: RecurrenceOptions) -> RecurrenceValidation:
    end_type = options.recurrence_end_type

    if end_type is RecurrenceEndType.BY_OCCURRENCES:
        if not options.occurrences or options.occurrences < 1:
            return RecurrenceValidation(valid=False, error="Numero de ocorrencias deve ser pelo menos 1")
        if options.occurrences > MAX_OCCURRENCES:
            return RecurrenceValidation(
                valid=False, error=f"Maximo de {MAX_OCCURRENCES} ocorrencias permitido"
            )
    elif end_type is RecurrenceEndType.BY_DATE:
        if not options.end_date:
            return RecurrenceValidation(valid=False, error="Data final e obrigatoria para recorrencia por data")
        try:
            to_date(options.end_date)
        except ValueError:
            return RecurrenceValidation(valid=False, error="Data final invalida")

    # INDEFINITE needs neither end date nor occurrences
    return RecurrenceValidation(valid=True)


# --- expansion ---


def calculate_recurrence_dates(
    start_date: DateLike,
    start_time: str,
    duration_minutes: int,
    options: RecurrenceOptions,
    tz: ZoneInfo | None = None,
    indefinite_window_months: int = INDEFINITE_WINDOW_MONTHS,
) -> list[RecurrenceDate]:
    """
    Expand a recurrence into ordered occurrences, the anchor included.

    Callers are expected to run validate_recurrence_options first; an
    invalid end condition here degrades to the 52-occurrence cap.
    """
    tz = tz or clinic_tz()
    anchor = to_date(start_date)
    start = parse_hhmm(start_time)
    rtype = RecurrenceType(options.recurrence_type)
    end_type = RecurrenceEndType(options.recurrence_end_type)

    max_occurrences = MAX_OCCURRENCES
    last_day: dt.date | None = None

    if end_type is RecurrenceEndType.BY_OCCURRENCES and options.occurrences:
        max_occurrences = min(options.occurrences, MAX_OCCURRENCES)
    elif end_type is RecurrenceEndType.BY_DATE and options.end_date:
        last_day = to_date(options.end_date)
    elif end_type is RecurrenceEndType.INDEFINITE:
        last_day = add_months(anchor, indefinite_window_months)

    dates = [_occurrence(anchor, start, duration_minutes, tz)]
    count = 1
    while count < max_occurrences:
        current = _nth_date(anchor, rtype, count)
        if last_day is not None and current > last_day:
            break
        dates.append(_occurrence(current, start, duration_minutes, tz))
        count += 1

    return dates


def calculate_next_window_dates(
    last_generated_date: DateLike,
    start_time: str,
    duration_minutes: int,
    recurrence_type: RecurrenceType | str,
    day_of_week_: int,
    extension_months: int = DEFAULT_EXTENSION_MONTHS,
    tz: ZoneInfo | None = None,
    anchor_date: DateLike | None = None,
) -> list[RecurrenceDate]:
    """
    Next window of an INDEFINITE series: dates strictly after the last
    generated one, up to last + extension_months (inclusive). Weekly and
    biweekly candidates are kept only when they fall on `day_of_week_`.

    Monthly series are counted from `anchor_date` (the series start) so a
    day-31 series goes back to the 31st whenever the month has one.
    """
    tz = tz or clinic_tz()
    last = to_date(last_generated_date)
    start = parse_hhmm(start_time)
    rtype = RecurrenceType(recurrence_type)

    if rtype is RecurrenceType.MONTHLY:
        anchor = to_date(anchor_date) if anchor_date is not None else last
        done = (last.year - anchor.year) * 12 + last.month - anchor.month
        return [
            _occurrence(current, start, duration_minutes, tz)
            for current in (add_months(anchor, n) for n in range(done + 1, done + extension_months + 1))
            if current > last
        ]

    window_end = add_months(last, extension_months)
    dates: list[RecurrenceDate] = []
    count = 1
    while True:
        current = _nth_date(last, rtype, count)
        count += 1
        if current > window_end:
            break
        if day_of_week(current) != day_of_week_:
            continue
        dates.append(_occurrence(current, start, duration_minutes, tz))

    return dates


def calculate_day_shifted_dates(
    scheduled_at: dt.datetime,
    end_at: dt.datetime,
    current_day_of_week: int,
    new_day_of_week: int,
) -> ShiftedDates:
    """
    Move an occurrence to another weekday, always forward: same or earlier
    weekday means the following week. Time of day is preserved.
    """
    days_to_add = new_day_of_week - current_day_of_week
    if days_to_add <= 0:
        days_to_add += 7
    delta = dt.timedelta(days=days_to_add)
    if scheduled_at.tzinfo is not None:
        # Shift in wall-clock terms so the local time survives DST changes
        tz = clinic_tz()
        local_start = scheduled_at.astimezone(tz).replace(tzinfo=None) + delta
        local_end = end_at.astimezone(tz).replace(tzinfo=None) + delta
        return ShiftedDates(
            scheduled_at=local_start.replace(tzinfo=tz),
            end_at=local_end.replace(tzinfo=tz),
        )
    return ShiftedDates(scheduled_at=scheduled_at + delta, end_at=end_at + delta)


# --- exceptions (skipped dates) ---


def _as_key(value: DateLike) -> str:
    return value if isinstance(value, str) else format_date(value)


def is_date_exception(value: DateLike, exceptions: Iterable[str]) -> bool:
    return _as_key(value) in set(exceptions)


def add_exception(value: DateLike, exceptions: list[str]) -> list[str]:
    """New sorted list with the date added; unchanged content if present."""
    key = _as_key(value)
    if key in exceptions:
        return list(exceptions)
    return sorted([*exceptions, key])


def remove_exception(value: DateLike, exceptions: list[str]) -> list[str]:
    key = _as_key(value)
    return [d for d in exceptions if d != key]


def calculate_recurrence_dates_with_exceptions(
    start_date: DateLike,
    start_time: str,
    duration_minutes: int,
    options: RecurrenceOptions,
    exceptions: Iterable[str] = (),
    tz: ZoneInfo | None = None,
) -> list[RecurrenceDateWithException]:
    skipped = set(exceptions)
    return [
        RecurrenceDateWithException(**d.model_dump(), is_exception=d.date in skipped)
        for d in calculate_recurrence_dates(start_date, start_time, duration_minutes, options, tz)
    ]


def count_active_occurrences(
    start_date: DateLike,
    start_time: str,
    duration_minutes: int,
    options: RecurrenceOptions,
    exceptions: Iterable[str] = (),
) -> int:
    dates = calculate_recurrence_dates_with_exceptions(
        start_date, start_time, duration_minutes, options, exceptions
    )
    return sum(1 for d in dates if not d.is_exception)


# --- biweekly parity ---


def is_off_week(anchor_date: DateLike, target_date: DateLike) -> bool:
    """
    True when target falls on an "off" week of a biweekly series anchored
    at anchor_date (odd number of whole weeks away, in either direction).
    """
    days = (to_date(target_date) - to_date(anchor_date)).days
    # Floor division keeps parity consistent before the anchor
    return (days // 7) % 2 != 0


# --- display ---

_TYPE_LABELS = {
    RecurrenceType.WEEKLY: "Semanal",
    RecurrenceType.BIWEEKLY: "Quinzenal",
    RecurrenceType.MONTHLY: "Mensal",
}


def format_recurrence_summary(
    recurrence_type: RecurrenceType | str,
    recurrence_end_type: RecurrenceEndType | str,
    occurrences: int | None = None,
    end_date: DateLike | None = None,
) -> str:
    summary = _TYPE_LABELS[RecurrenceType(recurrence_type)]
    end_type = RecurrenceEndType(recurrence_end_type)

    if end_type is RecurrenceEndType.BY_OCCURRENCES and occurrences:
        summary += f" - {occurrences} sessoes"
    elif end_type is RecurrenceEndType.BY_DATE and end_date:
        summary += f" - ate {to_date(end_date).strftime('%d/%m/%Y')}"
    elif end_type is RecurrenceEndType.INDEFINITE:
        summary += " - sem data de fim"

    return summary
