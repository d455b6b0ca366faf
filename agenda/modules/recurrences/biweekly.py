# agenda/modules/recurrences/biweekly.py
"""
Biweekly pairing: two biweekly series of the same professional, same weekday
and same start time but different patients alternate in one slot. Each
occupies the week the other leaves empty.

Pairing is a derived relation computed here from recurrence attributes; it
is never stored. Everything in this module is pure and read-only.
"""
from __future__ import annotations

import datetime as dt
import uuid
from typing import Iterable, Optional, Protocol, Sequence, TypeVar

from pydantic import BaseModel

from agenda.core.timeutils import day_of_week, hhmm, to_clinic
from agenda.modules.recurrences.calculator import format_date, is_off_week, to_date

Id = uuid.UUID | str


class BiweeklyRecurrence(BaseModel):
    id: Id
    professional_profile_id: Id
    patient_id: Optional[Id] = None
    patient_name: Optional[str] = None
    day_of_week: int
    start_time: str  # "HH:MM"
    start_date: dt.date


class BiweeklyHint(BaseModel):
    time: str
    professional_profile_id: Id
    patient_name: str
    recurrence_id: Id
    date: str


class PairedInfo(BaseModel):
    recurrence_id: Optional[Id] = None
    patient_name: Optional[str] = None


class AlternateWeekInfo(BaseModel):
    paired_appointment_id: Optional[Id] = None
    paired_patient_name: Optional[str] = None
    is_available: bool


class SchedulableEntry(Protocol):
    """Anything with the attributes pairing looks at (ORM row or DTO)."""

    id: Id
    scheduled_at: dt.datetime
    professional_profile_id: Id
    patient_id: Optional[Id]


def _same_id(a: Optional[Id], b: Optional[Id]) -> bool:
    if a is None or b is None:
        return a is b
    return str(a) == str(b)


def build_slot_key(moment: dt.datetime, professional_profile_id: Id) -> str:
    """
    "YYYY-MM-DD|professionalId|HH:MM" in clinic time. Single key shape for
    hints, pairing and blocked-slot sets.
    """
    local = to_clinic(moment)
    return f"{format_date(local)}|{professional_profile_id}|{hhmm(local)}"


def slot_key_parts(day: dt.date | str, professional_profile_id: Id, time: str) -> str:
    return f"{to_date(day).isoformat()}|{professional_profile_id}|{time}"


def find_paired_recurrence(
    appointment: SchedulableEntry,
    recurrences: Iterable[BiweeklyRecurrence],
) -> BiweeklyRecurrence | None:
    """
    Pairing criteria: same professional, same HH:MM, same weekday, different
    patient. At most one partner is modelled, the first match wins.
    """
    local = to_clinic(appointment.scheduled_at)
    time_str = hhmm(local)
    weekday = day_of_week(local.date())

    for rec in recurrences:
        if (
            _same_id(rec.professional_profile_id, appointment.professional_profile_id)
            and rec.start_time == time_str
            and rec.day_of_week == weekday
            and not _same_id(rec.patient_id, appointment.patient_id)
        ):
            return rec
    return None


def compute_biweekly_hints(
    date_range_start: dt.date | str,
    date_range_end: dt.date | str,
    recurrences: Sequence[BiweeklyRecurrence],
    occupied_slots: set[str],
) -> list[BiweeklyHint]:
    """
    Off-week empty slots, labelled with the patient who takes them on the
    other week. Slots already occupied (slot key in occupied_slots) get no
    hint.
    """
    hints: list[BiweeklyHint] = []
    current = to_date(date_range_start)
    end = to_date(date_range_end)

    while current <= end:
        weekday = day_of_week(current)
        for rec in recurrences:
            if rec.day_of_week != weekday:
                continue
            if not is_off_week(rec.start_date, current):
                continue
            if not rec.patient_name:
                continue
            key = slot_key_parts(current, rec.professional_profile_id, rec.start_time)
            if key in occupied_slots:
                continue
            hints.append(
                BiweeklyHint(
                    time=rec.start_time,
                    professional_profile_id=rec.professional_profile_id,
                    patient_name=rec.patient_name,
                    recurrence_id=rec.id,
                    date=current.isoformat(),
                )
            )
        current += dt.timedelta(days=1)

    return hints


def compute_paired_recurrence_map(
    appointments: Iterable[SchedulableEntry],
    recurrences: Sequence[BiweeklyRecurrence],
) -> dict[str, PairedInfo]:
    """appointment id -> paired recurrence info (empty info when unpaired)."""
    paired: dict[str, PairedInfo] = {}
    for apt in appointments:
        rec = find_paired_recurrence(apt, recurrences)
        paired[str(apt.id)] = PairedInfo(
            recurrence_id=rec.id if rec else None,
            patient_name=rec.patient_name if rec else None,
        )
    return paired


def build_blocked_alternate_keys(blocking_entries: Iterable[SchedulableEntry]) -> set[str]:
    """Slot keys taken by non-consultation blocking entries."""
    return {build_slot_key(e.scheduled_at, e.professional_profile_id) for e in blocking_entries}


T = TypeVar("T")


def annotate_alternate_week_info(
    appointments: Sequence[T],
    paired_map: dict[str, PairedInfo],
    blocked_slots: set[str],
    paired_appointment_ids: dict[str, Id] | None = None,
) -> list[tuple[T, AlternateWeekInfo | None]]:
    """
    Pair every appointment with its alternate-week info. Only appointments
    of an active BIWEEKLY recurrence that have a patient are annotated; the
    rest get None.

    `is_available` means the alternate week can take another patient: no
    partner is paired and the same slot 7 days ahead is not blocked.
    """
    annotated: list[tuple[T, AlternateWeekInfo | None]] = []
    for apt in appointments:
        recurrence = getattr(apt, "recurrence", None)
        rtype = getattr(recurrence, "recurrence_type", None)
        if (
            recurrence is None
            or str(getattr(rtype, "value", rtype)) != "BIWEEKLY"
            or not recurrence.is_active
            or getattr(apt, "patient_id", None) is None
        ):
            annotated.append((apt, None))
            continue

        apt_id = str(apt.id)
        paired = paired_map.get(apt_id)
        alt_key = build_slot_key(
            apt.scheduled_at + dt.timedelta(days=7), apt.professional_profile_id
        )
        paired_name = paired.patient_name if paired else None

        annotated.append(
            (
                apt,
                AlternateWeekInfo(
                    paired_appointment_id=(paired_appointment_ids or {}).get(apt_id),
                    paired_patient_name=paired_name,
                    is_available=not paired_name and alt_key not in blocked_slots,
                ),
            )
        )
    return annotated
