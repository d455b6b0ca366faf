# agenda/modules/availability/slots.py
"""
Slot building for the calendar views. Pure: inputs are plain DTOs, nothing
here touches storage or the clock.

Single professional: `compute_slots_for_day` returns the flat, ordered list
of slots for one day. All professionals: `build_day_overview` lays each
professional's day out as positioned blocks on a shared time grid.
"""
from __future__ import annotations

import datetime as dt
import uuid
from typing import Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from agenda.core.timeutils import day_of_week, hhmm, local_date, minutes_of_day
from agenda.modules.appointments.status import CANCELLED_STATUSES
from agenda.modules.recurrences.biweekly import BiweeklyHint

DEFAULT_GRID = ("08:00", "18:00")


class RuleIn(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    day_of_week: int
    start_time: str
    end_time: str
    is_active: bool = True


class ExceptionIn(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: Optional[dt.date] = None
    is_recurring: bool = False
    day_of_week: Optional[int] = None
    is_available: bool = False
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    reason: Optional[str] = None
    is_clinic_wide: bool = False

    def applies_to(self, day: dt.date) -> bool:
        if self.is_recurring:
            return self.day_of_week == day_of_week(day)
        return self.date == day

    @property
    def is_full_day_block(self) -> bool:
        return not self.is_available and not self.start_time

    def blocks_time(self, time: str) -> bool:
        if self.is_available or not self.start_time or not self.end_time:
            return False
        return self.start_time <= time < self.end_time


class SlotAppointment(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    professional_profile_id: uuid.UUID
    scheduled_at: dt.datetime
    end_at: dt.datetime
    status: str
    type: str
    blocks_time: bool = True
    title: Optional[str] = None
    patient_name: Optional[str] = None
    recurrence_id: Optional[uuid.UUID] = None

    @property
    def is_blocking(self) -> bool:
        return self.blocks_time and self.status not in {s.value for s in CANCELLED_STATUSES}


class GroupSession(BaseModel):
    group_id: uuid.UUID
    title: Optional[str] = None
    scheduled_at: dt.datetime
    end_at: dt.datetime
    participants: list[str] = Field(default_factory=list)


class TimeSlot(BaseModel):
    time: str
    appointments: list[SlotAppointment] = Field(default_factory=list)
    group_sessions: list[GroupSession] = Field(default_factory=list)
    is_available: bool
    is_blocked: bool = False
    block_reason: Optional[str] = None
    biweekly_hint: Optional[BiweeklyHint] = None


class FullDayBlock(BaseModel):
    reason: Optional[str] = None
    is_clinic_wide: bool = False


class DaySlots(BaseModel):
    date: dt.date
    slots: list[TimeSlot] = Field(default_factory=list)
    full_day_block: Optional[FullDayBlock] = None


def _fmt(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def _grid_times(rules: Sequence[RuleIn], duration: int) -> list[str]:
    times: list[str] = []
    for rule in rules:
        current = minutes_of_day(rule.start_time)
        end = minutes_of_day(rule.end_time)
        while current + duration <= end:
            times.append(_fmt(current))
            current += duration
    return times


def compute_slots_for_day(
    day: dt.date,
    availability_rules: Sequence[RuleIn],
    availability_exceptions: Sequence[ExceptionIn],
    appointments: Sequence[SlotAppointment],
    group_sessions: Sequence[GroupSession] = (),
    biweekly_hints: Sequence[BiweeklyHint] = (),
    appointment_duration: int = 50,
    professional_id: uuid.UUID | str | None = None,
) -> DaySlots:
    """
    Slots for one professional and one clinic-local day.

    - active rules for the weekday produce a slot every appointment_duration
      minutes while the slot fits before the rule's end.
    - a full-day block exception (date or weekly) empties the day.
    - partial exceptions block slots whose time is in [start, end).
    - a slot is available when not blocked, has no blocking appointment at
      that exact time and no group session starts at or is running over it.
    - grid slots inside a running group session are suppressed; the session
      shows on its start slot.
    - appointments/group sessions off the grid get their own slot; with no
      rules at all only those times are listed.
    """
    weekday = day_of_week(day)
    exceptions = [e for e in availability_exceptions if e.applies_to(day)]

    full_day = next((e for e in exceptions if e.is_full_day_block), None)
    if full_day is not None:
        return DaySlots(
            date=day,
            full_day_block=FullDayBlock(reason=full_day.reason, is_clinic_wide=full_day.is_clinic_wide),
        )

    day_appointments = [a for a in appointments if local_date(a.scheduled_at) == day]
    day_groups = [g for g in group_sessions if local_date(g.scheduled_at) == day]
    running = [(minutes_of_day(g.scheduled_at), minutes_of_day(g.end_at)) for g in day_groups]

    def apts_at(time: str) -> list[SlotAppointment]:
        return [a for a in day_appointments if hhmm(a.scheduled_at) == time]

    def groups_at(time: str) -> list[GroupSession]:
        return [g for g in day_groups if hhmm(g.scheduled_at) == time]

    def inside_group(time: str) -> bool:
        minutes = minutes_of_day(time)
        return any(start < minutes < end for start, end in running)

    def block_for(time: str) -> ExceptionIn | None:
        return next((e for e in exceptions if e.blocks_time(time)), None)

    rules = [r for r in availability_rules if r.is_active and r.day_of_week == weekday]
    by_time: dict[str, TimeSlot] = {}

    for time in _grid_times(rules, appointment_duration):
        if time in by_time:
            continue
        slot_apts = apts_at(time)
        slot_groups = groups_at(time)
        if inside_group(time) and not slot_apts and not slot_groups:
            continue
        block = block_for(time)
        by_time[time] = TimeSlot(
            time=time,
            appointments=slot_apts,
            group_sessions=slot_groups,
            is_available=(
                block is None
                and not any(a.is_blocking for a in slot_apts)
                and not slot_groups
                and not inside_group(time)
            ),
            is_blocked=block is not None,
            block_reason=block.reason if block else None,
        )

    # Entries that do not sit on the grid (or days without rules)
    extra_times = {hhmm(a.scheduled_at) for a in day_appointments} | {
        hhmm(g.scheduled_at) for g in day_groups
    }
    for time in extra_times - by_time.keys():
        block = block_for(time) if rules else None
        by_time[time] = TimeSlot(
            time=time,
            appointments=apts_at(time),
            group_sessions=groups_at(time),
            is_available=False,
            is_blocked=block is not None,
            block_reason=block.reason if block else None,
        )

    slots = [by_time[t] for t in sorted(by_time)]

    for slot in slots:
        if not slot.is_available or slot.appointments:
            continue
        slot.biweekly_hint = next(
            (
                h
                for h in biweekly_hints
                if h.time == slot.time
                and (professional_id is None or str(h.professional_profile_id) == str(professional_id))
            ),
            None,
        )

    return DaySlots(date=day, slots=slots)


# --- all professionals overview ---

BlockKind = Literal["appointment", "group", "free", "blocked"]


class OverviewBlock(BaseModel):
    kind: BlockKind
    time: str
    offset_minutes: int
    span_minutes: int
    label: Optional[str] = None
    appointment_id: Optional[uuid.UUID] = None
    group_id: Optional[uuid.UUID] = None
    status: Optional[str] = None


class OverviewColumnIn(BaseModel):
    professional_id: uuid.UUID
    name: str
    appointment_duration: int
    day: DaySlots


class OverviewColumn(BaseModel):
    professional_id: uuid.UUID
    name: str
    blocks: list[OverviewBlock] = Field(default_factory=list)
    full_day_block: Optional[FullDayBlock] = None


class DayOverview(BaseModel):
    date: dt.date
    grid_start: str
    grid_end: str
    total_minutes: int
    columns: list[OverviewColumn]


def _raw_blocks(column: OverviewColumnIn) -> list[tuple[int, int, dict]]:
    """(start_min, end_min, fields) per block of one professional's day."""
    raw: list[tuple[int, int, dict]] = []
    duration = column.appointment_duration
    for slot in column.day.slots:
        start = minutes_of_day(slot.time)
        for apt in slot.appointments:
            raw.append(
                (
                    minutes_of_day(apt.scheduled_at),
                    minutes_of_day(apt.end_at),
                    {
                        "kind": "appointment",
                        "label": apt.patient_name or apt.title,
                        "appointment_id": apt.id,
                        "status": apt.status,
                    },
                )
            )
        for group in slot.group_sessions:
            raw.append(
                (
                    minutes_of_day(group.scheduled_at),
                    minutes_of_day(group.end_at),
                    {"kind": "group", "label": group.title, "group_id": group.group_id},
                )
            )
        if slot.is_blocked:
            raw.append((start, start + duration, {"kind": "blocked", "label": slot.block_reason}))
        elif slot.is_available:
            label = slot.biweekly_hint.patient_name if slot.biweekly_hint else None
            raw.append((start, start + duration, {"kind": "free", "label": label}))
    return raw


def build_day_overview(
    day: dt.date,
    columns: Sequence[OverviewColumnIn],
    grid_start: str | None = None,
    grid_end: str | None = None,
) -> DayOverview:
    """
    Time-proportional layout of every professional's day. Offsets and spans
    are minutes relative to grid_start; without explicit bounds the grid
    covers all blocks, widened to whole hours.
    """
    per_column = [(c, _raw_blocks(c)) for c in columns]
    starts = [s for _, raw in per_column for s, _, _ in raw]
    ends = [e for _, raw in per_column for _, e, _ in raw]

    if grid_start is None:
        grid_start = _fmt((min(starts) // 60) * 60) if starts else DEFAULT_GRID[0]
    if grid_end is None:
        grid_end = _fmt(-(-max(ends) // 60) * 60) if ends else DEFAULT_GRID[1]
    origin = minutes_of_day(grid_start)
    limit = minutes_of_day(grid_end) if grid_end != "24:00" else 24 * 60

    out_columns: list[OverviewColumn] = []
    for column, raw in per_column:
        full = column.day.full_day_block
        blocks: list[OverviewBlock] = []
        if full is not None:
            blocks.append(
                OverviewBlock(
                    kind="blocked",
                    time=grid_start,
                    offset_minutes=0,
                    span_minutes=limit - origin,
                    label=full.reason,
                )
            )
        for start, end, fields in sorted(raw, key=lambda b: (b[0], b[1])):
            start_c, end_c = max(start, origin), min(end, limit)
            if end_c <= start_c:
                continue
            blocks.append(
                OverviewBlock(
                    time=_fmt(start),
                    offset_minutes=start_c - origin,
                    span_minutes=end_c - start_c,
                    **fields,
                )
            )
        out_columns.append(
            OverviewColumn(
                professional_id=column.professional_id,
                name=column.name,
                blocks=blocks,
                full_day_block=full,
            )
        )

    return DayOverview(
        date=day,
        grid_start=grid_start,
        grid_end=grid_end,
        total_minutes=limit - origin,
        columns=out_columns,
    )
