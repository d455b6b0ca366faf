# agenda/modules/appointments/conflicts.py
"""
Conflict detection for a professional's calendar.

Two intervals overlap when start_a < end_b and end_a > start_b, so
back-to-back bookings (one ends exactly when the next starts) are allowed.
Only time-blocking, non-cancelled entries participate.

The lookup is issued with SELECT ... FOR UPDATE OF appointments: the rows it
finds stay locked until the caller's transaction ends, which serializes the
check and the insert that follows it.
"""
from __future__ import annotations

import datetime as dt
import logging
import uuid
from typing import Iterable, Optional, Sequence

from pydantic import BaseModel, computed_field
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.core.timeutils import ensure_aware, hhmm, to_clinic
from agenda.modules.appointments.models import Appointment
from agenda.modules.appointments.status import CANCELLED_STATUSES
from agenda.modules.professionals.models import Patient

logger = logging.getLogger(__name__)

CONFLICT_CODE = "APPOINTMENT_CONFLICT"


class ConflictingAppointment(BaseModel):
    id: uuid.UUID
    scheduled_at: dt.datetime
    end_at: dt.datetime
    patient_name: Optional[str] = None
    title: Optional[str] = None
    type: str

    @computed_field  # type: ignore[prop-decorator]
    @property
    def display_name(self) -> str:
        return self.patient_name or self.title or "outro compromisso"


class ConflictCheckResult(BaseModel):
    has_conflict: bool
    conflicting_appointment: Optional[ConflictingAppointment] = None


class BulkConflict(BaseModel):
    index: int
    date: str
    conflicting_appointment: ConflictingAppointment


class ConflictError(BaseModel):
    error: str
    code: str = CONFLICT_CODE
    conflicting_appointment: ConflictingAppointment


class Interval(BaseModel):
    scheduled_at: dt.datetime
    end_at: dt.datetime


def _blocking_filter(professional_id: uuid.UUID):
    return and_(
        Appointment.professional_profile_id == professional_id,
        Appointment.status.notin_([s.value for s in CANCELLED_STATUSES]),
        Appointment.blocks_time.is_(True),
    )


def _base_query():
    return (
        select(
            Appointment.id,
            Appointment.scheduled_at,
            Appointment.end_at,
            Appointment.title,
            Appointment.type,
            Patient.name.label("patient_name"),
        )
        .select_from(Appointment)
        .outerjoin(Patient, Appointment.patient_id == Patient.id)
    )


def _to_conflict(row) -> ConflictingAppointment:
    return ConflictingAppointment(
        id=row.id,
        scheduled_at=ensure_aware(row.scheduled_at),
        end_at=ensure_aware(row.end_at),
        patient_name=row.patient_name,
        title=row.title,
        type=row.type,
    )


def _overlaps(a_start: dt.datetime, a_end: dt.datetime, b_start: dt.datetime, b_end: dt.datetime) -> bool:
    return a_start < b_end and a_end > b_start


async def check_conflict(
    session: AsyncSession,
    professional_id: uuid.UUID,
    scheduled_at: dt.datetime,
    end_at: dt.datetime,
    *,
    exclude_appointment_id: uuid.UUID | None = None,
    exclude_group_id: uuid.UUID | None = None,
) -> ConflictCheckResult:
    """
    Earliest blocking appointment overlapping [scheduled_at, end_at), if any.
    Must run inside the transaction that performs the subsequent write.
    """
    conds = [
        _blocking_filter(professional_id),
        Appointment.scheduled_at < end_at,
        Appointment.end_at > scheduled_at,
    ]
    if exclude_appointment_id is not None:
        conds.append(Appointment.id != exclude_appointment_id)
    if exclude_group_id is not None:
        conds.append(or_(Appointment.group_id.is_(None), Appointment.group_id != exclude_group_id))

    stmt = (
        _base_query()
        .where(and_(*conds))
        .order_by(Appointment.scheduled_at)
        .limit(1)
        .with_for_update(of=Appointment)
    )
    row = (await session.execute(stmt)).first()
    if row is None:
        return ConflictCheckResult(has_conflict=False)

    conflict = _to_conflict(row)
    logger.info(
        "conflict professional=%s requested=%s..%s existing=%s",
        professional_id, scheduled_at.isoformat(), end_at.isoformat(), conflict.id,
    )
    return ConflictCheckResult(has_conflict=True, conflicting_appointment=conflict)


async def check_conflicts_bulk(
    session: AsyncSession,
    professional_id: uuid.UUID,
    intervals: Sequence[Interval],
    *,
    exclude_appointment_ids: Iterable[uuid.UUID] = (),
    exclude_group_id: uuid.UUID | None = None,
) -> list[BulkConflict]:
    """
    Check many intervals with one locked query; only rows overlapping one
    of the intervals are read (and locked).
    Returns one entry per conflicting interval (earliest conflicting
    appointment), in input order; empty when everything is free.
    """
    if not intervals:
        return []

    conds = [
        _blocking_filter(professional_id),
        or_(
            *(
                and_(Appointment.scheduled_at < i.end_at, Appointment.end_at > i.scheduled_at)
                for i in intervals
            )
        ),
    ]
    excluded = list(exclude_appointment_ids)
    if excluded:
        conds.append(Appointment.id.notin_(excluded))
    if exclude_group_id is not None:
        conds.append(or_(Appointment.group_id.is_(None), Appointment.group_id != exclude_group_id))

    stmt = (
        _base_query()
        .where(and_(*conds))
        .order_by(Appointment.scheduled_at)
        .with_for_update(of=Appointment)
    )
    existing = [_to_conflict(r) for r in (await session.execute(stmt)).all()]

    conflicts: list[BulkConflict] = []
    for index, interval in enumerate(intervals):
        start = ensure_aware(interval.scheduled_at)
        end = ensure_aware(interval.end_at)
        for candidate in existing:  # already ordered, first hit is the earliest
            if _overlaps(start, end, candidate.scheduled_at, candidate.end_at):
                conflicts.append(
                    BulkConflict(
                        index=index,
                        date=to_clinic(start).date().isoformat(),
                        conflicting_appointment=candidate,
                    )
                )
                break

    if conflicts:
        logger.info(
            "bulk conflict professional=%s intervals=%d conflicting=%d",
            professional_id, len(intervals), len(conflicts),
        )
    return conflicts


def format_conflict_error(conflict: ConflictingAppointment) -> ConflictError:
    start = to_clinic(conflict.scheduled_at)
    message = (
        f"Conflito de horário: já existe um compromisso agendado com "
        f"{conflict.display_name} em {start.strftime('%d/%m/%Y')} "
        f"das {hhmm(conflict.scheduled_at)} às {hhmm(conflict.end_at)}"
    )
    return ConflictError(error=message, conflicting_appointment=conflict)
