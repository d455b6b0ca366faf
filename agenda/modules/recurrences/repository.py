# agenda/modules/recurrences/repository.py
from __future__ import annotations

from datetime import date
from typing import Iterable, Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.modules.recurrences.biweekly import BiweeklyRecurrence
from agenda.modules.recurrences.calculator import RecurrenceEndType, RecurrenceType
from agenda.modules.recurrences.models import AppointmentRecurrence


async def get_by_id(
    db: AsyncSession, recurrence_id: UUID, *, for_update: bool = False
) -> Optional[AppointmentRecurrence]:
    stmt = select(AppointmentRecurrence).where(AppointmentRecurrence.id == recurrence_id)
    if for_update:
        stmt = stmt.with_for_update(of=AppointmentRecurrence)
    rows = await db.execute(stmt)
    return rows.unique().scalar_one_or_none()


async def add(db: AsyncSession, rec: AppointmentRecurrence) -> AppointmentRecurrence:
    db.add(rec)
    await db.flush()
    return rec


async def list_active_biweekly(
    db: AsyncSession, professional_ids: Iterable[UUID]
) -> Sequence[AppointmentRecurrence]:
    ids = list(professional_ids)
    if not ids:
        return []
    rows = await db.execute(
        select(AppointmentRecurrence)
        .where(
            AppointmentRecurrence.professional_profile_id.in_(ids),
            AppointmentRecurrence.recurrence_type == RecurrenceType.BIWEEKLY.value,
            AppointmentRecurrence.is_active.is_(True),
        )
        .order_by(AppointmentRecurrence.created_at, AppointmentRecurrence.id)
    )
    return rows.unique().scalars().all()


async def list_indefinite_due(
    db: AsyncSession, *, horizon: date
) -> Sequence[AppointmentRecurrence]:
    """
    Active INDEFINITE series whose generated window ends on or before
    `horizon` (series never extended count from their anchor date).
    """
    rows = await db.execute(
        select(AppointmentRecurrence)
        .where(
            AppointmentRecurrence.recurrence_end_type == RecurrenceEndType.INDEFINITE.value,
            AppointmentRecurrence.is_active.is_(True),
        )
        .with_for_update(of=AppointmentRecurrence)
        .order_by(AppointmentRecurrence.id)
    )
    return [
        r
        for r in rows.unique().scalars().all()
        if (r.last_generated_date or r.start_date) <= horizon
    ]


def to_biweekly(rec: AppointmentRecurrence) -> BiweeklyRecurrence:
    return BiweeklyRecurrence(
        id=rec.id,
        professional_profile_id=rec.professional_profile_id,
        patient_id=rec.patient_id,
        patient_name=rec.patient.name if rec.patient else None,
        day_of_week=rec.day_of_week,
        start_time=rec.start_time,
        start_date=rec.start_date,
    )
