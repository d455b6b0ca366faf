# agenda/modules/appointments/repository.py
from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.modules.appointments.models import Appointment
from agenda.modules.appointments.status import AppointmentStatus


async def get_by_id(
    db: AsyncSession, appointment_id: UUID, *, for_update: bool = False
) -> Optional[Appointment]:
    stmt = select(Appointment).where(Appointment.id == appointment_id)
    if for_update:
        stmt = stmt.with_for_update(of=Appointment)
    rows = await db.execute(stmt)
    return rows.unique().scalar_one_or_none()


async def add(db: AsyncSession, appt: Appointment) -> Appointment:
    db.add(appt)
    await db.flush()
    return appt


async def add_many(db: AsyncSession, appts: Sequence[Appointment]) -> Sequence[Appointment]:
    db.add_all(appts)
    await db.flush()
    return appts


async def list_in_range(
    db: AsyncSession,
    *,
    start: datetime,
    end: datetime,
    professional_id: Optional[UUID] = None,
) -> Sequence[Appointment]:
    """Entries starting in [start, end), ordered by start."""
    stmt = select(Appointment).where(
        Appointment.scheduled_at >= start,
        Appointment.scheduled_at < end,
    )
    if professional_id is not None:
        stmt = stmt.where(Appointment.professional_profile_id == professional_id)
    rows = await db.execute(stmt.order_by(Appointment.scheduled_at))
    return rows.unique().scalars().all()


async def list_by_recurrence(
    db: AsyncSession,
    recurrence_id: UUID,
    *,
    from_time: Optional[datetime] = None,
    statuses: Optional[Iterable[AppointmentStatus]] = None,
    for_update: bool = False,
) -> Sequence[Appointment]:
    stmt = select(Appointment).where(Appointment.recurrence_id == recurrence_id)
    if from_time is not None:
        stmt = stmt.where(Appointment.scheduled_at >= from_time)
    if statuses is not None:
        stmt = stmt.where(Appointment.status.in_([s.value for s in statuses]))
    if for_update:
        stmt = stmt.with_for_update(of=Appointment)
    rows = await db.execute(stmt.order_by(Appointment.scheduled_at))
    return rows.unique().scalars().all()


async def count_by_recurrence(db: AsyncSession, recurrence_id: UUID) -> int:
    stmt = select(func.count()).select_from(Appointment).where(Appointment.recurrence_id == recurrence_id)
    return (await db.execute(stmt)).scalar_one()


async def cancel_many(
    db: AsyncSession,
    ids: Sequence[UUID],
    *,
    status: AppointmentStatus,
    cancelled_at: datetime,
    reason: Optional[str] = None,
) -> int:
    if not ids:
        return 0
    res = await db.execute(
        update(Appointment)
        .where(Appointment.id.in_(ids))
        .values(status=status.value, cancelled_at=cancelled_at, cancellation_reason=reason)
    )
    return res.rowcount or 0  # type: ignore
