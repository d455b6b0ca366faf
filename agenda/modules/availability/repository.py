# agenda/modules/availability/repository.py
from __future__ import annotations

from datetime import date
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.core.timeutils import day_of_week
from agenda.modules.availability.models import AvailabilityException, AvailabilityRule
from agenda.modules.professionals.models import ProfessionalProfile


async def list_rules(db: AsyncSession, professional_id: UUID) -> Sequence[AvailabilityRule]:
    rows = await db.execute(
        select(AvailabilityRule)
        .where(AvailabilityRule.professional_profile_id == professional_id)
        .order_by(AvailabilityRule.day_of_week, AvailabilityRule.start_time)
    )
    return rows.scalars().all()


async def replace_rules(
    db: AsyncSession, professional_id: UUID, rules: Sequence[AvailabilityRule]
) -> Sequence[AvailabilityRule]:
    await db.execute(
        delete(AvailabilityRule).where(AvailabilityRule.professional_profile_id == professional_id)
    )
    db.add_all(rules)
    await db.flush()
    return rules


async def list_exceptions_for_day(
    db: AsyncSession, professional_id: UUID, day: date
) -> Sequence[AvailabilityException]:
    """The professional's own exceptions plus clinic-wide ones touching `day`."""
    rows = await db.execute(
        select(AvailabilityException).where(
            or_(
                AvailabilityException.professional_profile_id == professional_id,
                AvailabilityException.professional_profile_id.is_(None),
            ),
            or_(
                AvailabilityException.date == day,
                and_(
                    AvailabilityException.is_recurring.is_(True),
                    AvailabilityException.day_of_week == day_of_week(day),
                ),
            ),
        )
    )
    return rows.scalars().all()


async def get_exception(db: AsyncSession, exception_id: UUID) -> Optional[AvailabilityException]:
    return await db.get(AvailabilityException, exception_id)


async def add_exception(db: AsyncSession, exc: AvailabilityException) -> AvailabilityException:
    db.add(exc)
    await db.flush()
    return exc


async def delete_exception(db: AsyncSession, exc: AvailabilityException) -> None:
    await db.delete(exc)
    await db.flush()


async def list_active_professionals(db: AsyncSession) -> Sequence[ProfessionalProfile]:
    rows = await db.execute(
        select(ProfessionalProfile)
        .where(ProfessionalProfile.is_active.is_(True))
        .order_by(ProfessionalProfile.name)
    )
    return rows.scalars().all()
