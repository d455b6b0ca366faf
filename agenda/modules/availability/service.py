# agenda/modules/availability/service.py
from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from agenda.core.security import Actor
from agenda.core.timeutils import local_day_bounds
from agenda.modules.appointments import repository as appt_repo
from agenda.modules.appointments.models import Appointment
from agenda.modules.appointments.status import is_cancelled
from agenda.modules.availability import repository as repo
from agenda.modules.availability.models import AvailabilityException, AvailabilityRule
from agenda.modules.availability.schemas import (
    AvailabilityExceptionCreate,
    AvailabilityExceptionPublic,
    AvailabilityRulePublic,
    AvailabilityRulesReplace,
)
from agenda.modules.availability.slots import (
    DayOverview,
    DaySlots,
    ExceptionIn,
    GroupSession,
    OverviewColumnIn,
    RuleIn,
    SlotAppointment,
    build_day_overview,
    compute_slots_for_day,
)
from agenda.modules.log import write_audit_log
from agenda.modules.professionals.models import ProfessionalProfile
from agenda.modules.recurrences import repository as rec_repo
from agenda.modules.recurrences.biweekly import build_slot_key, compute_biweekly_hints

logger = logging.getLogger(__name__)


class AvailabilityNotFound(Exception):
    """
    Professional or exception not found
    """


class AvailabilityForbidden(Exception):
    """
    Actor may not read or edit this professional's availability
    """


async def _professional_for_actor(
    session: AsyncSession, professional_id: UUID, actor: Actor
) -> ProfessionalProfile:
    if not actor.can_act_for(professional_id):
        raise AvailabilityForbidden("not_owner")
    prof = await session.get(ProfessionalProfile, professional_id)
    if not prof:
        raise AvailabilityNotFound("professional_not_found")
    return prof


def _exception_in(exc: AvailabilityException) -> ExceptionIn:
    return ExceptionIn.model_validate(exc)


def _split_groups(rows: Sequence[Appointment]) -> tuple[list[SlotAppointment], list[GroupSession]]:
    """
    Single entries as they are; members sharing a group_id fold into one
    GroupSession (cancelled members drop out, a fully cancelled group
    disappears).
    """
    singles: list[SlotAppointment] = []
    groups: dict[UUID, list[Appointment]] = defaultdict(list)
    for a in rows:
        if a.group_id is None:
            singles.append(
                SlotAppointment.model_validate(a).model_copy(
                    update={"patient_name": a.patient.name if a.patient else None}
                )
            )
        elif not is_cancelled(a.status):
            groups[a.group_id].append(a)

    sessions = [
        GroupSession(
            group_id=group_id,
            title=next((m.title for m in members if m.title), None),
            scheduled_at=min(m.scheduled_at for m in members),
            end_at=max(m.end_at for m in members),
            participants=[m.patient.name for m in members if m.patient is not None],
        )
        for group_id, members in groups.items()
    ]
    return singles, sessions


async def _day_slots(session: AsyncSession, prof: ProfessionalProfile, day: dt.date) -> DaySlots:
    rules = [RuleIn.model_validate(r) for r in await repo.list_rules(session, prof.id)]
    exceptions = [_exception_in(e) for e in await repo.list_exceptions_for_day(session, prof.id, day)]

    start, end = local_day_bounds(day)
    rows = await appt_repo.list_in_range(session, start=start, end=end, professional_id=prof.id)
    singles, groups = _split_groups(rows)

    occupied = {
        build_slot_key(a.scheduled_at, a.professional_profile_id)
        for a in rows
        if a.blocks_time and not is_cancelled(a.status)
    }
    recurrences = [rec_repo.to_biweekly(r) for r in await rec_repo.list_active_biweekly(session, [prof.id])]
    hints = compute_biweekly_hints(day, day, recurrences, occupied)

    return compute_slots_for_day(
        day,
        rules,
        exceptions,
        singles,
        group_sessions=groups,
        biweekly_hints=hints,
        appointment_duration=prof.appointment_duration,
        professional_id=prof.id,
    )


# SLOTS (one professional)
async def day_slots_svc(
    session: AsyncSession, professional_id: UUID, day: dt.date, actor: Actor
) -> DaySlots:
    prof = await _professional_for_actor(session, professional_id, actor)
    return await _day_slots(session, prof, day)


# OVERVIEW (admin)
async def day_overview_svc(
    session: AsyncSession,
    day: dt.date,
    *,
    grid_start: Optional[str] = None,
    grid_end: Optional[str] = None,
) -> DayOverview:
    columns = [
        OverviewColumnIn(
            professional_id=prof.id,
            name=prof.name,
            appointment_duration=prof.appointment_duration,
            day=await _day_slots(session, prof, day),
        )
        for prof in await repo.list_active_professionals(session)
    ]
    return build_day_overview(day, columns, grid_start=grid_start, grid_end=grid_end)


# RULES
async def get_rules_svc(
    session: AsyncSession, professional_id: UUID, actor: Actor
) -> list[AvailabilityRulePublic]:
    await _professional_for_actor(session, professional_id, actor)
    return [AvailabilityRulePublic.model_validate(r) for r in await repo.list_rules(session, professional_id)]


async def replace_rules_svc(
    session: AsyncSession,
    professional_id: UUID,
    payload: AvailabilityRulesReplace,
    actor: Actor,
) -> list[AvailabilityRulePublic]:
    await _professional_for_actor(session, professional_id, actor)
    rules = await repo.replace_rules(
        session,
        professional_id,
        [AvailabilityRule(professional_profile_id=professional_id, **r.model_dump()) for r in payload.rules],
    )
    await write_audit_log(
        session,
        actor.id,
        "AVAILABILITY_RULES_REPLACED",
        "ProfessionalProfile",
        professional_id,
        {"rules": len(rules)},
    )
    return [AvailabilityRulePublic.model_validate(r) for r in rules]


# EXCEPTIONS
async def add_exception_svc(
    session: AsyncSession,
    professional_id: UUID,
    payload: AvailabilityExceptionCreate,
    actor: Actor,
) -> AvailabilityExceptionPublic:
    await _professional_for_actor(session, professional_id, actor)
    if payload.clinic_wide and not actor.is_admin:
        raise AvailabilityForbidden("clinic_wide_requires_admin")

    exc = await repo.add_exception(
        session,
        AvailabilityException(
            professional_profile_id=None if payload.clinic_wide else professional_id,
            **payload.model_dump(exclude={"clinic_wide"}),
        ),
    )
    await write_audit_log(
        session,
        actor.id,
        "AVAILABILITY_EXCEPTION_ADDED",
        "AvailabilityException",
        exc.id,
        {"date": payload.date.isoformat() if payload.date else None, "reason": payload.reason},
    )
    return AvailabilityExceptionPublic.model_validate(exc)


async def delete_exception_svc(
    session: AsyncSession,
    professional_id: UUID,
    exception_id: UUID,
    actor: Actor,
) -> None:
    await _professional_for_actor(session, professional_id, actor)
    exc = await repo.get_exception(session, exception_id)
    if exc is None or exc.professional_profile_id not in (professional_id, None):
        raise AvailabilityNotFound("exception_not_found")
    if exc.is_clinic_wide and not actor.is_admin:
        raise AvailabilityForbidden("clinic_wide_requires_admin")

    await repo.delete_exception(session, exc)
    await write_audit_log(
        session, actor.id, "AVAILABILITY_EXCEPTION_REMOVED", "AvailabilityException", exception_id
    )
