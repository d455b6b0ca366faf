# agenda/modules/appointments/service.py
from __future__ import annotations

import datetime as dt
import logging
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from agenda.core.security import Actor
from agenda.core.timeutils import ensure_aware, local_day_bounds, to_utc, utcnow
from agenda.modules.appointments import repository as repo
from agenda.modules.appointments.conflicts import (
    ConflictCheckResult,
    ConflictingAppointment,
    check_conflict,
)
from agenda.modules.appointments.links import (
    AppointmentLinkService,
    IssuedLink,
    LinkCredentials,
    get_link_service,
)
from agenda.modules.appointments.models import (
    NON_BLOCKING_TYPES,
    Appointment,
    AppointmentType,
    LinkAction,
)
from agenda.modules.appointments.schemas import (
    AppointmentCreateRequest,
    AppointmentListItem,
    AppointmentListPage,
    AppointmentPublic,
    AppointmentRescheduleRequest,
    AppointmentWithLinks,
    ConflictCheckRequest,
    LinkOut,
    PublicActionResult,
    StatusChangeRequest,
)
from agenda.modules.appointments.status import (
    ACTIONABLE_STATUSES,
    AppointmentStatus,
    evaluate_transition,
    is_cancelled,
    should_update_last_visit,
)
from agenda.modules.log import write_audit_log
from agenda.modules.professionals.models import Patient, ProfessionalProfile
from agenda.modules.recurrences import repository as rec_repo
from agenda.modules.recurrences.biweekly import (
    AlternateWeekInfo,
    annotate_alternate_week_info,
    build_blocked_alternate_keys,
    build_slot_key,
    compute_paired_recurrence_map,
)
from agenda.modules.recurrences.calculator import RecurrenceType

logger = logging.getLogger(__name__)

PATIENT_CANCEL_REASON = "Cancelado pelo paciente via link"


# Custom errors, mapped to HTTP by the routers
class AppointmentNotFound(Exception):
    """
    No appointment (or referenced professional/patient) found
    """


class AppointmentForbidden(Exception):
    """
    Actor may not operate on this professional's calendar
    """


class AppointmentConflict(Exception):
    """
    The requested time overlaps a blocking appointment
    """

    def __init__(self, conflict: ConflictingAppointment):
        super().__init__("appointment_conflict")
        self.conflict = conflict


class InvalidTransition(Exception):
    """
    Status change not allowed from the current status
    """


class LinkRejected(Exception):
    """
    Patient link failed validation (expired, invalid, used, not_modifiable)
    """

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def to_public(appt: Appointment, patient_name: Optional[str] = None) -> AppointmentPublic:
    out = AppointmentPublic.model_validate(appt)
    if patient_name is None and "patient" in appt.__dict__ and appt.patient is not None:
        patient_name = appt.patient.name
    return out.model_copy(update={"patient_name": patient_name})


def links_out(links: dict[LinkAction, IssuedLink]) -> dict[LinkAction, LinkOut]:
    return {a: LinkOut(url=link.url, expires_at=link.expires_at) for a, link in links.items()}


def wants_links(appt: Appointment) -> bool:
    """Only patient consultations get confirm/cancel links."""
    return appt.type == AppointmentType.CONSULTA.value and appt.patient_id is not None


def resolve_professional(actor: Actor, professional_id: Optional[UUID]) -> UUID:
    target = professional_id or actor.professional_id
    if target is None:
        raise AppointmentForbidden("professional_required")
    if not actor.can_act_for(target):
        raise AppointmentForbidden("not_owner")
    return target


async def _load_for_actor(session: AsyncSession, appointment_id: UUID, actor: Actor) -> Appointment:
    appt = await repo.get_by_id(session, appointment_id, for_update=True)
    if not appt:
        raise AppointmentNotFound("appointment_not_found")
    if not actor.can_act_for(appt.professional_profile_id):
        raise AppointmentForbidden("not_owner")
    return appt


# BOOK
async def book_appointment_svc(
    session: AsyncSession,
    payload: AppointmentCreateRequest,
    actor: Actor,
    link_service: AppointmentLinkService | None = None,
) -> AppointmentWithLinks:
    """
    Book one entry (single transaction, see get_session).

    Logic:
    - professional scoped to the actor unless admin.
    - blocking entries go through the locked conflict check first;
      group siblings (same group_id) never conflict with each other.
    - consultations get confirm/cancel links.
    """
    professional_id = resolve_professional(actor, payload.professional_profile_id)
    if not await session.get(ProfessionalProfile, professional_id):
        raise AppointmentNotFound("professional_not_found")

    patient_name = None
    if payload.patient_id is not None:
        patient = await session.get(Patient, payload.patient_id)
        if not patient:
            raise AppointmentNotFound("patient_not_found")
        patient_name = patient.name

    scheduled_at = to_utc(payload.scheduled_at)
    end_at = (
        to_utc(payload.end_at)
        if payload.end_at is not None
        else scheduled_at + dt.timedelta(minutes=payload.duration_minutes or 0)
    )
    blocks_time = (
        payload.blocks_time
        if payload.blocks_time is not None
        else payload.type not in NON_BLOCKING_TYPES
    )

    if blocks_time:
        result = await check_conflict(
            session,
            professional_id,
            scheduled_at,
            end_at,
            exclude_group_id=payload.group_id,
        )
        if result.has_conflict and result.conflicting_appointment:
            raise AppointmentConflict(result.conflicting_appointment)

    appt = await repo.add(
        session,
        Appointment(
            professional_profile_id=professional_id,
            patient_id=payload.patient_id,
            group_id=payload.group_id,
            scheduled_at=scheduled_at,
            end_at=end_at,
            status=AppointmentStatus.AGENDADO.value,
            type=payload.type.value,
            title=payload.title,
            blocks_time=blocks_time,
            modality=payload.modality.value,
            notes=payload.notes,
        ),
    )

    links: dict[LinkAction, IssuedLink] = {}
    if wants_links(appt):
        links = await (link_service or get_link_service()).issue_pair(session, appt.id, scheduled_at)

    await write_audit_log(
        session,
        actor.id,
        "APPOINTMENT_CREATED",
        "Appointment",
        appt.id,
        {"scheduled_at": scheduled_at.isoformat(), "type": appt.type},
    )
    return AppointmentWithLinks(appointment=to_public(appt, patient_name), links=links_out(links))


# CHECK
async def check_conflict_svc(
    session: AsyncSession,
    payload: ConflictCheckRequest,
    actor: Actor,
) -> ConflictCheckResult:
    professional_id = resolve_professional(actor, payload.professional_profile_id)
    return await check_conflict(
        session,
        professional_id,
        to_utc(payload.scheduled_at),
        to_utc(payload.end_at),
        exclude_appointment_id=payload.exclude_appointment_id,
    )


# RESCHEDULE
async def reschedule_appointment_svc(
    session: AsyncSession,
    appointment_id: UUID,
    payload: AppointmentRescheduleRequest,
    actor: Actor,
    link_service: AppointmentLinkService | None = None,
) -> AppointmentWithLinks:
    """
    Move an entry in time. The entry itself (and its group siblings) are
    excluded from the conflict check; links are regenerated so old ones die.
    """
    appt = await _load_for_actor(session, appointment_id, actor)
    if appt.status not in {s.value for s in ACTIONABLE_STATUSES}:
        raise InvalidTransition(f"not_reschedulable:{appt.status}")

    duration = ensure_aware(appt.end_at) - ensure_aware(appt.scheduled_at)
    scheduled_at = to_utc(payload.scheduled_at)
    end_at = to_utc(payload.end_at) if payload.end_at is not None else scheduled_at + duration

    if appt.blocks_time:
        result = await check_conflict(
            session,
            appt.professional_profile_id,
            scheduled_at,
            end_at,
            exclude_appointment_id=appt.id,
            exclude_group_id=appt.group_id,
        )
        if result.has_conflict and result.conflicting_appointment:
            raise AppointmentConflict(result.conflicting_appointment)

    previous = ensure_aware(appt.scheduled_at)
    appt.scheduled_at = scheduled_at
    appt.end_at = end_at
    if payload.modality is not None:
        appt.modality = payload.modality.value
    if payload.notes is not None:
        appt.notes = payload.notes
    await session.flush()

    links: dict[LinkAction, IssuedLink] = {}
    if wants_links(appt):
        links = await (link_service or get_link_service()).regenerate(session, appt.id, scheduled_at)

    await write_audit_log(
        session,
        actor.id,
        "APPOINTMENT_RESCHEDULED",
        "Appointment",
        appt.id,
        {"from": previous.isoformat(), "to": scheduled_at.isoformat()},
    )
    return AppointmentWithLinks(appointment=to_public(appt), links=links_out(links))


async def apply_status_change(
    session: AsyncSession,
    appt: Appointment,
    target: AppointmentStatus,
    *,
    reason: Optional[str] = None,
    now: Optional[dt.datetime] = None,
) -> Appointment:
    """
    Validate and apply one transition on a loaded (locked) row.
    Shared by the staff endpoint and the patient link flow.
    """
    now = now or utcnow()
    result = evaluate_transition(appt.status, target.value, now)
    if not result.allowed or result.update is None:
        raise InvalidTransition(result.error or "invalid_transition")

    # Un-cancelling puts the entry back on the calendar: the slot may be gone
    if target is AppointmentStatus.AGENDADO and is_cancelled(appt.status) and appt.blocks_time:
        check = await check_conflict(
            session,
            appt.professional_profile_id,
            ensure_aware(appt.scheduled_at),
            ensure_aware(appt.end_at),
            exclude_appointment_id=appt.id,
            exclude_group_id=appt.group_id,
        )
        if check.has_conflict and check.conflicting_appointment:
            raise AppointmentConflict(check.conflicting_appointment)

    for field, value in result.update.as_values().items():
        setattr(appt, field, value)

    if is_cancelled(target):
        appt.cancellation_reason = reason
    elif target is AppointmentStatus.AGENDADO:
        appt.cancellation_reason = None

    if should_update_last_visit(target.value) and appt.patient is not None:
        visit = ensure_aware(appt.scheduled_at)
        last = appt.patient.last_visit_at
        if last is None or ensure_aware(last) < visit:
            appt.patient.last_visit_at = visit

    await session.flush()
    return appt


# STATUS
async def change_status_svc(
    session: AsyncSession,
    appointment_id: UUID,
    payload: StatusChangeRequest,
    actor: Actor,
) -> AppointmentPublic:
    appt = await _load_for_actor(session, appointment_id, actor)
    previous = appt.status
    await apply_status_change(session, appt, payload.status, reason=payload.reason)

    await write_audit_log(
        session,
        actor.id,
        "APPOINTMENT_STATUS_CHANGED",
        "Appointment",
        appt.id,
        {"from": previous, "to": payload.status.value, "reason": payload.reason},
    )
    return to_public(appt)


# RESEND LINKS
async def resend_links_svc(
    session: AsyncSession,
    appointment_id: UUID,
    actor: Actor,
    link_service: AppointmentLinkService | None = None,
) -> AppointmentWithLinks:
    appt = await _load_for_actor(session, appointment_id, actor)
    if not wants_links(appt):
        raise InvalidTransition("links_not_applicable")
    if appt.status not in {s.value for s in ACTIONABLE_STATUSES}:
        raise InvalidTransition(f"not_modifiable:{appt.status}")

    links = await (link_service or get_link_service()).regenerate(
        session, appt.id, ensure_aware(appt.scheduled_at)
    )
    await write_audit_log(session, actor.id, "APPOINTMENT_LINKS_RESENT", "Appointment", appt.id)
    return AppointmentWithLinks(appointment=to_public(appt), links=links_out(links))


async def alternate_week_annotations(
    session: AsyncSession, rows: Sequence[Appointment]
) -> dict[str, AlternateWeekInfo]:
    """
    appointment id -> alternate-week info, for entries of active biweekly
    series. The alternate week is the same slot 7 days ahead.
    """
    biweekly_rows = [
        a
        for a in rows
        if a.recurrence is not None and a.recurrence.recurrence_type == RecurrenceType.BIWEEKLY.value
    ]
    if not biweekly_rows:
        return {}

    professional_ids = {a.professional_profile_id for a in biweekly_rows}
    recurrences = [
        rec_repo.to_biweekly(r) for r in await rec_repo.list_active_biweekly(session, professional_ids)
    ]
    paired_map = compute_paired_recurrence_map(biweekly_rows, recurrences)

    week = dt.timedelta(days=7)
    ahead = [
        a
        for a in await repo.list_in_range(
            session,
            start=min(ensure_aware(a.scheduled_at) for a in biweekly_rows) + week,
            end=max(ensure_aware(a.scheduled_at) for a in biweekly_rows) + week + dt.timedelta(minutes=1),
        )
        if a.professional_profile_id in professional_ids and not is_cancelled(a.status)
    ]
    blocked = build_blocked_alternate_keys(
        [a for a in ahead if a.type != AppointmentType.CONSULTA.value and a.blocks_time]
    )

    # Actual occurrence of the partner series on the alternate week
    partner_occurrences = {
        (str(a.recurrence_id), build_slot_key(a.scheduled_at, a.professional_profile_id)): a.id
        for a in ahead
        if a.recurrence_id is not None
    }
    paired_ids: dict[str, UUID] = {}
    for a in biweekly_rows:
        partner = paired_map[str(a.id)].recurrence_id
        if partner is None:
            continue
        key = build_slot_key(ensure_aware(a.scheduled_at) + week, a.professional_profile_id)
        hit = partner_occurrences.get((str(partner), key))
        if hit is not None:
            paired_ids[str(a.id)] = hit

    return {
        str(apt.id): info
        for apt, info in annotate_alternate_week_info(biweekly_rows, paired_map, blocked, paired_ids)
        if info is not None
    }


# LIST (calendar range)
async def list_appointments_svc(
    session: AsyncSession,
    actor: Actor,
    *,
    start_date: dt.date,
    end_date: dt.date,
    professional_id: Optional[UUID] = None,
) -> AppointmentListPage:
    """
    Entries for the clinic-local days [start_date, end_date], with the
    alternate-week info of biweekly series attached.
    """
    if professional_id is None and not actor.is_admin:
        professional_id = actor.professional_id
    if professional_id is not None and not actor.can_act_for(professional_id):
        raise AppointmentForbidden("not_owner")

    start, _ = local_day_bounds(start_date)
    _, end = local_day_bounds(end_date)
    rows = await repo.list_in_range(session, start=start, end=end, professional_id=professional_id)
    info = await alternate_week_annotations(session, rows)

    items = [
        AppointmentListItem(**to_public(a).model_dump(), alternate_week_info=info.get(str(a.id)))
        for a in rows
    ]
    return AppointmentListPage(items=items, total=len(items))


# PUBLIC LINK ACTIONS
async def _validated_appointment(
    session: AsyncSession,
    credentials: LinkCredentials,
    action: LinkAction,
    link_service: AppointmentLinkService,
) -> Appointment:
    validation = await link_service.validate(session, credentials, action)
    if not validation.valid or validation.appointment_id is None:
        logger.info("link rejected action=%s reason=%s", action.value, validation.reason)
        raise LinkRejected(validation.reason or "invalid")

    appt = await repo.get_by_id(session, validation.appointment_id, for_update=True)
    if not appt:
        raise LinkRejected("invalid")
    # Consumed before acting; losing a race with another request means "used"
    if not await link_service.invalidate(session, credentials) and link_service.single_use:
        raise LinkRejected("used")
    return appt


async def confirm_by_link_svc(
    session: AsyncSession,
    credentials: LinkCredentials,
    link_service: AppointmentLinkService | None = None,
) -> PublicActionResult:
    link_service = link_service or get_link_service()
    appt = await _validated_appointment(session, credentials, LinkAction.CONFIRM, link_service)

    # Confirming twice is a no-op for the patient
    if appt.status != AppointmentStatus.CONFIRMADO.value:
        await apply_status_change(session, appt, AppointmentStatus.CONFIRMADO)

    await write_audit_log(session, None, "APPOINTMENT_CONFIRMED_BY_LINK", "Appointment", appt.id)
    return PublicActionResult(
        appointment_id=appt.id,
        status=AppointmentStatus(appt.status),
        message="Agendamento confirmado",
    )


async def cancel_by_link_svc(
    session: AsyncSession,
    credentials: LinkCredentials,
    link_service: AppointmentLinkService | None = None,
) -> PublicActionResult:
    link_service = link_service or get_link_service()
    appt = await _validated_appointment(session, credentials, LinkAction.CANCEL, link_service)

    await apply_status_change(
        session, appt, AppointmentStatus.CANCELADO_ACORDADO, reason=PATIENT_CANCEL_REASON
    )
    # The cancel link consumes every outstanding link of the appointment
    await link_service.invalidate_all(session, appt.id)

    await write_audit_log(session, None, "APPOINTMENT_CANCELLED_BY_LINK", "Appointment", appt.id)
    return PublicActionResult(
        appointment_id=appt.id,
        status=AppointmentStatus(appt.status),
        message="Agendamento cancelado",
    )
