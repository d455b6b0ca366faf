# agenda/modules/recurrences/service.py
from __future__ import annotations

import datetime as dt
import logging
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.core.config import settings
from agenda.core.security import Actor
from agenda.core.timeutils import (
    clinic_tz,
    day_of_week,
    ensure_aware,
    hhmm,
    local_date,
    local_day_bounds,
    minutes_of_day,
    parse_hhmm,
    to_utc,
    utcnow,
)
from agenda.modules.appointments import repository as appt_repo
from agenda.modules.appointments.conflicts import BulkConflict, check_conflict, check_conflicts_bulk
from agenda.modules.appointments.links import AppointmentLinkService, get_link_service
from agenda.modules.appointments.models import NON_BLOCKING_TYPES, Appointment, AppointmentType
from agenda.modules.appointments.schemas import AppointmentWithLinks
from agenda.modules.appointments.service import (
    AppointmentConflict,
    AppointmentForbidden,
    AppointmentNotFound,
    links_out,
    resolve_professional,
    to_public,
    wants_links,
)
from agenda.modules.appointments.status import ACTIONABLE_STATUSES, AppointmentStatus
from agenda.modules.log import write_audit_log
from agenda.modules.professionals.models import Patient, ProfessionalProfile
from agenda.modules.recurrences import repository as repo
from agenda.modules.recurrences.calculator import (
    RecurrenceDate,
    RecurrenceEndType,
    RecurrenceType,
    ShiftedDates,
    add_exception,
    add_months,
    calculate_day_shifted_dates,
    calculate_next_window_dates,
    calculate_recurrence_dates,
    calculate_recurrence_dates_with_exceptions,
    format_recurrence_summary,
    interval_days,
    is_off_week,
    remove_exception,
    validate_recurrence_options,
)
from agenda.modules.recurrences.models import AppointmentRecurrence
from agenda.modules.recurrences.schemas import (
    ExceptionToggleRequest,
    ExceptionToggleResult,
    ExtensionJobResult,
    ExtensionRecurrenceReport,
    FinalizeRequest,
    FinalizeResult,
    RecurrenceCreateRequest,
    RecurrencePreview,
    RecurrencePreviewRequest,
    RecurrencePublic,
    RecurrenceUpdateRequest,
    RecurrenceUpdateResult,
    SeriesCreated,
)

logger = logging.getLogger(__name__)

SKIPPED_DATE_REASON = "Excecao na recorrencia - data pulada"
FINALIZED_REASON = "Recorrencia finalizada"
FREQUENCY_CHANGED_REASON = "Frequencia da recorrencia alterada"


class RecurrenceNotFound(Exception):
    """
    No recurrence found
    """


class RecurrenceInvalid(Exception):
    """
    Bad recurrence options or an operation the series' state does not allow
    """


class SeriesConflict(Exception):
    """
    One or more occurrences overlap blocking appointments
    """

    def __init__(self, conflicts: list[BulkConflict]):
        super().__init__("series_conflict")
        self.conflicts = conflicts


def _to_public(rec: AppointmentRecurrence) -> RecurrencePublic:
    return RecurrencePublic.model_validate(rec)


async def _load_for_actor(
    session: AsyncSession, recurrence_id: UUID, actor: Actor
) -> AppointmentRecurrence:
    rec = await repo.get_by_id(session, recurrence_id, for_update=True)
    if not rec:
        raise RecurrenceNotFound("recurrence_not_found")
    if not actor.can_act_for(rec.professional_profile_id):
        raise AppointmentForbidden("not_owner")
    if not rec.is_active:
        raise RecurrenceInvalid("recurrence_inactive")
    return rec


def _is_series_date(rec: AppointmentRecurrence, day: dt.date) -> bool:
    """Whether `day` is one of the series' dates (ignoring exceptions)."""
    if day < rec.start_date or (rec.end_date is not None and day > rec.end_date):
        return False
    rtype = RecurrenceType(rec.recurrence_type)
    if rtype is RecurrenceType.MONTHLY:
        months = (day.year - rec.start_date.year) * 12 + day.month - rec.start_date.month
        return add_months(rec.start_date, months) == day
    if day_of_week(day) != rec.day_of_week:
        return False
    if rtype is RecurrenceType.BIWEEKLY:
        return not is_off_week(rec.start_date, day)
    return True


async def _occurrence_template(session: AsyncSession, rec: AppointmentRecurrence) -> dict:
    """Entry fields copied onto newly materialized occurrences."""
    first = (
        await session.execute(
            select(Appointment)
            .where(Appointment.recurrence_id == rec.id)
            .order_by(Appointment.scheduled_at)
            .limit(1)
        )
    ).unique().scalar_one_or_none()
    if first is None:
        return {"type": AppointmentType.CONSULTA.value, "title": None, "blocks_time": True, "notes": None}
    return {"type": first.type, "title": first.title, "blocks_time": first.blocks_time, "notes": first.notes}


def _new_occurrence(rec: AppointmentRecurrence, date: RecurrenceDate, template: dict) -> Appointment:
    return Appointment(
        professional_profile_id=rec.professional_profile_id,
        patient_id=rec.patient_id,
        recurrence_id=rec.id,
        scheduled_at=date.scheduled_at,
        end_at=date.end_at,
        status=AppointmentStatus.AGENDADO.value,
        modality=rec.modality,
        **template,
    )


async def _materialize(
    session: AsyncSession,
    rec: AppointmentRecurrence,
    dates: Sequence[RecurrenceDate],
    template: dict,
    link_service: AppointmentLinkService,
    patient_name: Optional[str] = None,
) -> list[AppointmentWithLinks]:
    appts = [_new_occurrence(rec, d, template) for d in dates]
    await appt_repo.add_many(session, appts)

    out: list[AppointmentWithLinks] = []
    for appt in appts:
        links = {}
        if wants_links(appt):
            links = await link_service.issue_pair(session, appt.id, appt.scheduled_at)
        out.append(
            AppointmentWithLinks(
                appointment=to_public(appt, patient_name),
                links=links_out(links),
            )
        )
    return out



def _patient_name(rec: AppointmentRecurrence) -> Optional[str]:
    # Only when already loaded; never lazy-load on an async session
    patient = rec.__dict__.get("patient")
    return patient.name if patient is not None else None


# PREVIEW
def preview_recurrence_svc(payload: RecurrencePreviewRequest) -> RecurrencePreview:
    """Expansion with exception flags; touches no storage."""
    options = payload.options()
    validation = validate_recurrence_options(options)
    if not validation.valid:
        raise RecurrenceInvalid(validation.error)

    dates = calculate_recurrence_dates_with_exceptions(
        payload.start_date,
        payload.start_time,
        payload.duration_minutes,
        options,
        [d.isoformat() for d in payload.exceptions],
    )
    return RecurrencePreview(
        summary=format_recurrence_summary(
            payload.recurrence_type, payload.recurrence_end_type, payload.occurrences, payload.end_date
        ),
        dates=dates,
        active_count=sum(1 for d in dates if not d.is_exception),
    )


# CREATE SERIES
async def create_series_svc(
    session: AsyncSession,
    payload: RecurrenceCreateRequest,
    actor: Actor,
    link_service: AppointmentLinkService | None = None,
) -> SeriesCreated:
    """
    Create a recurrence and all of its occurrences in one transaction.

    Logic:
    - options validated first (pt-BR message on failure).
    - every occurrence checked with one locked bulk query.
    - on_conflict="abort" inserts nothing when any date conflicts;
      "skip" records conflicting dates as exceptions and books the rest.
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
    elif payload.type is AppointmentType.CONSULTA:
        raise RecurrenceInvalid("patient_id is required for CONSULTA")
    if payload.type is not AppointmentType.CONSULTA and not payload.title:
        raise RecurrenceInvalid("title is required for non-consultation entries")

    options = payload.options()
    validation = validate_recurrence_options(options)
    if not validation.valid:
        raise RecurrenceInvalid(validation.error)

    dates = calculate_recurrence_dates(
        payload.start_date,
        payload.start_time,
        payload.duration_minutes,
        options,
        indefinite_window_months=settings.INDEFINITE_WINDOW_MONTHS,
    )
    blocks_time = payload.type not in NON_BLOCKING_TYPES

    conflicts = await check_conflicts_bulk(session, professional_id, dates) if blocks_time else []
    if conflicts and (payload.on_conflict == "abort" or len(conflicts) == len(dates)):
        raise SeriesConflict(conflicts)

    skipped = {c.index for c in conflicts}
    bookable = [d for i, d in enumerate(dates) if i not in skipped]
    exceptions: list[str] = []
    for c in conflicts:
        exceptions = add_exception(c.date, exceptions)

    end_time = (
        dt.datetime.combine(payload.start_date, parse_hhmm(payload.start_time))
        + dt.timedelta(minutes=payload.duration_minutes)
    )
    rec = await repo.add(
        session,
        AppointmentRecurrence(
            professional_profile_id=professional_id,
            patient_id=payload.patient_id,
            recurrence_type=payload.recurrence_type.value,
            recurrence_end_type=payload.recurrence_end_type.value,
            day_of_week=day_of_week(payload.start_date),
            start_time=payload.start_time,
            end_time=hhmm(end_time.time()),
            duration=payload.duration_minutes,
            start_date=payload.start_date,
            end_date=payload.end_date if payload.recurrence_end_type is RecurrenceEndType.BY_DATE else None,
            occurrences=(
                payload.occurrences
                if payload.recurrence_end_type is RecurrenceEndType.BY_OCCURRENCES
                else None
            ),
            last_generated_date=(
                dt.date.fromisoformat(dates[-1].date)
                if payload.recurrence_end_type is RecurrenceEndType.INDEFINITE
                else None
            ),
            exceptions=exceptions,
            modality=payload.modality.value,
            is_active=True,
        ),
    )

    template = {
        "type": payload.type.value,
        "title": payload.title,
        "blocks_time": blocks_time,
        "notes": payload.notes,
    }
    created = await _materialize(
        session, rec, bookable, template, link_service or get_link_service(), patient_name
    )

    await write_audit_log(
        session,
        actor.id,
        "RECURRENCE_CREATED",
        "AppointmentRecurrence",
        rec.id,
        {
            "occurrences": len(created),
            "skipped_dates": [c.date for c in conflicts],
            "summary": format_recurrence_summary(
                payload.recurrence_type, payload.recurrence_end_type, payload.occurrences, payload.end_date
            ),
        },
    )
    return SeriesCreated(recurrence=_to_public(rec), appointments=created, skipped=conflicts)


# SKIP / UNSKIP
async def toggle_exception_svc(
    session: AsyncSession,
    recurrence_id: UUID,
    payload: ExceptionToggleRequest,
    actor: Actor,
    link_service: AppointmentLinkService | None = None,
) -> ExceptionToggleResult:
    """
    skip: add the date to the exceptions and cancel that day's active
    occurrence as CANCELADO_PROFISSIONAL.
    unskip: remove the date and, when the day has no active occurrence,
    book a fresh one (conflict-checked). Cancelled rows stay cancelled.
    """
    rec = await _load_for_actor(session, recurrence_id, actor)
    key = payload.date.isoformat()
    day_start, day_end = local_day_bounds(payload.date)
    day_rows = [
        a
        for a in await appt_repo.list_by_recurrence(session, rec.id, from_time=day_start, for_update=True)
        if a.scheduled_at < day_end
    ]
    active = [a for a in day_rows if a.status in {s.value for s in ACTIONABLE_STATUSES}]

    if payload.action == "skip":
        if key in rec.exceptions:
            raise RecurrenceInvalid("Esta data ja e uma excecao")
        if not day_rows and not _is_series_date(rec, payload.date):
            raise RecurrenceInvalid("Data nao pertence a recorrencia")

        rec.exceptions = add_exception(key, rec.exceptions)
        now = utcnow()
        for appt in active:
            appt.status = AppointmentStatus.CANCELADO_PROFISSIONAL.value
            appt.cancelled_at = now
            appt.cancellation_reason = SKIPPED_DATE_REASON
            await (link_service or get_link_service()).invalidate_all(session, appt.id)
        await session.flush()

        await write_audit_log(
            session,
            actor.id,
            "RECURRENCE_EXCEPTION_ADDED",
            "AppointmentRecurrence",
            rec.id,
            {"date": key, "cancelled": [str(a.id) for a in active]},
        )
        return ExceptionToggleResult(
            recurrence=_to_public(rec),
            message=f"Data {key} pulada com sucesso",
            cancelled=[to_public(a) for a in active],
        )

    if key not in rec.exceptions:
        raise RecurrenceInvalid("Esta data nao e uma excecao")
    rec.exceptions = remove_exception(key, rec.exceptions)

    restored = None
    if not active:
        start = dt.datetime.combine(payload.date, parse_hhmm(rec.start_time), tzinfo=clinic_tz())
        occurrence = RecurrenceDate(
            date=key, scheduled_at=start, end_at=start + dt.timedelta(minutes=rec.duration)
        )
        template = await _occurrence_template(session, rec)
        if template["blocks_time"]:
            check = await check_conflict(
                session, rec.professional_profile_id, occurrence.scheduled_at, occurrence.end_at
            )
            if check.has_conflict and check.conflicting_appointment:
                raise AppointmentConflict(check.conflicting_appointment)
        restored = (
            await _materialize(
                session, rec, [occurrence], template, link_service or get_link_service(), _patient_name(rec)
            )
        )[0]
    await session.flush()

    await write_audit_log(
        session,
        actor.id,
        "RECURRENCE_EXCEPTION_REMOVED",
        "AppointmentRecurrence",
        rec.id,
        {"date": key, "restored": str(restored.appointment.id) if restored else None},
    )
    return ExceptionToggleResult(
        recurrence=_to_public(rec),
        message=f"Data {key} restaurada com sucesso",
        restored=restored,
    )


# UPDATE
def _fits_pattern(day: dt.date, anchor: dt.date, recurrence_type: RecurrenceType) -> bool:
    if recurrence_type is RecurrenceType.MONTHLY:
        months = (day.year - anchor.year) * 12 + day.month - anchor.month
        return add_months(anchor, months) == day
    return (day - anchor).days % interval_days(recurrence_type) == 0


async def update_recurrence_svc(
    session: AsyncSession,
    recurrence_id: UUID,
    payload: RecurrenceUpdateRequest,
    actor: Actor,
    link_service: AppointmentLinkService | None = None,
) -> RecurrenceUpdateResult:
    """
    Change a series' weekday, time, frequency, end condition or modality.

    Logic:
    - weekday: future active occurrences move forward (time of day kept
      unless the time changes too); the anchor moves with them.
    - frequency: future occurrences that no longer fit the new pattern,
      counted from the first future occurrence, are cancelled.
    - time/modality reach future occurrences when apply_to_future is set.
    - every moved occurrence goes through one bulk conflict check that
      excludes the series' own future rows; any conflict rejects it all.
    """
    rec = await _load_for_actor(session, recurrence_id, actor)
    old_type = RecurrenceType(rec.recurrence_type)
    new_type = payload.recurrence_type or old_type
    old_end_type = RecurrenceEndType(rec.recurrence_end_type)
    new_end_type = payload.recurrence_end_type or old_end_type

    day_change = payload.day_of_week is not None and payload.day_of_week != rec.day_of_week
    type_change = new_type is not old_type
    if day_change and new_type is RecurrenceType.MONTHLY:
        raise RecurrenceInvalid("Recorrencia mensal nao possui dia da semana fixo")

    new_start_time = payload.start_time or rec.start_time
    new_end_time = payload.end_time or rec.end_time
    time_change = (new_start_time, new_end_time) != (rec.start_time, rec.end_time)
    duration = minutes_of_day(new_end_time) - minutes_of_day(new_start_time)
    if time_change and duration <= 0:
        raise RecurrenceInvalid("Horario final deve ser apos o horario inicial")

    end_date = rec.end_date
    occurrences = rec.occurrences
    if new_end_type is RecurrenceEndType.BY_DATE:
        end_date = payload.end_date or rec.end_date
        occurrences = None
        if end_date is None:
            raise RecurrenceInvalid("Data final e obrigatoria para recorrencia por data")
    elif new_end_type is RecurrenceEndType.BY_OCCURRENCES:
        occurrences = payload.occurrences or rec.occurrences
        end_date = None
        if not occurrences:
            raise RecurrenceInvalid("Numero de ocorrencias e obrigatorio")
    else:
        end_date, occurrences = None, None
    end_change = (new_end_type, end_date, occurrences) != (old_end_type, rec.end_date, rec.occurrences)
    modality_change = payload.modality is not None and payload.modality.value != rec.modality

    if not (day_change or type_change or time_change or end_change or modality_change):
        raise RecurrenceInvalid("Nenhuma alteracao fornecida")

    old_values = {
        "recurrence_type": old_type.value,
        "day_of_week": rec.day_of_week,
        "start_time": rec.start_time,
        "end_time": rec.end_time,
        "recurrence_end_type": old_end_type.value,
        "end_date": rec.end_date.isoformat() if rec.end_date else None,
        "occurrences": rec.occurrences,
        "modality": rec.modality,
    }

    future = list(
        await appt_repo.list_by_recurrence(
            session, rec.id, from_time=utcnow(), statuses=ACTIONABLE_STATUSES, for_update=True
        )
    )

    start_date = rec.start_date
    removed: list[Appointment] = []
    if type_change and future:
        anchor = local_date(future[0].scheduled_at)
        removed = [a for a in future if not _fits_pattern(local_date(a.scheduled_at), anchor, new_type)]
        start_date = anchor
    remaining = [a for a in future if a not in removed]

    days = 0
    if day_change:
        days = (payload.day_of_week - rec.day_of_week) % 7 or 7
        start_date = start_date + dt.timedelta(days=days)

    retime = time_change and (payload.apply_to_future or day_change)
    moves: list[tuple[Appointment, ShiftedDates]] = []
    for appt in remaining:
        new = ShiftedDates(scheduled_at=appt.scheduled_at, end_at=appt.end_at)
        if day_change:
            new = calculate_day_shifted_dates(appt.scheduled_at, appt.end_at, rec.day_of_week, payload.day_of_week)
        if retime:
            start = dt.datetime.combine(local_date(new.scheduled_at), parse_hhmm(new_start_time), tzinfo=clinic_tz())
            new = ShiftedDates(scheduled_at=start, end_at=start + dt.timedelta(minutes=duration))
        if day_change or retime:
            moves.append((appt, new))

    if moves and moves[0][0].blocks_time:
        conflicts = await check_conflicts_bulk(
            session,
            rec.professional_profile_id,
            [new for _, new in moves],
            exclude_appointment_ids=[a.id for a in future],
        )
        if conflicts:
            raise SeriesConflict(conflicts)

    service = link_service or get_link_service()
    now = utcnow()
    for appt in removed:
        appt.status = AppointmentStatus.CANCELADO_PROFISSIONAL.value
        appt.cancelled_at = now
        appt.cancellation_reason = FREQUENCY_CHANGED_REASON
        await service.invalidate_all(session, appt.id)
    for appt, new in moves:
        appt.scheduled_at = to_utc(new.scheduled_at)
        appt.end_at = to_utc(new.end_at)
    if modality_change and (payload.apply_to_future or day_change):
        for appt in remaining:
            appt.modality = payload.modality.value

    if new_end_type is RecurrenceEndType.INDEFINITE and old_end_type is not RecurrenceEndType.INDEFINITE:
        # Extension picks up after the last occurrence already on the calendar
        existing = await appt_repo.list_by_recurrence(session, rec.id)
        rec.last_generated_date = local_date(existing[-1].scheduled_at) if existing else start_date
    elif new_end_type is not RecurrenceEndType.INDEFINITE:
        rec.last_generated_date = None
    elif days and rec.last_generated_date is not None:
        rec.last_generated_date = rec.last_generated_date + dt.timedelta(days=days)

    rec.recurrence_type = new_type.value
    rec.recurrence_end_type = new_end_type.value
    rec.end_date = end_date
    rec.occurrences = occurrences
    rec.start_date = start_date
    rec.day_of_week = payload.day_of_week if day_change else day_of_week(start_date)
    rec.start_time = new_start_time
    rec.end_time = new_end_time
    rec.duration = duration if time_change else rec.duration
    if modality_change:
        rec.modality = payload.modality.value
    await session.flush()

    for appt, _ in moves:
        if wants_links(appt):
            await service.regenerate(session, appt.id, ensure_aware(appt.scheduled_at))

    message = "Recorrencia atualizada com sucesso"
    if removed:
        message = (
            f"Recorrencia atualizada. {len(removed)} agendamento(s) removido(s) "
            "para ajustar a nova frequencia."
        )

    await write_audit_log(
        session,
        actor.id,
        "RECURRENCE_UPDATED",
        "AppointmentRecurrence",
        rec.id,
        {
            "old": old_values,
            "new": {
                "recurrence_type": rec.recurrence_type,
                "day_of_week": rec.day_of_week,
                "start_time": rec.start_time,
                "end_time": rec.end_time,
                "recurrence_end_type": rec.recurrence_end_type,
                "end_date": rec.end_date.isoformat() if rec.end_date else None,
                "occurrences": rec.occurrences,
                "modality": rec.modality,
            },
            "updated": len(moves),
            "removed": len(removed),
        },
    )
    logger.info("recurrence=%s updated moved=%d removed=%d", rec.id, len(moves), len(removed))
    return RecurrenceUpdateResult(
        recurrence=_to_public(rec),
        message=message,
        updated=[to_public(a) for a, _ in moves],
        removed=[to_public(a) for a in removed],
    )


# FINALIZE
async def finalize_recurrence_svc(
    session: AsyncSession,
    recurrence_id: UUID,
    payload: FinalizeRequest,
    actor: Actor,
    link_service: AppointmentLinkService | None = None,
) -> FinalizeResult:
    """
    Turn an INDEFINITE series into BY_DATE. Occurrences after the end date
    are kept unless cancel_future_appointments is set, in which case the
    active ones are cancelled as CANCELADO_PROFISSIONAL.
    """
    rec = await _load_for_actor(session, recurrence_id, actor)
    if RecurrenceEndType(rec.recurrence_end_type) is not RecurrenceEndType.INDEFINITE:
        raise RecurrenceInvalid("Apenas recorrencias indefinidas podem ser finalizadas")
    if payload.end_date < local_date(utcnow()):
        raise RecurrenceInvalid("Data de fim nao pode ser no passado")

    rec.recurrence_end_type = RecurrenceEndType.BY_DATE.value
    rec.end_date = payload.end_date
    rec.last_generated_date = None

    cancelled = 0
    if payload.cancel_future_appointments:
        _, after_end = local_day_bounds(payload.end_date)
        later = await appt_repo.list_by_recurrence(
            session, rec.id, from_time=after_end, statuses=ACTIONABLE_STATUSES, for_update=True
        )
        ids = [a.id for a in later]
        cancelled = await appt_repo.cancel_many(
            session,
            ids,
            status=AppointmentStatus.CANCELADO_PROFISSIONAL,
            cancelled_at=utcnow(),
            reason=FINALIZED_REASON,
        )
        service = link_service or get_link_service()
        for appointment_id in ids:
            await service.invalidate_all(session, appointment_id)
    await session.flush()

    await write_audit_log(
        session,
        actor.id,
        "RECURRENCE_FINALIZED",
        "AppointmentRecurrence",
        rec.id,
        {"end_date": payload.end_date.isoformat(), "cancelled": cancelled},
    )
    return FinalizeResult(recurrence=_to_public(rec), cancelled_count=cancelled)


# EXTENSION JOB
async def extend_indefinite_recurrences(
    session: AsyncSession,
    now: Optional[dt.datetime] = None,
    link_service: AppointmentLinkService | None = None,
) -> ExtensionJobResult:
    """
    Keep INDEFINITE series generated ahead of time.

    For each active INDEFINITE series whose last generated date (or anchor)
    is within EXTENSION_THRESHOLD_MONTHS of now: generate the next
    EXTENSION_MONTHS window strictly after the last generated date, drop
    exception and conflicting dates, book the rest and move
    last_generated_date to the end of the window. Running it twice over the
    same state creates nothing the second time.
    """
    now = now or utcnow()
    service = link_service or get_link_service()
    horizon = add_months(local_date(now), settings.EXTENSION_THRESHOLD_MONTHS)
    result = ExtensionJobResult(run_at=now)

    for rec in await repo.list_indefinite_due(session, horizon=horizon):
        last = rec.last_generated_date or rec.start_date
        try:
            window = calculate_next_window_dates(
                last,
                rec.start_time,
                rec.duration,
                rec.recurrence_type,
                rec.day_of_week,
                settings.EXTENSION_MONTHS,
                anchor_date=rec.start_date,
            )
        except ValueError:
            logger.exception("cannot expand recurrence=%s", rec.id)
            result.errors.append(f"Recurrence {rec.id}: invalid definition")
            continue

        if not window:
            result.recurrences_skipped += 1
            continue

        skipped_dates = set(rec.exceptions)
        valid = [d for d in window if d.date not in skipped_dates]
        template = await _occurrence_template(session, rec)
        conflicts = (
            await check_conflicts_bulk(session, rec.professional_profile_id, valid)
            if template["blocks_time"]
            else []
        )
        conflicting = {c.index for c in conflicts}
        bookable = [d for i, d in enumerate(valid) if i not in conflicting]

        if bookable:
            await _materialize(session, rec, bookable, template, service, _patient_name(rec))
        rec.last_generated_date = dt.date.fromisoformat(window[-1].date)

        result.recurrences_processed += 1
        result.appointments_created += len(bookable)
        result.details.append(
            ExtensionRecurrenceReport(
                recurrence_id=rec.id,
                created=len(bookable),
                skipped_exceptions=len(window) - len(valid),
                skipped_conflicts=len(conflicts),
                last_generated_date=rec.last_generated_date,
            )
        )
        logger.info(
            "extended recurrence=%s created=%d conflicts=%d through=%s",
            rec.id, len(bookable), len(conflicts), rec.last_generated_date,
        )

    await session.flush()
    await write_audit_log(
        session,
        None,
        "EXTEND_RECURRENCES_JOB_EXECUTED",
        "CronJob",
        "extend-recurrences",
        {
            "recurrences_processed": result.recurrences_processed,
            "recurrences_skipped": result.recurrences_skipped,
            "appointments_created": result.appointments_created,
            "errors_count": len(result.errors),
        },
    )
    return result
