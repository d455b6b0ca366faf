import datetime as dt
from urllib.parse import parse_qs, urlsplit

import pytest
from sqlalchemy import update

from agenda.core.security import Actor, Role
from agenda.core.timeutils import utcnow
from agenda.modules.appointments.links import LinkCredentials, StoredTokenService
from agenda.modules.appointments.models import Appointment, AppointmentToken, AppointmentType, LinkAction
from agenda.modules.appointments.schemas import (
    AppointmentCreateRequest,
    AppointmentRescheduleRequest,
    ConflictCheckRequest,
    StatusChangeRequest,
)
from agenda.modules.appointments.service import (
    AppointmentConflict,
    AppointmentForbidden,
    AppointmentNotFound,
    InvalidTransition,
    LinkRejected,
    book_appointment_svc,
    cancel_by_link_svc,
    change_status_svc,
    check_conflict_svc,
    confirm_by_link_svc,
    list_appointments_svc,
    reschedule_appointment_svc,
)
from agenda.modules.appointments.status import AppointmentStatus
from agenda.modules.professionals.models import Patient

UTC = dt.timezone.utc


def local(day: int, hour: int, minute: int = 0) -> dt.datetime:
    # Naive values are clinic time (UTC-3)
    return dt.datetime(2030, 3, day, hour, minute)


def token_of(result, action: LinkAction) -> str:
    url = result.links[action].url
    return parse_qs(urlsplit(url).query)["token"][0]


async def book(session, actor, patient, start: dt.datetime, minutes: int = 50, **kw):
    payload = AppointmentCreateRequest(
        patient_id=patient.id, scheduled_at=start, duration_minutes=minutes, **kw
    )
    return await book_appointment_svc(session, payload, actor)


async def test_booking_stores_utc_and_issues_links(session, actor, professional, patient) -> None:
    result = await book(session, actor, patient, local(4, 9))

    appt = result.appointment
    assert appt.professional_profile_id == professional.id
    assert appt.scheduled_at == dt.datetime(2030, 3, 4, 12, 0, tzinfo=UTC)
    assert appt.end_at - appt.scheduled_at == dt.timedelta(minutes=50)
    assert appt.status is AppointmentStatus.AGENDADO
    assert appt.patient_name == "Maria Silva"
    assert set(result.links) == {LinkAction.CONFIRM, LinkAction.CANCEL}
    assert result.links[LinkAction.CONFIRM].url.startswith("https://agenda.test/confirm?token=")


async def test_overlapping_booking_is_rejected(session, actor, patient, other_patient) -> None:
    await book(session, actor, patient, local(4, 9))

    with pytest.raises(AppointmentConflict) as exc:
        await book(session, actor, other_patient, local(4, 9, 30))

    assert exc.value.conflict.patient_name == "Maria Silva"


async def test_back_to_back_booking_is_accepted(session, actor, patient, other_patient) -> None:
    await book(session, actor, patient, local(4, 9))

    result = await book(session, actor, other_patient, local(4, 9, 50))

    assert result.appointment.status is AppointmentStatus.AGENDADO


async def test_reminder_never_blocks(session, actor, patient) -> None:
    await book(session, actor, patient, local(4, 9))
    payload = AppointmentCreateRequest(
        scheduled_at=local(4, 9), duration_minutes=10, type=AppointmentType.LEMBRETE, title="Ligar"
    )

    result = await book_appointment_svc(session, payload, actor)

    assert not result.appointment.blocks_time
    assert result.links == {}


async def test_professional_cannot_book_on_another_calendar(session, other_professional, professional, patient) -> None:
    intruder = Actor(id="user-bruno", role=Role.PROFESSIONAL, professional_id=other_professional.id)
    payload = AppointmentCreateRequest(
        professional_profile_id=professional.id,
        patient_id=patient.id,
        scheduled_at=local(4, 9),
        duration_minutes=50,
    )

    with pytest.raises(AppointmentForbidden):
        await book_appointment_svc(session, payload, intruder)


async def test_admin_books_for_any_professional(session, admin, professional, patient) -> None:
    payload = AppointmentCreateRequest(
        professional_profile_id=professional.id,
        patient_id=patient.id,
        scheduled_at=local(4, 9),
        duration_minutes=50,
    )

    result = await book_appointment_svc(session, payload, admin)

    assert result.appointment.professional_profile_id == professional.id


async def test_unknown_patient(session, actor, professional) -> None:
    payload = AppointmentCreateRequest(
        patient_id=professional.id, scheduled_at=local(4, 9), duration_minutes=50
    )

    with pytest.raises(AppointmentNotFound):
        await book_appointment_svc(session, payload, actor)


async def test_check_conflict_service(session, actor, patient) -> None:
    booked = await book(session, actor, patient, local(4, 9))
    payload = ConflictCheckRequest(scheduled_at=local(4, 9, 20), end_at=local(4, 10))

    found = await check_conflict_svc(session, payload, actor)
    excluded = await check_conflict_svc(
        session, payload.model_copy(update={"exclude_appointment_id": booked.appointment.id}), actor
    )

    assert found.has_conflict
    assert not excluded.has_conflict


async def test_finalizing_moves_last_visit(session, actor, patient) -> None:
    booked = await book(session, actor, patient, local(4, 9))
    session.expunge_all()

    result = await change_status_svc(
        session, booked.appointment.id, StatusChangeRequest(status=AppointmentStatus.FINALIZADO), actor
    )

    assert result.status is AppointmentStatus.FINALIZADO
    refreshed = await session.get(Patient, patient.id)
    assert refreshed.last_visit_at == dt.datetime(2030, 3, 4, 12, 0, tzinfo=UTC)

    with pytest.raises(InvalidTransition):
        await change_status_svc(
            session, booked.appointment.id, StatusChangeRequest(status=AppointmentStatus.AGENDADO), actor
        )


async def test_cancel_stamps_and_reason(session, actor, patient) -> None:
    booked = await book(session, actor, patient, local(4, 9))
    session.expunge_all()

    result = await change_status_svc(
        session,
        booked.appointment.id,
        StatusChangeRequest(status=AppointmentStatus.CANCELADO_FALTA, reason="Nao compareceu"),
        actor,
    )

    assert result.cancelled_at is not None
    assert result.cancellation_reason == "Nao compareceu"


async def test_uncancel_rechecks_the_slot(session, actor, patient, other_patient) -> None:
    first = await book(session, actor, patient, local(4, 9))
    session.expunge_all()
    await change_status_svc(
        session,
        first.appointment.id,
        StatusChangeRequest(status=AppointmentStatus.CANCELADO_ACORDADO),
        actor,
    )
    await book(session, actor, other_patient, local(4, 9))
    session.expunge_all()

    with pytest.raises(AppointmentConflict):
        await change_status_svc(
            session, first.appointment.id, StatusChangeRequest(status=AppointmentStatus.AGENDADO), actor
        )


async def test_reschedule_moves_entry_and_replaces_links(session, actor, patient) -> None:
    booked = await book(session, actor, patient, local(4, 9))
    old_confirm = token_of(booked, LinkAction.CONFIRM)
    session.expunge_all()

    moved = await reschedule_appointment_svc(
        session,
        booked.appointment.id,
        AppointmentRescheduleRequest(scheduled_at=local(4, 9, 20)),
        actor,
    )

    assert moved.appointment.scheduled_at == dt.datetime(2030, 3, 4, 12, 20, tzinfo=UTC)
    assert moved.appointment.end_at == dt.datetime(2030, 3, 4, 13, 10, tzinfo=UTC)
    with pytest.raises(LinkRejected) as exc:
        await confirm_by_link_svc(session, LinkCredentials(token=old_confirm))
    assert exc.value.reason == "used"


async def test_confirm_by_link_is_single_use(session, actor, patient) -> None:
    booked = await book(session, actor, patient, local(4, 9))
    credentials = LinkCredentials(token=token_of(booked, LinkAction.CONFIRM))

    result = await confirm_by_link_svc(session, credentials)

    assert result.status is AppointmentStatus.CONFIRMADO
    with pytest.raises(LinkRejected) as exc:
        await confirm_by_link_svc(session, credentials)
    assert exc.value.reason == "used"


async def test_cancel_by_link_kills_confirm_link(session, actor, patient) -> None:
    booked = await book(session, actor, patient, local(4, 9))
    session.expunge_all()

    result = await cancel_by_link_svc(session, LinkCredentials(token=token_of(booked, LinkAction.CANCEL)))

    assert result.status is AppointmentStatus.CANCELADO_ACORDADO
    with pytest.raises(LinkRejected) as exc:
        await confirm_by_link_svc(session, LinkCredentials(token=token_of(booked, LinkAction.CONFIRM)))
    assert exc.value.reason == "used"


async def test_cancel_link_cannot_be_used_as_confirm(session, actor, patient) -> None:
    booked = await book(session, actor, patient, local(4, 9))

    with pytest.raises(LinkRejected) as exc:
        await confirm_by_link_svc(session, LinkCredentials(token=token_of(booked, LinkAction.CANCEL)))

    assert exc.value.reason == "invalid"


async def test_list_is_scoped_to_clinic_days(session, actor, patient) -> None:
    await book(session, actor, patient, local(4, 9))
    await book(session, actor, patient, local(4, 22))  # 01:00 UTC on the 5th
    await book(session, actor, patient, local(5, 9))
    session.expunge_all()

    page = await list_appointments_svc(
        session, actor, start_date=dt.date(2030, 3, 4), end_date=dt.date(2030, 3, 4)
    )

    assert page.total == 2
    assert [i.patient_name for i in page.items] == ["Maria Silva", "Maria Silva"]
    assert all(i.alternate_week_info is None for i in page.items)


class TokenSpentMeanwhile(StoredTokenService):
    """Another request consumes the token right after this one validated it."""

    async def validate(self, session, credentials, expected_action, now=None):
        result = await super().validate(session, credentials, expected_action, now)
        await session.execute(
            update(AppointmentToken)
            .where(AppointmentToken.token == credentials.token)
            .values(used_at=utcnow())
        )
        return result


async def test_link_spent_by_a_concurrent_request_is_rejected(session, actor, patient) -> None:
    booked = await book(session, actor, patient, local(4, 9))
    session.expunge_all()

    with pytest.raises(LinkRejected) as exc:
        await confirm_by_link_svc(
            session, LinkCredentials(token=token_of(booked, LinkAction.CONFIRM)), TokenSpentMeanwhile()
        )

    assert exc.value.reason == "used"
    assert (await session.get(Appointment, booked.appointment.id)).status == AppointmentStatus.AGENDADO
