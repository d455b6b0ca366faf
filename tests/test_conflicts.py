import datetime as dt
import uuid
from zoneinfo import ZoneInfo

from agenda.modules.appointments import conflicts as conflicts_module
from agenda.modules.appointments.conflicts import (
    CONFLICT_CODE,
    ConflictingAppointment,
    Interval,
    check_conflict,
    check_conflicts_bulk,
    format_conflict_error,
)

TZ = ZoneInfo("America/Sao_Paulo")


def at(day: int, hour: int, minute: int = 0) -> dt.datetime:
    return dt.datetime(2027, 3, day, hour, minute, tzinfo=TZ)


async def test_free_calendar_has_no_conflict(session, professional) -> None:
    result = await check_conflict(session, professional.id, at(1, 9), at(1, 9, 50))

    assert not result.has_conflict
    assert result.conflicting_appointment is None


async def test_overlap_is_reported_with_patient_name(session, professional, patient, make_appointment) -> None:
    existing = await make_appointment(at(1, 9), patient=patient)

    result = await check_conflict(session, professional.id, at(1, 9, 30), at(1, 10, 20))

    assert result.has_conflict
    assert result.conflicting_appointment.id == existing.id
    assert result.conflicting_appointment.patient_name == "Maria Silva"
    assert result.conflicting_appointment.scheduled_at == at(1, 9)


async def test_back_to_back_is_allowed(session, professional, make_appointment) -> None:
    await make_appointment(at(1, 9))

    assert not (await check_conflict(session, professional.id, at(1, 9, 50), at(1, 10, 40))).has_conflict
    assert not (await check_conflict(session, professional.id, at(1, 8, 10), at(1, 9))).has_conflict


async def test_cancelled_and_non_blocking_entries_are_ignored(session, professional, make_appointment) -> None:
    await make_appointment(at(1, 9), status="CANCELADO_ACORDADO")
    await make_appointment(at(1, 9), type="LEMBRETE", blocks_time=False, title="Ligar")

    assert not (await check_conflict(session, professional.id, at(1, 9), at(1, 9, 50))).has_conflict


async def test_other_professional_calendar_is_separate(
    session, professional, other_professional, make_appointment
) -> None:
    await make_appointment(at(1, 9), professional_id=other_professional.id)

    assert not (await check_conflict(session, professional.id, at(1, 9), at(1, 9, 50))).has_conflict


async def test_excluding_self_when_rescheduling(session, professional, make_appointment) -> None:
    existing = await make_appointment(at(1, 9))

    result = await check_conflict(
        session, professional.id, at(1, 9, 10), at(1, 10), exclude_appointment_id=existing.id
    )

    assert not result.has_conflict


async def test_excluding_own_group(session, professional, make_appointment) -> None:
    group_id = uuid.uuid4()
    await make_appointment(at(1, 14), 90, title="Grupo", type="REUNIAO", group_id=group_id)

    excluded = await check_conflict(session, professional.id, at(1, 14), at(1, 15), exclude_group_id=group_id)
    other = await check_conflict(session, professional.id, at(1, 14), at(1, 15), exclude_group_id=uuid.uuid4())

    assert not excluded.has_conflict
    assert other.has_conflict
    assert other.conflicting_appointment.display_name == "Grupo"


async def test_earliest_overlap_wins(session, professional, make_appointment) -> None:
    first = await make_appointment(at(1, 9), 30)
    await make_appointment(at(1, 9, 30), 30)

    result = await check_conflict(session, professional.id, at(1, 8, 45), at(1, 10))

    assert result.conflicting_appointment.id == first.id


async def test_bulk_reports_each_conflicting_interval(session, professional, patient, make_appointment) -> None:
    existing = await make_appointment(at(8, 9), patient=patient)
    intervals = [
        Interval(scheduled_at=at(day, 9), end_at=at(day, 9, 50)) for day in (1, 8, 15)
    ]

    conflicts = await check_conflicts_bulk(session, professional.id, intervals)

    assert [(c.index, c.date) for c in conflicts] == [(1, "2027-03-08")]
    assert conflicts[0].conflicting_appointment.id == existing.id


async def test_bulk_excludes_given_ids(session, professional, make_appointment) -> None:
    existing = await make_appointment(at(8, 9))
    intervals = [Interval(scheduled_at=at(8, 9), end_at=at(8, 9, 50))]

    assert await check_conflicts_bulk(session, professional.id, intervals, exclude_appointment_ids=[existing.id]) == []
    assert await check_conflicts_bulk(session, professional.id, []) == []


async def test_bulk_reads_only_overlapping_rows(session, professional, make_appointment, monkeypatch) -> None:
    await make_appointment(at(8, 9))  # between the two intervals, overlaps neither
    edge = await make_appointment(at(15, 8, 30), 40)
    intervals = [
        Interval(scheduled_at=at(1, 9), end_at=at(1, 9, 50)),
        Interval(scheduled_at=at(15, 9), end_at=at(15, 9, 50)),
    ]
    seen = []
    original = conflicts_module._to_conflict

    def spy(row):
        conflict = original(row)
        seen.append(conflict.id)
        return conflict

    monkeypatch.setattr(conflicts_module, "_to_conflict", spy)

    conflicts = await check_conflicts_bulk(session, professional.id, intervals)

    assert seen == [edge.id]
    assert [(c.index, c.date) for c in conflicts] == [(1, "2027-03-15")]


def test_error_message_uses_clinic_time() -> None:
    conflict = ConflictingAppointment(
        id=uuid.uuid4(),
        scheduled_at=dt.datetime(2027, 3, 1, 12, 0, tzinfo=dt.timezone.utc),
        end_at=dt.datetime(2027, 3, 1, 12, 50, tzinfo=dt.timezone.utc),
        patient_name="Maria Silva",
        type="CONSULTA",
    )

    error = format_conflict_error(conflict)

    assert error.code == CONFLICT_CODE
    assert error.error == (
        "Conflito de horário: já existe um compromisso agendado com "
        "Maria Silva em 01/03/2027 das 09:00 às 09:50"
    )


def test_display_name_falls_back() -> None:
    conflict = ConflictingAppointment(
        id=uuid.uuid4(),
        scheduled_at=dt.datetime(2027, 3, 1, 12, 0, tzinfo=dt.timezone.utc),
        end_at=dt.datetime(2027, 3, 1, 12, 50, tzinfo=dt.timezone.utc),
        type="TAREFA",
    )

    assert conflict.display_name == "outro compromisso"
