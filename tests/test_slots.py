import datetime as dt
import uuid
from zoneinfo import ZoneInfo

from agenda.modules.availability.slots import (
    ExceptionIn,
    GroupSession,
    OverviewColumnIn,
    RuleIn,
    SlotAppointment,
    build_day_overview,
    compute_slots_for_day,
)
from agenda.modules.recurrences.biweekly import BiweeklyHint

TZ = ZoneInfo("America/Sao_Paulo")
MONDAY = dt.date(2026, 3, 2)
PROF = uuid.UUID("00000000-0000-0000-0000-00000000a001")
MORNING = [RuleIn(day_of_week=1, start_time="09:00", end_time="10:00")]


def at(hour: int, minute: int = 0) -> dt.datetime:
    return dt.datetime(2026, 3, 2, hour, minute, tzinfo=TZ)


def appointment(start: dt.datetime, minutes: int = 30, **kw) -> SlotAppointment:
    fields = dict(
        id=uuid.uuid4(),
        professional_profile_id=PROF,
        scheduled_at=start,
        end_at=start + dt.timedelta(minutes=minutes),
        status="AGENDADO",
        type="CONSULTA",
        patient_name="Maria",
    )
    fields.update(kw)
    return SlotAppointment(**fields)


def slots(**kw):
    kw.setdefault("availability_rules", MORNING)
    kw.setdefault("availability_exceptions", [])
    kw.setdefault("appointments", [])
    kw.setdefault("appointment_duration", 30)
    return compute_slots_for_day(MONDAY, **kw)


def test_grid_follows_rule_and_duration() -> None:
    day = slots()

    assert [s.time for s in day.slots] == ["09:00", "09:30"]
    assert all(s.is_available for s in day.slots)
    assert day.full_day_block is None


def test_slot_must_fit_before_rule_end() -> None:
    day = slots(appointment_duration=50)

    assert [s.time for s in day.slots] == ["09:00"]


def test_inactive_rule_and_other_weekday_are_ignored() -> None:
    rules = [
        RuleIn(day_of_week=1, start_time="09:00", end_time="10:00", is_active=False),
        RuleIn(day_of_week=2, start_time="09:00", end_time="10:00"),
    ]

    assert slots(availability_rules=rules).slots == []


def test_booked_slot_is_unavailable() -> None:
    day = slots(appointments=[appointment(at(9))])

    first, second = day.slots
    assert not first.is_available
    assert first.appointments[0].patient_name == "Maria"
    assert second.is_available


def test_cancelled_and_non_blocking_entries_do_not_take_the_slot() -> None:
    day = slots(
        appointments=[
            appointment(at(9), status="CANCELADO_FALTA"),
            appointment(at(9, 30), type="LEMBRETE", blocks_time=False),
        ]
    )

    assert all(s.is_available for s in day.slots)
    assert len(day.slots[0].appointments) == 1


def test_full_day_block_empties_the_day() -> None:
    block = ExceptionIn(date=MONDAY, reason="Feriado", is_clinic_wide=True)

    day = slots(availability_exceptions=[block], appointments=[appointment(at(9))])

    assert day.slots == []
    assert day.full_day_block.reason == "Feriado"
    assert day.full_day_block.is_clinic_wide


def test_recurring_full_day_block_matches_weekday() -> None:
    block = ExceptionIn(is_recurring=True, day_of_week=1, reason="Folga")

    assert slots(availability_exceptions=[block]).full_day_block is not None


def test_exception_for_another_date_is_ignored() -> None:
    block = ExceptionIn(date=MONDAY + dt.timedelta(days=1))

    assert len(slots(availability_exceptions=[block]).slots) == 2


def test_partial_block_covers_start_inclusive_end_exclusive() -> None:
    block = ExceptionIn(date=MONDAY, start_time="09:30", end_time="10:00", reason="Reuniao")

    first, second = slots(availability_exceptions=[block]).slots

    assert first.is_available and not first.is_blocked
    assert second.is_blocked
    assert not second.is_available
    assert second.block_reason == "Reuniao"


def test_off_grid_appointment_gets_its_own_slot() -> None:
    day = slots(appointments=[appointment(at(9, 15))])

    assert [s.time for s in day.slots] == ["09:00", "09:15", "09:30"]
    assert not day.slots[1].is_available


def test_without_rules_only_entries_are_listed() -> None:
    day = slots(availability_rules=[], appointments=[appointment(at(14))])

    assert [s.time for s in day.slots] == ["14:00"]
    assert not day.slots[0].is_available


def test_group_session_takes_start_and_hides_covered_slots() -> None:
    rules = [RuleIn(day_of_week=1, start_time="09:00", end_time="11:00")]
    group = GroupSession(
        group_id=uuid.uuid4(), title="Grupo", scheduled_at=at(9), end_at=at(10), participants=["A", "B"]
    )

    day = slots(availability_rules=rules, group_sessions=[group])

    assert [s.time for s in day.slots] == ["09:00", "10:00", "10:30"]
    assert not day.slots[0].is_available
    assert day.slots[0].group_sessions[0].participants == ["A", "B"]
    assert day.slots[1].is_available


def test_biweekly_hint_goes_on_free_slot_of_same_professional() -> None:
    hints = [
        BiweeklyHint(
            time="09:30", professional_profile_id=PROF, patient_name="Bia", recurrence_id=uuid.uuid4(), date="2026-03-02"
        ),
        BiweeklyHint(
            time="09:00", professional_profile_id=uuid.uuid4(), patient_name="Outra", recurrence_id=uuid.uuid4(), date="2026-03-02"
        ),
    ]

    day = slots(biweekly_hints=hints, professional_id=PROF)

    assert day.slots[0].biweekly_hint is None
    assert day.slots[1].biweekly_hint.patient_name == "Bia"


def test_overview_positions_blocks_on_shared_grid() -> None:
    ana = slots(appointments=[appointment(at(9))])
    bruno = compute_slots_for_day(
        MONDAY,
        [RuleIn(day_of_week=1, start_time="10:00", end_time="11:00")],
        [],
        [],
        appointment_duration=60,
    )
    columns = [
        OverviewColumnIn(professional_id=PROF, name="Ana", appointment_duration=30, day=ana),
        OverviewColumnIn(professional_id=uuid.uuid4(), name="Bruno", appointment_duration=60, day=bruno),
    ]

    overview = build_day_overview(MONDAY, columns)

    assert (overview.grid_start, overview.grid_end, overview.total_minutes) == ("09:00", "11:00", 120)
    ana_blocks = [(b.kind, b.offset_minutes, b.span_minutes) for b in overview.columns[0].blocks]
    assert ana_blocks == [("appointment", 0, 30), ("free", 30, 30)]
    bruno_blocks = [(b.kind, b.offset_minutes, b.span_minutes) for b in overview.columns[1].blocks]
    assert bruno_blocks == [("free", 60, 60)]


def test_overview_full_day_block_spans_grid() -> None:
    blocked = slots(availability_exceptions=[ExceptionIn(date=MONDAY, reason="Ferias")])
    columns = [OverviewColumnIn(professional_id=PROF, name="Ana", appointment_duration=30, day=blocked)]

    overview = build_day_overview(MONDAY, columns)

    assert (overview.grid_start, overview.grid_end) == ("08:00", "18:00")
    (block,) = overview.columns[0].blocks
    assert block.kind == "blocked"
    assert block.span_minutes == 600
    assert block.label == "Ferias"
