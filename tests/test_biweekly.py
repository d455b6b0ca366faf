import datetime as dt
import uuid
from types import SimpleNamespace
from zoneinfo import ZoneInfo

from agenda.modules.recurrences.biweekly import (
    BiweeklyRecurrence,
    annotate_alternate_week_info,
    build_blocked_alternate_keys,
    build_slot_key,
    compute_biweekly_hints,
    compute_paired_recurrence_map,
    find_paired_recurrence,
    slot_key_parts,
)

TZ = ZoneInfo("America/Sao_Paulo")
PROF = uuid.UUID("00000000-0000-0000-0000-00000000a001")
PATIENT_A = uuid.UUID("00000000-0000-0000-0000-0000000000aa")
PATIENT_B = uuid.UUID("00000000-0000-0000-0000-0000000000bb")
REC_A = uuid.UUID("00000000-0000-0000-0000-00000000ec0a")
REC_B = uuid.UUID("00000000-0000-0000-0000-00000000ec0b")


def recurrence_a() -> BiweeklyRecurrence:
    # Mondays 09:00 from 2026-03-02: on weeks 03-02, 03-16; off on 03-09
    return BiweeklyRecurrence(
        id=REC_A,
        professional_profile_id=PROF,
        patient_id=PATIENT_A,
        patient_name="Ana",
        day_of_week=1,
        start_time="09:00",
        start_date=dt.date(2026, 3, 2),
    )


def recurrence_b() -> BiweeklyRecurrence:
    return BiweeklyRecurrence(
        id=REC_B,
        professional_profile_id=PROF,
        patient_id=PATIENT_B,
        patient_name="Bia",
        day_of_week=1,
        start_time="09:00",
        start_date=dt.date(2026, 3, 9),
    )


def entry(start: dt.datetime, patient_id, *, recurrence=None, id=None):
    return SimpleNamespace(
        id=id or uuid.uuid4(),
        scheduled_at=start,
        professional_profile_id=PROF,
        patient_id=patient_id,
        recurrence=recurrence,
    )


def test_slot_key_is_clinic_local() -> None:
    moment = dt.datetime(2026, 3, 2, 12, 0, tzinfo=dt.timezone.utc)

    assert build_slot_key(moment, PROF) == f"2026-03-02|{PROF}|09:00"
    assert slot_key_parts(dt.date(2026, 3, 2), PROF, "09:00") == build_slot_key(moment, PROF)


def test_hint_only_on_off_week() -> None:
    hints = compute_biweekly_hints("2026-03-02", "2026-03-16", [recurrence_a()], set())

    assert [(h.date, h.time, h.patient_name) for h in hints] == [("2026-03-09", "09:00", "Ana")]
    assert hints[0].recurrence_id == REC_A


def test_occupied_off_week_gets_no_hint() -> None:
    occupied = {slot_key_parts("2026-03-09", PROF, "09:00")}

    assert compute_biweekly_hints("2026-03-02", "2026-03-16", [recurrence_a()], occupied) == []


def test_series_without_patient_name_gets_no_hint() -> None:
    rec = recurrence_a().model_copy(update={"patient_name": None})

    assert compute_biweekly_hints("2026-03-09", "2026-03-09", [rec], set()) == []


def test_pairing_matches_other_patient_same_slot() -> None:
    apt = entry(dt.datetime(2026, 3, 9, 9, 0, tzinfo=TZ), PATIENT_B)

    partner = find_paired_recurrence(apt, [recurrence_b(), recurrence_a()])

    assert partner is not None
    assert partner.id == REC_A


def test_pairing_requires_same_time() -> None:
    apt = entry(dt.datetime(2026, 3, 9, 10, 0, tzinfo=TZ), PATIENT_B)

    assert find_paired_recurrence(apt, [recurrence_a()]) is None


def test_paired_map_has_every_appointment() -> None:
    paired = entry(dt.datetime(2026, 3, 9, 9, 0, tzinfo=TZ), PATIENT_B)
    lonely = entry(dt.datetime(2026, 3, 9, 15, 0, tzinfo=TZ), PATIENT_B)

    result = compute_paired_recurrence_map([paired, lonely], [recurrence_a()])

    assert result[str(paired.id)].patient_name == "Ana"
    assert result[str(lonely.id)].recurrence_id is None


def test_alternate_week_info() -> None:
    biweekly = SimpleNamespace(recurrence_type="BIWEEKLY", is_active=True)
    weekly = SimpleNamespace(recurrence_type="WEEKLY", is_active=True)
    partner_apt_id = uuid.uuid4()

    paired = entry(dt.datetime(2026, 3, 2, 9, 0, tzinfo=TZ), PATIENT_A, recurrence=biweekly)
    free = entry(dt.datetime(2026, 3, 2, 11, 0, tzinfo=TZ), PATIENT_A, recurrence=biweekly)
    blocked = entry(dt.datetime(2026, 3, 2, 14, 0, tzinfo=TZ), PATIENT_A, recurrence=biweekly)
    not_biweekly = entry(dt.datetime(2026, 3, 2, 16, 0, tzinfo=TZ), PATIENT_A, recurrence=weekly)

    paired_map = compute_paired_recurrence_map([paired, free, blocked], [recurrence_b()])
    meeting = SimpleNamespace(
        scheduled_at=dt.datetime(2026, 3, 9, 14, 0, tzinfo=TZ), professional_profile_id=PROF
    )
    blocked_keys = build_blocked_alternate_keys([meeting])

    result = dict(
        (apt.id, info)
        for apt, info in annotate_alternate_week_info(
            [paired, free, blocked, not_biweekly],
            paired_map,
            blocked_keys,
            {str(paired.id): partner_apt_id},
        )
    )

    assert result[paired.id].paired_patient_name == "Bia"
    assert result[paired.id].paired_appointment_id == partner_apt_id
    assert not result[paired.id].is_available
    assert result[free.id].is_available
    assert result[free.id].paired_patient_name is None
    assert not result[blocked.id].is_available
    assert result[not_biweekly.id] is None
