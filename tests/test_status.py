import datetime as dt

import pytest

from agenda.modules.appointments.status import (
    CANCELLED_STATUSES,
    STATUS_LABELS,
    VALID_TRANSITIONS,
    AppointmentStatus as S,
    allowed_targets,
    compute_status_update,
    evaluate_transition,
    is_cancelled,
    is_valid_transition,
    should_update_last_visit,
)

NOW = dt.datetime(2026, 3, 2, 12, 0, tzinfo=dt.timezone.utc)


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (S.AGENDADO, S.CONFIRMADO),
        (S.AGENDADO, S.FINALIZADO),
        (S.AGENDADO, S.CANCELADO_PROFISSIONAL),
        (S.CONFIRMADO, S.FINALIZADO),
        (S.CONFIRMADO, S.CANCELADO_ACORDADO),
        (S.CANCELADO_ACORDADO, S.AGENDADO),
        (S.CANCELADO_ACORDADO, S.CANCELADO_FALTA),
        (S.CANCELADO_FALTA, S.CANCELADO_ACORDADO),
        (S.CANCELADO_FALTA, S.AGENDADO),
    ],
)
def test_allowed_transitions(current: S, target: S) -> None:
    assert is_valid_transition(current.value, target.value)


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (S.FINALIZADO, S.AGENDADO),
        (S.FINALIZADO, S.CONFIRMADO),
        (S.CANCELADO_PROFISSIONAL, S.AGENDADO),
        (S.CONFIRMADO, S.AGENDADO),
        (S.AGENDADO, S.AGENDADO),
        (S.CANCELADO_FALTA, S.CONFIRMADO),
    ],
)
def test_rejected_transitions(current: S, target: S) -> None:
    assert not is_valid_transition(current.value, target.value)


def test_terminal_statuses_have_no_targets() -> None:
    assert allowed_targets(S.FINALIZADO) == frozenset()
    assert allowed_targets(S.CANCELADO_PROFISSIONAL) == frozenset()
    assert allowed_targets("NOT_A_STATUS") == frozenset()


def test_every_status_has_a_label_and_a_row() -> None:
    assert set(STATUS_LABELS) == set(S)
    assert set(VALID_TRANSITIONS) == set(S)


def test_cancelled_statuses() -> None:
    assert CANCELLED_STATUSES == {S.CANCELADO_ACORDADO, S.CANCELADO_FALTA, S.CANCELADO_PROFISSIONAL}
    assert is_cancelled("CANCELADO_FALTA")
    assert not is_cancelled(S.FINALIZADO)


def test_confirm_stamps_confirmed_at() -> None:
    update = compute_status_update("CONFIRMADO", NOW)

    assert update.as_values() == {"status": "CONFIRMADO", "confirmed_at": NOW}


def test_cancel_stamps_cancelled_at() -> None:
    update = compute_status_update("CANCELADO_FALTA", NOW)

    assert update.as_values() == {"status": "CANCELADO_FALTA", "cancelled_at": NOW}


def test_revert_to_agendado_clears_both_stamps() -> None:
    update = compute_status_update("AGENDADO", NOW)

    assert update.as_values() == {"status": "AGENDADO", "confirmed_at": None, "cancelled_at": None}


def test_finalize_touches_only_status() -> None:
    assert compute_status_update("FINALIZADO", NOW).as_values() == {"status": "FINALIZADO"}


def test_evaluate_transition_returns_typed_rejection() -> None:
    result = evaluate_transition("FINALIZADO", "AGENDADO", NOW)

    assert not result.allowed
    assert result.update is None
    assert result.error == "invalid_transition:FINALIZADO->AGENDADO"


def test_evaluate_transition_unknown_target() -> None:
    result = evaluate_transition("AGENDADO", "PERDIDO", NOW)

    assert not result.allowed
    assert result.error == "unknown_status:PERDIDO"


def test_evaluate_transition_allowed() -> None:
    result = evaluate_transition("AGENDADO", "CONFIRMADO", NOW)

    assert result.allowed
    assert result.update.confirmed_at == NOW


def test_only_finalizado_moves_last_visit() -> None:
    assert should_update_last_visit("FINALIZADO")
    assert not any(should_update_last_visit(s.value) for s in S if s is not S.FINALIZADO)
