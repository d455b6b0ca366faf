# agenda/modules/appointments/status.py
"""
Pure appointment status transition logic.

No storage access here: the service layer loads the row, asks this module
whether the move is allowed and which fields to write, and applies them.
"""
from __future__ import annotations

import datetime as dt
from enum import Enum as PyEnum
from typing import Optional

from pydantic import BaseModel


class AppointmentStatus(str, PyEnum):
    AGENDADO = "AGENDADO"
    CONFIRMADO = "CONFIRMADO"
    FINALIZADO = "FINALIZADO"
    CANCELADO_ACORDADO = "CANCELADO_ACORDADO"
    CANCELADO_FALTA = "CANCELADO_FALTA"
    CANCELADO_PROFISSIONAL = "CANCELADO_PROFISSIONAL"


S = AppointmentStatus

CANCELLED_STATUSES: frozenset[AppointmentStatus] = frozenset(
    {S.CANCELADO_ACORDADO, S.CANCELADO_FALTA, S.CANCELADO_PROFISSIONAL}
)

# Statuses a patient link can still act on
ACTIONABLE_STATUSES: frozenset[AppointmentStatus] = frozenset({S.AGENDADO, S.CONFIRMADO})

VALID_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    S.AGENDADO: frozenset(
        {
            S.CONFIRMADO,
            S.FINALIZADO,
            S.CANCELADO_FALTA,
            S.CANCELADO_PROFISSIONAL,
            S.CANCELADO_ACORDADO,
        }
    ),
    S.CONFIRMADO: frozenset(
        {
            S.FINALIZADO,
            S.CANCELADO_FALTA,
            S.CANCELADO_PROFISSIONAL,
            S.CANCELADO_ACORDADO,
        }
    ),
    S.FINALIZADO: frozenset(),
    S.CANCELADO_ACORDADO: frozenset({S.CANCELADO_FALTA, S.AGENDADO}),
    S.CANCELADO_FALTA: frozenset({S.CANCELADO_ACORDADO, S.AGENDADO}),
    S.CANCELADO_PROFISSIONAL: frozenset(),
}

STATUS_LABELS: dict[AppointmentStatus, str] = {
    S.AGENDADO: "Agendado",
    S.CONFIRMADO: "Confirmado",
    S.FINALIZADO: "Finalizado",
    S.CANCELADO_ACORDADO: "Desmarcou",
    S.CANCELADO_FALTA: "Cancelado (Falta)",
    S.CANCELADO_PROFISSIONAL: "Cancelado (sem cobrança)",
}


class StatusUpdate(BaseModel):
    """
    Fields to write for a transition. Only the fields that were explicitly
    set are meant to be applied (see `as_values`), so "clear to None" and
    "leave untouched" stay distinguishable.
    """

    status: AppointmentStatus
    confirmed_at: Optional[dt.datetime] = None
    cancelled_at: Optional[dt.datetime] = None

    def as_values(self) -> dict:
        values = self.model_dump(exclude_unset=True)
        values["status"] = self.status.value
        return values


class TransitionResult(BaseModel):
    allowed: bool
    update: Optional[StatusUpdate] = None
    error: Optional[str] = None


def _coerce(value: str | AppointmentStatus) -> AppointmentStatus | None:
    try:
        return AppointmentStatus(value)
    except ValueError:
        return None


def allowed_targets(current: str | AppointmentStatus) -> frozenset[AppointmentStatus]:
    status = _coerce(current)
    if status is None:
        return frozenset()
    return VALID_TRANSITIONS[status]


def is_valid_transition(from_status: str, to_status: str) -> bool:
    target = _coerce(to_status)
    return target is not None and target in allowed_targets(from_status)


def is_cancelled(status: str | AppointmentStatus) -> bool:
    return _coerce(status) in CANCELLED_STATUSES


def compute_status_update(target_status: str, now: dt.datetime) -> StatusUpdate:
    target = AppointmentStatus(target_status)

    if target is S.CONFIRMADO:
        return StatusUpdate(status=target, confirmed_at=now)
    if target in CANCELLED_STATUSES:
        return StatusUpdate(status=target, cancelled_at=now)
    if target is S.AGENDADO:
        # Reverting clears both stamps
        return StatusUpdate(status=target, confirmed_at=None, cancelled_at=None)
    return StatusUpdate(status=target)


def evaluate_transition(
    current_status: str, target_status: str, now: dt.datetime
) -> TransitionResult:
    """
    Validate a status change and compute its side-effect fields.
    Rejections come back as a result, nothing is raised.
    """
    if _coerce(target_status) is None:
        return TransitionResult(allowed=False, error=f"unknown_status:{target_status}")

    if not is_valid_transition(current_status, target_status):
        return TransitionResult(
            allowed=False,
            error=f"invalid_transition:{current_status}->{target_status}",
        )

    return TransitionResult(allowed=True, update=compute_status_update(target_status, now))


def should_update_last_visit(target_status: str) -> bool:
    """Whether the patient's last visit marker moves with this transition."""
    return _coerce(target_status) is S.FINALIZADO
