# agenda/modules/appointments/models.py
from __future__ import annotations

import datetime as dt
import uuid
from enum import Enum as PyEnum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agenda.db.base import Base, UUIDPKMixin, UTCDateTime, TimestampMixin, ReprMixin
from agenda.modules.appointments.status import AppointmentStatus
from agenda.modules.professionals.models import Patient, ProfessionalProfile

if TYPE_CHECKING:
    from agenda.modules.recurrences.models import AppointmentRecurrence


class AppointmentType(str, PyEnum):
    CONSULTA = "CONSULTA"
    TAREFA = "TAREFA"
    LEMBRETE = "LEMBRETE"
    NOTA = "NOTA"
    REUNIAO = "REUNIAO"


# Calendar entries that never occupy the professional's time
NON_BLOCKING_TYPES = frozenset({AppointmentType.LEMBRETE, AppointmentType.NOTA})


class Modality(str, PyEnum):
    ONLINE = "ONLINE"
    PRESENCIAL = "PRESENCIAL"


class LinkAction(str, PyEnum):
    CONFIRM = "confirm"
    CANCEL = "cancel"


class Appointment(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    """
    One calendar entry of a professional: a consultation or a non-patient
    entry (task, reminder, note, meeting). Cancellation is a status, rows
    are never deleted.
    """

    __tablename__ = "appointments"

    professional_profile_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("professional_profiles.id", ondelete="RESTRICT"),
        nullable=False,
    )
    patient_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("patients.id", ondelete="RESTRICT"),
        nullable=True,
    )
    recurrence_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("appointment_recurrences.id", ondelete="RESTRICT"),
        nullable=True,
    )
    # Group-session siblings share this id and never conflict with each other
    group_id: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True)

    scheduled_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, nullable=False)
    end_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, nullable=False)

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=AppointmentStatus.AGENDADO.value,
        server_default=AppointmentStatus.AGENDADO.value,
    )
    type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AppointmentType.CONSULTA.value,
        server_default=AppointmentType.CONSULTA.value,
    )
    title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    blocks_time: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true"
    )
    modality: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=Modality.PRESENCIAL.value,
        server_default=Modality.PRESENCIAL.value,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    confirmed_at: Mapped[Optional[dt.datetime]] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[Optional[dt.datetime]] = mapped_column(UTCDateTime, nullable=True)

    patient: Mapped[Optional[Patient]] = relationship(
        "Patient",
        foreign_keys=[patient_id],
        lazy="joined",
    )
    professional: Mapped[ProfessionalProfile] = relationship(
        "ProfessionalProfile",
        foreign_keys=[professional_profile_id],
        lazy="joined",
    )
    recurrence: Mapped[Optional["AppointmentRecurrence"]] = relationship(
        "AppointmentRecurrence",
        foreign_keys=[recurrence_id],
        lazy="joined",
    )

    __table_args__ = (
        CheckConstraint("end_at > scheduled_at", name="ck_appt_time_order"),
        Index("ix_appt_prof_start_end", "professional_profile_id", "scheduled_at", "end_at"),
        Index("ix_appt_recurrence", "recurrence_id"),
        Index("ix_appt_group", "group_id"),
    )


class AppointmentToken(UUIDPKMixin, ReprMixin, Base):
    """Single-use confirm/cancel token sent to the patient."""

    __tablename__ = "appointment_tokens"

    appointment_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
    )
    action: Mapped[str] = mapped_column(String(10), nullable=False)
    token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    expires_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, nullable=False)
    used_at: Mapped[Optional[dt.datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: dt.datetime.now(dt.timezone.utc)
    )

    appointment: Mapped[Appointment] = relationship(
        "Appointment",
        foreign_keys=[appointment_id],
        lazy="joined",
    )

    __table_args__ = (
        CheckConstraint("action IN ('confirm', 'cancel')", name="ck_token_action_valid"),
        Index("ix_token_appointment", "appointment_id", "used_at"),
    )
