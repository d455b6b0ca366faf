# agenda/modules/recurrences/models.py
from __future__ import annotations

import datetime as dt
import uuid
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agenda.db.base import Base, UUIDPKMixin, TimestampMixin, ReprMixin
from agenda.modules.appointments.models import Modality
from agenda.modules.professionals.models import Patient, ProfessionalProfile
from agenda.modules.recurrences.calculator import RecurrenceEndType, RecurrenceType


class AppointmentRecurrence(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    """
    Definition of a recurring series. Occurrences are regular Appointment
    rows pointing back here through `recurrence_id`.
    """

    __tablename__ = "appointment_recurrences"

    professional_profile_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("professional_profiles.id", ondelete="RESTRICT"),
        nullable=False,
    )
    patient_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("patients.id", ondelete="RESTRICT"),
        nullable=True,
    )

    recurrence_type: Mapped[str] = mapped_column(String(10), nullable=False)
    recurrence_end_type: Mapped[str] = mapped_column(String(16), nullable=False)

    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)  # 0=Sunday
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)  # HH:MM
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)

    start_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True)
    occurrences: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_generated_date: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True)

    # Skipped dates, "YYYY-MM-DD", kept sorted
    exceptions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    modality: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=Modality.PRESENCIAL.value,
        server_default=Modality.PRESENCIAL.value,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true"
    )

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

    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_recurrence_dow_range"),
        CheckConstraint("duration > 0", name="ck_recurrence_duration_positive"),
        CheckConstraint(
            "recurrence_type IN ('WEEKLY', 'BIWEEKLY', 'MONTHLY')",
            name="ck_recurrence_type_valid",
        ),
        CheckConstraint(
            "recurrence_end_type IN ('BY_DATE', 'BY_OCCURRENCES', 'INDEFINITE')",
            name="ck_recurrence_end_type_valid",
        ),
        Index("ix_recurrence_prof_active", "professional_profile_id", "is_active"),
    )

    @property
    def type_enum(self) -> RecurrenceType:
        return RecurrenceType(self.recurrence_type)

    @property
    def end_type_enum(self) -> RecurrenceEndType:
        return RecurrenceEndType(self.recurrence_end_type)
