# agenda/modules/professionals/models.py
from __future__ import annotations

import datetime as dt
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from agenda.db.base import Base, UUIDPKMixin, UTCDateTime, TimestampMixin, ReprMixin


class ProfessionalProfile(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    """
    Scheduling profile of a professional (owned by the clinic admin module,
    read here for slot size and display name).
    """

    __tablename__ = "professional_profiles"

    name: Mapped[str] = mapped_column(String(120), nullable=False)
    specialty: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    # Slot size used by the slot builder, in minutes
    appointment_duration: Mapped[int] = mapped_column(
        Integer, nullable=False, default=50, server_default="50"
    )
    buffer_between_slots: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true"
    )

    __table_args__ = (
        CheckConstraint("appointment_duration > 0", name="ck_prof_duration_positive"),
    )


class Patient(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    __tablename__ = "patients"

    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # Advanced when an appointment is finalized
    last_visit_at: Mapped[Optional[dt.datetime]] = mapped_column(
        UTCDateTime, nullable=True
    )
