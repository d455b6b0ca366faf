# agenda/modules/availability/models.py
from __future__ import annotations

import datetime as dt
import uuid
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from agenda.db.base import Base, UUIDPKMixin, TimestampMixin, ReprMixin


class AvailabilityRule(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    """Weekly working window of a professional, "HH:MM" in clinic time."""

    __tablename__ = "availability_rules"

    professional_profile_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("professional_profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)  # 0=Sunday
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true"
    )

    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_rule_dow_range"),
        CheckConstraint("end_time > start_time", name="ck_rule_time_order"),
        Index("ix_rule_prof_dow", "professional_profile_id", "day_of_week"),
    )


class AvailabilityException(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    """
    Block (or extra opening) on a date or, when recurring, on a weekday.
    No professional = clinic-wide. No start/end = the whole day.
    """

    __tablename__ = "availability_exceptions"

    professional_profile_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("professional_profiles.id", ondelete="CASCADE"),
        nullable=True,
    )
    date: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True)
    is_recurring: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    day_of_week: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_available: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    start_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    end_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "(is_recurring AND day_of_week IS NOT NULL) OR (NOT is_recurring AND date IS NOT NULL)",
            name="ck_exception_when",
        ),
        Index("ix_exception_prof_date", "professional_profile_id", "date"),
    )

    @property
    def is_clinic_wide(self) -> bool:
        return self.professional_profile_id is None
