# agenda/modules/availability/schemas.py
from __future__ import annotations

import datetime as dt
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from agenda.modules.recurrences.schemas import HHMM


class AvailabilityRuleIn(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: str = Field(pattern=HHMM)
    end_time: str = Field(pattern=HHMM)
    is_active: bool = True

    @model_validator(mode="after")
    def _check_order(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class AvailabilityRulesReplace(BaseModel):
    """PUT body: the professional's weekly rules are replaced as a whole."""
    rules: List[AvailabilityRuleIn] = Field(default_factory=list)


class AvailabilityRulePublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    professional_profile_id: UUID
    day_of_week: int
    start_time: str
    end_time: str
    is_active: bool


class AvailabilityExceptionCreate(BaseModel):
    """
    One-off (date) or weekly (is_recurring + day_of_week) exception.
    Without start/end it covers the whole day. clinic_wide (admin only)
    applies it to every professional.
    """
    date: Optional[dt.date] = None
    is_recurring: bool = False
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    is_available: bool = False
    start_time: Optional[str] = Field(default=None, pattern=HHMM)
    end_time: Optional[str] = Field(default=None, pattern=HHMM)
    reason: Optional[str] = Field(default=None, max_length=200)
    clinic_wide: bool = False

    @model_validator(mode="after")
    def _check_shape(self):
        if self.is_recurring and self.day_of_week is None:
            raise ValueError("day_of_week is required for recurring exceptions")
        if not self.is_recurring and self.date is None:
            raise ValueError("date is required")
        if (self.start_time is None) != (self.end_time is None):
            raise ValueError("start_time and end_time go together")
        if self.start_time and self.end_time and self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class AvailabilityExceptionPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    professional_profile_id: Optional[UUID] = None
    date: Optional[dt.date] = None
    is_recurring: bool
    day_of_week: Optional[int] = None
    is_available: bool
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    reason: Optional[str] = None
    is_clinic_wide: bool
