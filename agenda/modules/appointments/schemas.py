# agenda/modules/appointments/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from agenda.modules.appointments.models import AppointmentType, LinkAction, Modality
from agenda.modules.appointments.status import AppointmentStatus
from agenda.modules.recurrences.biweekly import AlternateWeekInfo


class AppointmentCreateRequest(BaseModel):
    """
    Payload to book one calendar entry.
    - professional_profile_id may be omitted by a professional (defaults to their own).
    - naive datetimes are read as clinic-local time.
    - blocks_time defaults from the type (reminders and notes never block).
    """
    professional_profile_id: Optional[UUID] = None
    patient_id: Optional[UUID] = None
    scheduled_at: datetime
    end_at: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(default=None, gt=0, le=24 * 60)
    type: AppointmentType = AppointmentType.CONSULTA
    title: Optional[str] = Field(default=None, max_length=200)
    modality: Modality = Modality.PRESENCIAL
    notes: Optional[str] = None
    blocks_time: Optional[bool] = None
    group_id: Optional[UUID] = None

    @model_validator(mode="after")
    def _check_shape(self) -> "AppointmentCreateRequest":
        if self.end_at is None and self.duration_minutes is None:
            raise ValueError("end_at or duration_minutes is required")
        if self.end_at is not None and self.end_at <= self.scheduled_at:
            raise ValueError("end_at must be after scheduled_at")
        if self.type is AppointmentType.CONSULTA and self.patient_id is None:
            raise ValueError("patient_id is required for CONSULTA")
        if self.type is not AppointmentType.CONSULTA and not self.title:
            raise ValueError("title is required for non-consultation entries")
        return self


class ConflictCheckRequest(BaseModel):
    professional_profile_id: Optional[UUID] = None
    scheduled_at: datetime
    end_at: datetime
    exclude_appointment_id: Optional[UUID] = None

    @model_validator(mode="after")
    def _check_order(self) -> "ConflictCheckRequest":
        if self.end_at <= self.scheduled_at:
            raise ValueError("end_at must be after scheduled_at")
        return self


class AppointmentRescheduleRequest(BaseModel):
    """New start; the end keeps the current duration unless given."""
    scheduled_at: datetime
    end_at: Optional[datetime] = None
    modality: Optional[Modality] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _check_order(self) -> "AppointmentRescheduleRequest":
        if self.end_at is not None and self.end_at <= self.scheduled_at:
            raise ValueError("end_at must be after scheduled_at")
        return self


class StatusChangeRequest(BaseModel):
    status: AppointmentStatus
    reason: Optional[str] = Field(default=None, max_length=500)


class AppointmentPublic(BaseModel):
    """
    DTO returns a detailed appointment.
    """
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    professional_profile_id: UUID
    patient_id: Optional[UUID] = None
    patient_name: Optional[str] = None
    recurrence_id: Optional[UUID] = None
    group_id: Optional[UUID] = None
    scheduled_at: datetime
    end_at: datetime
    status: AppointmentStatus
    type: AppointmentType
    title: Optional[str] = None
    blocks_time: bool
    modality: Modality
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class LinkOut(BaseModel):
    url: str
    expires_at: datetime


class AppointmentWithLinks(BaseModel):
    appointment: AppointmentPublic
    links: Dict[LinkAction, LinkOut] = Field(default_factory=dict)


class PublicActionResult(BaseModel):
    appointment_id: UUID
    status: AppointmentStatus
    message: str


class AppointmentListItem(AppointmentPublic):
    alternate_week_info: Optional[AlternateWeekInfo] = None


class AppointmentListPage(BaseModel):
    items: List[AppointmentListItem]
    total: int
