# agenda/modules/recurrences/schemas.py
from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field

from agenda.modules.appointments.conflicts import BulkConflict
from agenda.modules.appointments.models import AppointmentType, Modality
from agenda.modules.appointments.schemas import AppointmentPublic, AppointmentWithLinks
from agenda.modules.recurrences.calculator import (
    RecurrenceDateWithException,
    RecurrenceEndType,
    RecurrenceOptions,
    RecurrenceType,
    format_recurrence_summary,
)

HHMM = r"^([01]\d|2[0-3]):[0-5]\d$"


class RecurrenceRuleFields(BaseModel):
    start_date: date
    start_time: str = Field(pattern=HHMM)
    duration_minutes: int = Field(gt=0, le=24 * 60)
    recurrence_type: RecurrenceType
    recurrence_end_type: RecurrenceEndType
    end_date: Optional[date] = None
    occurrences: Optional[int] = None

    def options(self) -> RecurrenceOptions:
        return RecurrenceOptions(
            recurrence_type=self.recurrence_type,
            recurrence_end_type=self.recurrence_end_type,
            end_date=self.end_date,
            occurrences=self.occurrences,
        )


class RecurrenceCreateRequest(RecurrenceRuleFields):
    """
    Payload to create a series.
    - on_conflict="abort": any conflicting occurrence rejects the whole series.
    - on_conflict="skip": conflicting dates become exceptions, the rest is booked.
    """
    professional_profile_id: Optional[UUID] = None
    patient_id: Optional[UUID] = None
    type: AppointmentType = AppointmentType.CONSULTA
    title: Optional[str] = Field(default=None, max_length=200)
    modality: Modality = Modality.PRESENCIAL
    notes: Optional[str] = None
    on_conflict: Literal["abort", "skip"] = "abort"


class RecurrencePreviewRequest(RecurrenceRuleFields):
    exceptions: List[date] = Field(default_factory=list)


class RecurrencePreview(BaseModel):
    summary: str
    dates: List[RecurrenceDateWithException]
    active_count: int


class RecurrencePublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    professional_profile_id: UUID
    patient_id: Optional[UUID] = None
    recurrence_type: RecurrenceType
    recurrence_end_type: RecurrenceEndType
    day_of_week: int
    start_time: str
    end_time: str
    duration: int
    start_date: date
    end_date: Optional[date] = None
    occurrences: Optional[int] = None
    last_generated_date: Optional[date] = None
    exceptions: List[str]
    modality: Modality
    is_active: bool

    @computed_field  # type: ignore[prop-decorator]
    @property
    def summary(self) -> str:
        return format_recurrence_summary(
            self.recurrence_type, self.recurrence_end_type, self.occurrences, self.end_date
        )


class SeriesCreated(BaseModel):
    recurrence: RecurrencePublic
    appointments: List[AppointmentWithLinks]
    skipped: List[BulkConflict] = Field(default_factory=list)


class SeriesConflictDetail(BaseModel):
    """409 body for a rejected series."""
    error: str
    code: str
    conflicts: List[BulkConflict]


class ExceptionToggleRequest(BaseModel):
    date: dt.date
    action: Literal["skip", "unskip"]


class ExceptionToggleResult(BaseModel):
    recurrence: RecurrencePublic
    message: str
    cancelled: List[AppointmentPublic] = Field(default_factory=list)
    restored: Optional[AppointmentWithLinks] = None


class RecurrenceUpdateRequest(BaseModel):
    """
    Partial update of a series; omitted fields keep their value.
    - day_of_week: future occurrences move forward to the new weekday.
    - start_time/end_time: new time of day (and duration).
    - recurrence_type: future occurrences off the new pattern are cancelled.
    - apply_to_future=False changes only the definition (weekday and
      frequency changes always reach the occurrences).
    """
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    start_time: Optional[str] = Field(default=None, pattern=HHMM)
    end_time: Optional[str] = Field(default=None, pattern=HHMM)
    recurrence_type: Optional[RecurrenceType] = None
    recurrence_end_type: Optional[RecurrenceEndType] = None
    end_date: Optional[date] = None
    occurrences: Optional[int] = Field(default=None, ge=1, le=52)
    modality: Optional[Modality] = None
    apply_to_future: bool = True


class RecurrenceUpdateResult(BaseModel):
    recurrence: RecurrencePublic
    message: str
    updated: List[AppointmentPublic] = Field(default_factory=list)
    removed: List[AppointmentPublic] = Field(default_factory=list)


class FinalizeRequest(BaseModel):
    end_date: date
    cancel_future_appointments: bool = False


class FinalizeResult(BaseModel):
    recurrence: RecurrencePublic
    cancelled_count: int


class ExtensionRecurrenceReport(BaseModel):
    recurrence_id: UUID
    created: int
    skipped_exceptions: int
    skipped_conflicts: int
    last_generated_date: Optional[date] = None


class ExtensionJobResult(BaseModel):
    run_at: datetime
    recurrences_processed: int = 0
    recurrences_skipped: int = 0
    appointments_created: int = 0
    errors: List[str] = Field(default_factory=list)
    details: List[ExtensionRecurrenceReport] = Field(default_factory=list)
