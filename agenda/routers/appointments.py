# agenda/routers/appointments.py
from __future__ import annotations

import datetime as dt
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.core.security import Actor
from agenda.db.sql import get_session
from agenda.dependencies import get_current_actor, link_service
from agenda.modules.appointments.conflicts import (
    ConflictCheckResult,
    ConflictingAppointment,
    format_conflict_error,
)
from agenda.modules.appointments.links import AppointmentLinkService
from agenda.modules.appointments.schemas import (
    AppointmentCreateRequest,
    AppointmentListPage,
    AppointmentPublic,
    AppointmentRescheduleRequest,
    AppointmentWithLinks,
    ConflictCheckRequest,
    StatusChangeRequest,
)
from agenda.modules.appointments.service import (
    AppointmentConflict,
    AppointmentForbidden,
    AppointmentNotFound,
    InvalidTransition,
    book_appointment_svc,
    change_status_svc,
    check_conflict_svc,
    list_appointments_svc,
    reschedule_appointment_svc,
    resend_links_svc,
)

router = APIRouter(tags=["appointments"])


def conflict_http(conflict: ConflictingAppointment) -> HTTPException:
    """409 carrying the pt-BR message and the conflicting entry."""
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=format_conflict_error(conflict).model_dump(mode="json"),
    )


# Implement /appointments (GET)
@router.get(
    "/appointments",
    response_model=AppointmentListPage,
    summary="Calendar entries for a date range, with alternate-week info",
)
async def appointments_list(
    start_date: dt.date = Query(...),
    end_date: dt.date = Query(...),
    professional_id: Optional[UUID] = Query(None),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    if end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end_date_before_start_date",
        )
    try:
        return await list_appointments_svc(
            session,
            actor,
            start_date=start_date,
            end_date=end_date,
            professional_id=professional_id,
        )
    except AppointmentForbidden as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(e) or "forbidden",
        )


# Implement /appointments (POST)
@router.post(
    "/appointments",
    response_model=AppointmentWithLinks,
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment (conflict-checked, transactional)",
)
async def appointments_create(
    payload: AppointmentCreateRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    links: AppointmentLinkService = Depends(link_service),
):
    try:
        return await book_appointment_svc(session, payload, actor, links)
    except AppointmentNotFound as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e) or "not_found",
        )
    except AppointmentForbidden as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(e) or "forbidden",
        )
    except AppointmentConflict as e:
        raise conflict_http(e.conflict)


# Implement /appointments/check-conflict (POST)
@router.post(
    "/appointments/check-conflict",
    response_model=ConflictCheckResult,
    summary="Check a time range against the professional's blocking entries",
)
async def appointments_check_conflict(
    payload: ConflictCheckRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    try:
        return await check_conflict_svc(session, payload, actor)
    except AppointmentForbidden as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(e) or "forbidden",
        )


# Implement /appointments/{id} (PATCH)
@router.patch(
    "/appointments/{appointment_id}",
    response_model=AppointmentWithLinks,
    summary="Reschedule an appointment (links are regenerated)",
)
async def appointments_reschedule(
    appointment_id: UUID,
    payload: AppointmentRescheduleRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    links: AppointmentLinkService = Depends(link_service),
):
    try:
        return await reschedule_appointment_svc(session, appointment_id, payload, actor, links)
    except AppointmentNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="appointment_not_found",
        )
    except AppointmentForbidden as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(e) or "forbidden",
        )
    except AppointmentConflict as e:
        raise conflict_http(e.conflict)
    except InvalidTransition as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )


# Implement /appointments/{id}/status (PATCH)
@router.patch(
    "/appointments/{appointment_id}/status",
    response_model=AppointmentPublic,
    summary="Change appointment status",
)
async def appointments_change_status(
    appointment_id: UUID,
    payload: StatusChangeRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    try:
        return await change_status_svc(session, appointment_id, payload, actor)
    except AppointmentNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="appointment_not_found",
        )
    except AppointmentForbidden as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(e) or "forbidden",
        )
    except AppointmentConflict as e:
        raise conflict_http(e.conflict)
    except InvalidTransition as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )


# Implement /appointments/{id}/resend-links (POST)
@router.post(
    "/appointments/{appointment_id}/resend-links",
    response_model=AppointmentWithLinks,
    summary="Issue fresh confirm/cancel links",
)
async def appointments_resend_links(
    appointment_id: UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    links: AppointmentLinkService = Depends(link_service),
):
    try:
        return await resend_links_svc(session, appointment_id, actor, links)
    except AppointmentNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="appointment_not_found",
        )
    except AppointmentForbidden as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(e) or "forbidden",
        )
    except InvalidTransition as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )
