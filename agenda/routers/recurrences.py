# agenda/routers/recurrences.py
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.core.security import Actor
from agenda.db.sql import get_session
from agenda.dependencies import get_current_actor, link_service
from agenda.modules.appointments.conflicts import CONFLICT_CODE
from agenda.modules.appointments.links import AppointmentLinkService
from agenda.modules.appointments.service import (
    AppointmentConflict,
    AppointmentForbidden,
    AppointmentNotFound,
)
from agenda.modules.recurrences.schemas import (
    ExceptionToggleRequest,
    ExceptionToggleResult,
    FinalizeRequest,
    FinalizeResult,
    RecurrenceCreateRequest,
    RecurrencePreview,
    RecurrencePreviewRequest,
    RecurrenceUpdateRequest,
    RecurrenceUpdateResult,
    SeriesConflictDetail,
    SeriesCreated,
)
from agenda.modules.recurrences.service import (
    RecurrenceInvalid,
    RecurrenceNotFound,
    SeriesConflict,
    create_series_svc,
    finalize_recurrence_svc,
    preview_recurrence_svc,
    toggle_exception_svc,
    update_recurrence_svc,
)
from agenda.routers.appointments import conflict_http

router = APIRouter(tags=["recurrences"])


def series_conflict_http(e: SeriesConflict) -> HTTPException:
    body = SeriesConflictDetail(
        error=f"{len(e.conflicts)} ocorrência(s) em conflito com compromissos existentes",
        code=CONFLICT_CODE,
        conflicts=e.conflicts,
    )
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=body.model_dump(mode="json"))


# Implement /recurrences/preview (POST)
@router.post(
    "/recurrences/preview",
    response_model=RecurrencePreview,
    summary="Expand a recurrence without storing anything",
)
async def recurrences_preview(
    payload: RecurrencePreviewRequest,
    actor: Actor = Depends(get_current_actor),
):
    try:
        return preview_recurrence_svc(payload)
    except RecurrenceInvalid as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )


# Implement /recurrences (POST)
@router.post(
    "/recurrences",
    response_model=SeriesCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Create a recurring series and its occurrences",
)
async def recurrences_create(
    payload: RecurrenceCreateRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    links: AppointmentLinkService = Depends(link_service),
):
    try:
        return await create_series_svc(session, payload, actor, links)
    except RecurrenceInvalid as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
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
    except SeriesConflict as e:
        raise series_conflict_http(e)


# Implement /recurrences/{id}/exceptions (POST)
@router.post(
    "/recurrences/{recurrence_id}/exceptions",
    response_model=ExceptionToggleResult,
    summary="Skip or restore one date of a series",
)
async def recurrences_toggle_exception(
    recurrence_id: UUID,
    payload: ExceptionToggleRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    links: AppointmentLinkService = Depends(link_service),
):
    try:
        return await toggle_exception_svc(session, recurrence_id, payload, actor, links)
    except RecurrenceNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="recurrence_not_found",
        )
    except AppointmentForbidden as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(e) or "forbidden",
        )
    except RecurrenceInvalid as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except AppointmentConflict as e:
        raise conflict_http(e.conflict)


# Implement /recurrences/{id} (PATCH)
@router.patch(
    "/recurrences/{recurrence_id}",
    response_model=RecurrenceUpdateResult,
    summary="Change weekday, time, frequency, end or modality of a series",
)
async def recurrences_update(
    recurrence_id: UUID,
    payload: RecurrenceUpdateRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    links: AppointmentLinkService = Depends(link_service),
):
    try:
        return await update_recurrence_svc(session, recurrence_id, payload, actor, links)
    except RecurrenceNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="recurrence_not_found",
        )
    except AppointmentForbidden as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(e) or "forbidden",
        )
    except RecurrenceInvalid as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except SeriesConflict as e:
        raise series_conflict_http(e)


# Implement /recurrences/{id}/finalize (POST)
@router.post(
    "/recurrences/{recurrence_id}/finalize",
    response_model=FinalizeResult,
    summary="Give an indefinite series an end date",
)
async def recurrences_finalize(
    recurrence_id: UUID,
    payload: FinalizeRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    links: AppointmentLinkService = Depends(link_service),
):
    try:
        return await finalize_recurrence_svc(session, recurrence_id, payload, actor, links)
    except RecurrenceNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="recurrence_not_found",
        )
    except AppointmentForbidden as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(e) or "forbidden",
        )
    except RecurrenceInvalid as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
