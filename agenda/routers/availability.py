# agenda/routers/availability.py
from __future__ import annotations

import datetime as dt
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.core.permission import require_roles
from agenda.core.security import Actor
from agenda.db.sql import get_session
from agenda.dependencies import get_current_actor
from agenda.modules.availability.schemas import (
    AvailabilityExceptionCreate,
    AvailabilityExceptionPublic,
    AvailabilityRulePublic,
    AvailabilityRulesReplace,
)
from agenda.modules.availability.service import (
    AvailabilityForbidden,
    AvailabilityNotFound,
    add_exception_svc,
    day_overview_svc,
    day_slots_svc,
    delete_exception_svc,
    get_rules_svc,
    replace_rules_svc,
)
from agenda.modules.availability.slots import DayOverview, DaySlots
from agenda.modules.recurrences.schemas import HHMM

router = APIRouter(tags=["availability"])


# Implement /availability/overview (GET), declared before /{professional_id}/...
@router.get(
    "/availability/overview",
    response_model=DayOverview,
    summary="All professionals' day as positioned blocks (admin)",
)
async def availability_overview(
    date: dt.date = Query(...),
    grid_start: Optional[str] = Query(None, pattern=HHMM),
    grid_end: Optional[str] = Query(None, pattern=HHMM),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_roles("admin")),
):
    return await day_overview_svc(session, date, grid_start=grid_start, grid_end=grid_end)


# Implement /availability/{professional_id}/slots (GET)
@router.get(
    "/availability/{professional_id}/slots",
    response_model=DaySlots,
    summary="Ordered slots of one professional's day",
)
async def availability_slots(
    professional_id: UUID,
    date: dt.date = Query(...),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    try:
        return await day_slots_svc(session, professional_id, date, actor)
    except AvailabilityNotFound as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e) or "not_found",
        )
    except AvailabilityForbidden as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(e) or "forbidden",
        )


# Implement /availability/{professional_id}/rules (GET)
@router.get(
    "/availability/{professional_id}/rules",
    response_model=List[AvailabilityRulePublic],
    summary="Weekly availability rules",
)
async def availability_rules(
    professional_id: UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    try:
        return await get_rules_svc(session, professional_id, actor)
    except AvailabilityNotFound as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e) or "not_found",
        )
    except AvailabilityForbidden as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(e) or "forbidden",
        )


# Implement /availability/{professional_id}/rules (PUT)
@router.put(
    "/availability/{professional_id}/rules",
    response_model=List[AvailabilityRulePublic],
    summary="Replace the weekly availability rules",
)
async def availability_replace_rules(
    professional_id: UUID,
    payload: AvailabilityRulesReplace,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    try:
        return await replace_rules_svc(session, professional_id, payload, actor)
    except AvailabilityNotFound as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e) or "not_found",
        )
    except AvailabilityForbidden as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(e) or "forbidden",
        )


# Implement /availability/{professional_id}/exceptions (POST)
@router.post(
    "/availability/{professional_id}/exceptions",
    response_model=AvailabilityExceptionPublic,
    status_code=status.HTTP_201_CREATED,
    summary="Block (or open) a date or a weekday",
)
async def availability_add_exception(
    professional_id: UUID,
    payload: AvailabilityExceptionCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    try:
        return await add_exception_svc(session, professional_id, payload, actor)
    except AvailabilityNotFound as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e) or "not_found",
        )
    except AvailabilityForbidden as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(e) or "forbidden",
        )


# Implement /availability/{professional_id}/exceptions/{id} (DELETE)
@router.delete(
    "/availability/{professional_id}/exceptions/{exception_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove an availability exception",
)
async def availability_delete_exception(
    professional_id: UUID,
    exception_id: UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    try:
        await delete_exception_svc(session, professional_id, exception_id, actor)
    except AvailabilityNotFound as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e) or "not_found",
        )
    except AvailabilityForbidden as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(e) or "forbidden",
        )
