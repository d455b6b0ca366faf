# agenda/routers/public.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.db.sql import get_session
from agenda.dependencies import link_service
from agenda.modules.appointments.links import (
    LINK_ERROR_MESSAGES,
    AppointmentLinkService,
    LinkCredentials,
)
from agenda.modules.appointments.schemas import PublicActionResult
from agenda.modules.appointments.service import (
    InvalidTransition,
    LinkRejected,
    cancel_by_link_svc,
    confirm_by_link_svc,
)

# No bearer here: the link itself is the credential
router = APIRouter(tags=["public"])


def link_rejected_http(e: LinkRejected) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"reason": e.reason, "message": LINK_ERROR_MESSAGES.get(e.reason, "Link invalido")},
    )


# Implement /public/appointments/confirm (POST)
@router.post(
    "/public/appointments/confirm",
    response_model=PublicActionResult,
    summary="Patient confirms through the emailed link",
)
async def public_confirm(
    credentials: LinkCredentials,
    session: AsyncSession = Depends(get_session),
    links: AppointmentLinkService = Depends(link_service),
):
    try:
        return await confirm_by_link_svc(session, credentials, links)
    except LinkRejected as e:
        raise link_rejected_http(e)
    except InvalidTransition:
        raise link_rejected_http(LinkRejected("not_modifiable"))


# Implement /public/appointments/cancel (POST)
@router.post(
    "/public/appointments/cancel",
    response_model=PublicActionResult,
    summary="Patient cancels through the emailed link",
)
async def public_cancel(
    credentials: LinkCredentials,
    session: AsyncSession = Depends(get_session),
    links: AppointmentLinkService = Depends(link_service),
):
    try:
        return await cancel_by_link_svc(session, credentials, links)
    except LinkRejected as e:
        raise link_rejected_http(e)
    except InvalidTransition:
        raise link_rejected_http(LinkRejected("not_modifiable"))
