# agenda/routers/jobs.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.db.sql import get_session
from agenda.dependencies import link_service, verify_cron_secret
from agenda.modules.appointments.links import AppointmentLinkService
from agenda.modules.recurrences.schemas import ExtensionJobResult
from agenda.modules.recurrences.service import extend_indefinite_recurrences

router = APIRouter(tags=["jobs"], dependencies=[Depends(verify_cron_secret)])


# Implement /jobs/extend-recurrences (POST)
@router.post(
    "/jobs/extend-recurrences",
    response_model=ExtensionJobResult,
    summary="Generate the next window of every indefinite series (scheduler)",
)
async def jobs_extend_recurrences(
    session: AsyncSession = Depends(get_session),
    links: AppointmentLinkService = Depends(link_service),
):
    return await extend_indefinite_recurrences(session, link_service=links)
