# agenda/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from agenda.core.config import settings
from agenda.core.logging import configure_logging
from agenda.db.sql import init_db
from agenda.routers import appointments, availability, health, jobs, public, recurrences

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    The lifespan function is used to manage the FastAPI application lifecycle.
    """
    configure_logging()
    # Dev/test convenience; prod schemas come from alembic
    if settings.APP_ENV != "prod":
        await init_db()
    logger.info("clinic agenda started env=%s tz=%s", settings.APP_ENV, settings.CLINIC_TIMEZONE)
    yield


app = FastAPI(
    title="Clinic Agenda Scheduling API",
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# Routing
app.include_router(health.router, prefix=settings.API_PREFIX, tags=["health"])
app.include_router(appointments.router, prefix=settings.API_PREFIX, tags=["appointments"])
app.include_router(recurrences.router, prefix=settings.API_PREFIX, tags=["recurrences"])
app.include_router(availability.router, prefix=settings.API_PREFIX, tags=["availability"])
app.include_router(public.router, prefix=settings.API_PREFIX, tags=["public"])
app.include_router(jobs.router, prefix=settings.API_PREFIX, tags=["jobs"])


@app.get("/")
def root():
    return {"message": "Clinic agenda API running"}
