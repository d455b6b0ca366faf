import os

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("SQL_DSN", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("LINK_SECRET", "test-link-secret")
os.environ.setdefault("LINK_MODE", "stored")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("PUBLIC_BASE_URL", "https://agenda.test")
os.environ.setdefault("CLINIC_TIMEZONE", "America/Sao_Paulo")

import datetime as dt  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from agenda import models  # noqa: E402,F401
from agenda.core.security import Actor, Role  # noqa: E402
from agenda.db.base import Base  # noqa: E402
from agenda.modules.appointments.models import Appointment  # noqa: E402
from agenda.modules.professionals.models import Patient, ProfessionalProfile  # noqa: E402


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s
        await s.rollback()


@pytest_asyncio.fixture
async def professional(session) -> ProfessionalProfile:
    prof = ProfessionalProfile(name="Dra. Ana Souza", specialty="Psicologia", appointment_duration=30)
    session.add(prof)
    await session.flush()
    return prof


@pytest_asyncio.fixture
async def other_professional(session) -> ProfessionalProfile:
    prof = ProfessionalProfile(name="Dr. Bruno Lima", appointment_duration=50)
    session.add(prof)
    await session.flush()
    return prof


@pytest_asyncio.fixture
async def patient(session) -> Patient:
    p = Patient(name="Maria Silva", email="maria@example.com")
    session.add(p)
    await session.flush()
    return p


@pytest_asyncio.fixture
async def other_patient(session) -> Patient:
    p = Patient(name="Joao Santos")
    session.add(p)
    await session.flush()
    return p


@pytest.fixture
def actor(professional) -> Actor:
    return Actor(id="user-ana", role=Role.PROFESSIONAL, professional_id=professional.id)


@pytest.fixture
def admin() -> Actor:
    return Actor(id="user-admin", role=Role.ADMIN)


@pytest.fixture
def make_appointment(session, professional):
    """Insert an entry directly, bypassing the booking rules."""

    async def _make(
        start: dt.datetime,
        minutes: int = 50,
        *,
        patient: Patient | None = None,
        status: str = "AGENDADO",
        type: str = "CONSULTA",
        blocks_time: bool = True,
        title: str | None = None,
        group_id=None,
        professional_id=None,
    ) -> Appointment:
        appt = Appointment(
            professional_profile_id=professional_id or professional.id,
            patient_id=patient.id if patient else None,
            scheduled_at=start,
            end_at=start + dt.timedelta(minutes=minutes),
            status=status,
            type=type,
            blocks_time=blocks_time,
            title=title,
            group_id=group_id,
        )
        session.add(appt)
        await session.flush()
        return appt

    return _make
