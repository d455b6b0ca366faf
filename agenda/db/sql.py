# agenda/db/sql.py
from __future__ import annotations

import logging
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from agenda.core.config import settings

logger = logging.getLogger(__name__)


DSN = settings.SQL_DSN or "sqlite+aiosqlite:///:memory:"


def _engine_kwargs() -> dict:
    # SQLite (tests, local demos) does not accept the pool options
    if DSN.startswith("sqlite"):
        return {"echo": settings.DB_ECHO}
    return {
        "echo": settings.DB_ECHO,
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_pre_ping": True,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
    }


engine = create_async_engine(
    DSN,
    **_engine_kwargs(),
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
    class_=AsyncSession,
)


async def get_session() -> AsyncIterator[AsyncSession]:
    """
    Provide a DB session (= one transaction) for each request.

    Row locks taken by the conflict checker (SELECT ... FOR UPDATE) live
    until this commit/rollback, so the check and the insert that follows it
    are serialized against concurrent bookings.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            logger.debug("rolling back request transaction", exc_info=True)
            await session.rollback()
            raise


async def ping_db() -> bool:
    async with AsyncSessionLocal() as session:
        await session.execute(text("SELECT 1"))
        return True


async def init_db() -> None:
    """
    Create tables that do not exist yet (dev only; prod runs alembic).
    """
    from agenda.db.base import Base
    from agenda import models  # noqa: F401  registers every mapper

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
