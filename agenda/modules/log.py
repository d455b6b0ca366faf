# agenda/modules/log.py
from __future__ import annotations

import datetime as dt
import logging
import uuid
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, String, func, insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from agenda.db.base import Base

logger = logging.getLogger(__name__)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    action: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(60), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


async def write_audit_log(
    session: AsyncSession,
    actor_id: str | None,
    action: str,
    entity_type: str,
    entity_id: Any,
    details: dict[str, Any] | None = None,
):
    """
    Write an audit log entry inside the caller's transaction.

    action:
        "APPOINTMENT_CREATED"
        "APPOINTMENT_RESCHEDULED"
        "APPOINTMENT_STATUS_CHANGED"
        "RECURRENCE_EXCEPTION_ADDED"
        "EXTEND_RECURRENCES_JOB_EXECUTED"
        ...

    actor_id:
        None for public link actions and system jobs.
    """
    logger.info("%s %s=%s actor=%s", action, entity_type, entity_id, actor_id or "system")
    stmt = insert(AuditLog).values(
        actor_id=str(actor_id) if actor_id is not None else None,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        details=details,
    )
    await session.execute(stmt)
