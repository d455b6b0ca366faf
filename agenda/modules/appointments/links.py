# agenda/modules/appointments/links.py
"""
Confirm/cancel links sent to patients.

Two interchangeable mechanisms behind AppointmentLinkService:

- SignedLinkService: stateless HMAC-SHA256 over "{id}:{action}:{expires}".
  Nothing is stored, so a link cannot be revoked or marked used.
- StoredTokenService: random single-use tokens persisted in
  appointment_tokens. Supports revocation and "already used".

Both expire `LINK_EXPIRY_HOURS` after the appointment time.
"""
from __future__ import annotations

import abc
import datetime as dt
import hashlib
import hmac
import logging
import secrets
import uuid
from typing import Literal, Optional
from urllib.parse import urlencode

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.core.config import settings
from agenda.core.timeutils import ensure_aware, utcnow
from agenda.modules.appointments.models import Appointment, AppointmentToken, LinkAction
from agenda.modules.appointments.status import ACTIONABLE_STATUSES

logger = logging.getLogger(__name__)

LinkFailure = Literal["expired", "invalid", "used", "not_modifiable"]

LINK_ERROR_MESSAGES: dict[str, str] = {
    "expired": "Este link expirou. Entre em contato com a clinica para um novo link.",
    "invalid": "Link invalido",
    "used": "Este link ja foi utilizado",
    "not_modifiable": "Agendamento nao pode mais ser modificado",
}


class LinkCredentials(BaseModel):
    """What the patient sends back: either a stored token or a signed triple."""

    token: Optional[str] = None
    id: Optional[uuid.UUID] = None
    expires: Optional[int] = None
    sig: Optional[str] = None


class IssuedLink(BaseModel):
    action: LinkAction
    url: str
    expires_at: dt.datetime
    token: Optional[str] = None


class LinkValidation(BaseModel):
    valid: bool
    appointment_id: Optional[uuid.UUID] = None
    reason: Optional[LinkFailure] = None

    @property
    def message(self) -> str | None:
        return LINK_ERROR_MESSAGES.get(self.reason) if self.reason else None


def link_expiry(scheduled_at: dt.datetime, hours: int | None = None) -> dt.datetime:
    return ensure_aware(scheduled_at) + dt.timedelta(
        hours=settings.LINK_EXPIRY_HOURS if hours is None else hours
    )


def _rejected(reason: LinkFailure, appointment_id: uuid.UUID | None = None) -> LinkValidation:
    return LinkValidation(valid=False, reason=reason, appointment_id=appointment_id)


async def _check_appointment(session: AsyncSession, appointment_id: uuid.UUID) -> LinkValidation:
    status = (
        await session.execute(select(Appointment.status).where(Appointment.id == appointment_id))
    ).scalar_one_or_none()
    if status is None:
        return _rejected("invalid")
    if status not in {s.value for s in ACTIONABLE_STATUSES}:
        return _rejected("not_modifiable", appointment_id)
    return LinkValidation(valid=True, appointment_id=appointment_id)


class AppointmentLinkService(abc.ABC):
    # Whether invalidate actually consumes a link
    single_use = False

    def __init__(self, base_url: str | None = None):
        self.base_url = (base_url or settings.PUBLIC_BASE_URL).rstrip("/")

    @abc.abstractmethod
    async def issue(
        self,
        session: AsyncSession,
        appointment_id: uuid.UUID,
        action: LinkAction,
        scheduled_at: dt.datetime,
    ) -> IssuedLink: ...

    @abc.abstractmethod
    async def validate(
        self,
        session: AsyncSession,
        credentials: LinkCredentials,
        expected_action: LinkAction,
        now: dt.datetime | None = None,
    ) -> LinkValidation: ...

    @abc.abstractmethod
    async def invalidate(self, session: AsyncSession, credentials: LinkCredentials) -> bool: ...

    async def invalidate_all(self, session: AsyncSession, appointment_id: uuid.UUID) -> int:
        """Revoke every outstanding link of an appointment; 0 when unsupported."""
        return 0

    async def issue_pair(
        self,
        session: AsyncSession,
        appointment_id: uuid.UUID,
        scheduled_at: dt.datetime,
    ) -> dict[LinkAction, IssuedLink]:
        return {
            action: await self.issue(session, appointment_id, action, scheduled_at)
            for action in (LinkAction.CONFIRM, LinkAction.CANCEL)
        }

    async def regenerate(
        self,
        session: AsyncSession,
        appointment_id: uuid.UUID,
        scheduled_at: dt.datetime,
    ) -> dict[LinkAction, IssuedLink]:
        """Used after a reschedule: old links stop working, fresh ones go out."""
        await self.invalidate_all(session, appointment_id)
        return await self.issue_pair(session, appointment_id, scheduled_at)

    def _url(self, action: LinkAction, **params) -> str:
        return f"{self.base_url}/{LinkAction(action).value}?{urlencode(params)}"


class SignedLinkService(AppointmentLinkService):
    def __init__(self, secret: str | None = None, base_url: str | None = None):
        super().__init__(base_url)
        self._secret = (secret or settings.link_secret).encode()

    def sign(self, appointment_id: uuid.UUID | str, action: LinkAction | str, expires: int) -> str:
        payload = f"{appointment_id}:{LinkAction(action).value}:{expires}".encode()
        return hmac.new(self._secret, payload, hashlib.sha256).hexdigest()

    async def issue(self, session, appointment_id, action, scheduled_at) -> IssuedLink:
        expires_at = link_expiry(scheduled_at)
        expires = int(expires_at.timestamp())
        sig = self.sign(appointment_id, action, expires)
        return IssuedLink(
            action=action,
            url=self._url(action, id=str(appointment_id), expires=expires, sig=sig),
            expires_at=expires_at,
        )

    async def validate(self, session, credentials, expected_action, now=None) -> LinkValidation:
        if credentials.id is None or credentials.expires is None or not credentials.sig:
            return _rejected("invalid")

        now = now or utcnow()
        # Expiry first, then signature
        if int(now.timestamp()) > credentials.expires:
            return _rejected("expired", credentials.id)

        expected = self.sign(credentials.id, expected_action, credentials.expires)
        if not hmac.compare_digest(expected, credentials.sig):
            logger.warning("signed link rejected appointment=%s action=%s", credentials.id, expected_action)
            return _rejected("invalid")

        return await _check_appointment(session, credentials.id)

    async def invalidate(self, session, credentials) -> bool:
        # Stateless: nothing to revoke
        return False


class StoredTokenService(AppointmentLinkService):
    single_use = True

    @staticmethod
    def generate_token() -> str:
        return secrets.token_hex(32)

    async def issue(self, session, appointment_id, action, scheduled_at) -> IssuedLink:
        token = self.generate_token()
        expires_at = link_expiry(scheduled_at)
        session.add(
            AppointmentToken(
                appointment_id=appointment_id,
                action=LinkAction(action).value,
                token=token,
                expires_at=expires_at,
            )
        )
        await session.flush()
        return IssuedLink(
            action=action,
            url=self._url(action, token=token),
            expires_at=expires_at,
            token=token,
        )

    async def validate(self, session, credentials, expected_action, now=None) -> LinkValidation:
        """
        Check order: unknown token, wrong action, already used, expired,
        appointment no longer confirmable/cancellable. Does not consume
        the token; call invalidate after the action succeeds. The token row
        stays locked until the transaction ends.
        """
        if not credentials.token:
            return _rejected("invalid")

        row = (
            await session.execute(
                select(AppointmentToken)
                .where(AppointmentToken.token == credentials.token)
                .with_for_update()
            )
        ).scalar_one_or_none()
        if row is None:
            return _rejected("invalid")
        if row.action != LinkAction(expected_action).value:
            return _rejected("invalid")
        if row.used_at is not None:
            return _rejected("used", row.appointment_id)
        if (now or utcnow()) > ensure_aware(row.expires_at):
            return _rejected("expired", row.appointment_id)

        return await _check_appointment(session, row.appointment_id)

    async def invalidate(self, session, credentials) -> bool:
        if not credentials.token:
            return False
        res = await session.execute(
            update(AppointmentToken)
            .where(AppointmentToken.token == credentials.token, AppointmentToken.used_at.is_(None))
            .values(used_at=utcnow())
        )
        return bool(res.rowcount)

    async def invalidate_all(self, session, appointment_id) -> int:
        res = await session.execute(
            update(AppointmentToken)
            .where(
                AppointmentToken.appointment_id == appointment_id,
                AppointmentToken.used_at.is_(None),
            )
            .values(used_at=utcnow())
        )
        return res.rowcount or 0


def get_link_service(mode: str | None = None) -> AppointmentLinkService:
    mode = mode or settings.LINK_MODE
    if mode == "signed":
        return SignedLinkService()
    return StoredTokenService()
