# agenda/dependencies.py
from __future__ import annotations

import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from agenda.core.config import settings
from agenda.core.security import Actor, InvalidTokenError, actor_from_claims, decode_token
from agenda.modules.appointments.links import AppointmentLinkService, get_link_service

# Tokens are issued by the auth service; Swagger only needs a bearer box
bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Actor:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="missing_token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return actor_from_claims(decode_token(credentials.credentials))
    except InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e) or "invalid_token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def link_service() -> AppointmentLinkService:
    """Link mechanism of this deployment (settings.LINK_MODE)."""
    return get_link_service()


async def verify_cron_secret(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> None:
    """
    Guard for scheduler-triggered endpoints: `Authorization: Bearer <CRON_SECRET>`.
    An unset secret disables the endpoints.
    """
    if not settings.CRON_SECRET:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="cron_secret_not_configured",
        )
    if credentials is None or not hmac.compare_digest(
        credentials.credentials.encode(), settings.CRON_SECRET.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid_cron_secret",
        )
