# agenda/core/security.py
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from agenda.core.config import settings

# Default algorithm shared with the auth service that issues the tokens.
ALGORITHM = "HS256"


class Role(str, Enum):
    ADMIN = "admin"
    PROFESSIONAL = "professional"


class Actor(BaseModel):
    """Caller identity taken from the bearer token claims."""

    id: str
    role: Role
    professional_id: Optional[uuid.UUID] = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def can_act_for(self, professional_id: uuid.UUID | str | None) -> bool:
        if self.is_admin:
            return True
        return (
            professional_id is not None
            and self.professional_id is not None
            and str(self.professional_id) == str(professional_id)
        )


class InvalidTokenError(Exception):
    """Raised when a token is missing/invalid/expired or claims are malformed."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_access_token(
    *,
    subject: str,
    role: str,
    professional_id: Optional[str] = None,
    expires_minutes: int = 60,
    extra_claims: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Mint a bearer token with the claims this service reads. Production
    tokens come from the auth service; this is for tests and local runs.
    """
    to_encode: Dict[str, Any] = {
        "sub": subject,
        "role": role,
        "iat": int(_utcnow().timestamp()),
        "exp": int((_utcnow() + timedelta(minutes=expires_minutes)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if professional_id:
        to_encode["professional_id"] = professional_id
    if extra_claims:
        to_encode.update(extra_claims)
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a JWT. Raises InvalidTokenError on failure.
    """
    if not token:
        raise InvalidTokenError("missing_token")
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGORITHM])
    except JWTError as exc:
        # JWTError covers expired signature, invalid signature, bad format, etc.
        raise InvalidTokenError("invalid_token") from exc

    if "sub" not in payload or "role" not in payload:
        raise InvalidTokenError("invalid_claims")

    return payload


def actor_from_claims(payload: Dict[str, Any]) -> Actor:
    try:
        actor = Actor(
            id=str(payload["sub"]),
            role=payload["role"],
            professional_id=payload.get("professional_id"),
        )
    except (KeyError, ValidationError) as exc:
        raise InvalidTokenError("invalid_claims") from exc

    if actor.role is Role.PROFESSIONAL and actor.professional_id is None:
        raise InvalidTokenError("missing_professional_id")
    return actor
