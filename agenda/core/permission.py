# agenda/core/permission.py
from __future__ import annotations

from fastapi import Depends, HTTPException, status

from agenda.core.security import Actor
from agenda.dependencies import get_current_actor


def require_roles(*allowed: str):
    """
    Role guard factory. Example: Depends(require_roles("admin"))
    """
    async def dep(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role.value not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="forbidden_role",
            )
        return actor
    return dep
