"""
Security guards for role-based access control.

Ownership checks depend on the reservation and live in the engine; this
module only gates endpoints by role.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from backend.app.core.dependencies import get_current_actor
from backend.app.domain.reservations.actor import Actor
from backend.app.models.enums import UserRole


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.get("/reservations/{reservation_id}/audit")
        async def audit(actor: Actor = Depends(require_role([UserRole.APPROVER, UserRole.ADMIN]))):
            ...

    Args:
        allowed_roles: List of UserRole enums that are allowed to access the endpoint

    Returns:
        FastAPI dependency function returning the Actor

    Raises:
        HTTPException 403 if the actor's role is not in allowed_roles
    """
    async def role_checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )
        return actor

    return role_checker


require_elevated = require_role([UserRole.APPROVER, UserRole.ADMIN])
require_admin = require_role([UserRole.ADMIN])
