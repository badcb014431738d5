"""
Authentication dependencies for FastAPI.

This module turns the bearer token of a request into the explicit Actor
handed to every reservation engine operation.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from backend.app.core.jwt import decode_access_token
from backend.app.domain.reservations.actor import Actor
from backend.app.models.enums import UserRole

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Actor:
    """
    FastAPI dependency for JWT authentication.

    Checks:
    1. Validates JWT token signature and expiry
    2. Requires user_id and tenant_id claims
    3. Requires a known role

    Args:
        credentials: HTTP Bearer token from request header

    Returns:
        Actor built from the token claims

    Raises:
        HTTPException: 401 if authentication fails for any reason
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("user_id") or payload.get("sub")
    tenant_id = payload.get("tenant_id")
    if not user_id or not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        role = UserRole(payload.get("role", UserRole.REQUESTER.value))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid role in token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return Actor(
        id=str(user_id),
        role=role,
        tenant_id=str(tenant_id),
        branch_id=payload.get("branch_id"),
    )
