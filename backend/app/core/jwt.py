"""
JWT token utilities for authentication.

Tokens are issued by the identity service; this module only verifies them.
"""

from typing import Optional, Dict, Any
from jose import JWTError, jwt
from backend.app.core.config import settings


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate a JWT access token.

    Args:
        token: JWT token string to decode

    Returns:
        Decoded token payload if valid (includes: sub, user_id, role,
        tenant_id, branch_id, exp), None otherwise
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        return payload
    except JWTError:
        return None
