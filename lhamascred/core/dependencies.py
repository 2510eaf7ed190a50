"""
Common dependencies for FastAPI routes.
"""

from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from lhamascred.core.database import Database

# HTTP Bearer token security scheme
security = HTTPBearer()
security_optional = HTTPBearer(auto_error=False)


def _decode_token(token: str) -> Optional[dict]:
    """Decode JWT token. Import here to avoid circular imports."""
    from lhamascred.auth.service import AuthService
    return AuthService.decode_token(token)


def _unauthorized(detail: str = "Invalid or expired token") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _load_active_user(payload: dict) -> Optional[dict]:
    try:
        oid = ObjectId(payload["sub"])
    except (InvalidId, KeyError, TypeError):
        return None

    user = await Database.get_collection("users").find_one(
        {"_id": oid},
        {"email": 1, "role": 1, "status": 1, "team_id": 1},
    )
    if not user or user.get("status") != "active":
        return None

    return {
        "id": str(user["_id"]),
        "email": user["email"],
        "role": user.get("role") or "user",
        "team_id": user.get("team_id"),
    }


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> dict:
    """
    Dependency to get the current authenticated user from JWT token.
    Returns user dict with 'id', 'email', 'role' and 'team_id'.

    The role is re-read from the database so that approvals and role changes
    apply without waiting for the token to expire.
    """
    payload = _decode_token(credentials.credentials)
    if not payload:
        raise _unauthorized()

    user = await _load_active_user(payload)
    if not user:
        raise _unauthorized("User not found or not active")
    return user


async def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_optional)
) -> Optional[dict]:
    """
    Optional authentication - returns user if token is valid, None otherwise.
    """
    if not credentials:
        return None

    payload = _decode_token(credentials.credentials)
    if not payload:
        return None

    return await _load_active_user(payload)
