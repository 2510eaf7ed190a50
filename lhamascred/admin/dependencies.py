import hmac
from typing import Optional

from fastapi import Depends, Header

from lhamascred.core.config import get_settings
from lhamascred.core.dependencies import get_current_user_optional
from lhamascred.core.exceptions import ForbiddenException


def require_admin_api_key(x_admin_api_key: str = Header(default="", alias="X-ADMIN-API-KEY")) -> str:
    """
    Admin auth via API key header (automation and ops scripts).

    If ADMIN_API_KEY is not configured, deny all key-based access (fail closed).
    """
    expected = (get_settings().ADMIN_API_KEY or "").strip()
    provided = (x_admin_api_key or "").strip()

    if not expected or not hmac.compare_digest(provided, expected):
        raise ForbiddenException("Admin access denied")
    return "admin_api_key"


async def require_admin(
    x_admin_api_key: str = Header(default="", alias="X-ADMIN-API-KEY"),
    current_user: Optional[dict] = Depends(get_current_user_optional),
) -> str:
    """An active user with the admin role, or a valid admin API key."""
    if current_user and current_user.get("role") == "admin":
        return current_user["email"]
    return require_admin_api_key(x_admin_api_key=x_admin_api_key)
