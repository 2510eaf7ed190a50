"""Admin endpoints: account approval, activity log, batch maintenance."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from pydantic import BaseModel

from lhamascred.admin.dependencies import require_admin
from lhamascred.activity.service import ActivityService
from lhamascred.auth.models import UserAdminUpdate, UserListResponse, UserResponse, UserStatus
from lhamascred.auth.service import AuthService
from lhamascred.batches.service import BatchService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(require_admin)],
)


class ExpireStaleResponse(BaseModel):
    status: str = "success"
    expired: int
    message: str


# ==================== Users ====================


@router.get("/users", response_model=UserListResponse)
async def list_users(
    status: Optional[UserStatus] = Query(None, description="Filter by account status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    """List accounts, newest first. Use `status=pending` for the approval queue."""
    users = await AuthService.list_users(status=status, skip=skip, limit=limit)
    return UserListResponse(users=users, count=len(users))


@router.patch("/users/{user_id}", response_model=UserResponse)
async def update_user(
    body: UserAdminUpdate,
    user_id: str = Path(..., description="User ID"),
):
    """Approve/reject/deactivate an account, change its role or team."""
    return await AuthService.update_user(user_id, body.model_dump(exclude_unset=True))


# ==================== Activity ====================


@router.get("/activity")
async def list_activity(
    email: Optional[str] = Query(None),
    provider: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    logs = await ActivityService.list_logs(
        email=email,
        provider=provider,
        date_from=date_from,
        date_to=date_to,
        skip=skip,
        limit=limit,
    )
    return {"status": "success", "logs": logs, "count": len(logs)}


# ==================== Batches ====================


@router.post("/batches/expire-stale", response_model=ExpireStaleResponse)
async def expire_stale_batches(
    older_than_hours: Optional[int] = Query(None, ge=1, description="Defaults to BATCH_STALE_AFTER_HOURS"),
):
    """
    Mark batches stuck in queued/processing as `error`.

    Same sweep the worker runs on its beat schedule.
    """
    expired = await BatchService.expire_stale(older_than_hours)
    logger.info(f"Admin stale-batch sweep expired {expired} batch(es)")
    return ExpireStaleResponse(expired=expired, message=f"{expired} batch(es) expired.")
