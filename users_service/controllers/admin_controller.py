"""
Admin controller — user management & dashboard.

Every route uses `Depends(require_capability(...))` for enforcement.
Controllers are THIN — they delegate to services and return schemas.

Architecture note:
    We inject `admin: User` from `require_capability` so the controller
    has access to the authenticated admin's identity without a second
    DB call.

Route order matters: `/admin/dashboard` is declared before the
`/{user_id}` catch-alls.
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from users_service.core.database import get_db
from users_service.models.user import User, UserRole, UserStatus
from users_service.rbac.dependencies import require_capability
from users_service.rbac.permissions import Capability
from users_service.schemas import (
    DashboardResponse,
    DashboardStats,
    SuccessResponse,
    UpdateUserRequest,
    UserListResponse,
    UserOut,
    UserResponse,
)
from users_service.services import user_service

router = APIRouter(tags=["Admin"])


# ── Dashboard ────────────────────────────────────────────────────────
@router.get("/admin/dashboard", response_model=DashboardResponse)
async def dashboard(
    admin: User = Depends(require_capability(Capability.DASHBOARD_VIEW)),
    db: AsyncSession = Depends(get_db),
):
    stats = await user_service.dashboard_stats(db)
    return DashboardResponse(
        message="Welcome to Admin Dashboard!",
        stats=DashboardStats.model_validate(stats),
    )


# ── Users ────────────────────────────────────────────────────────────
@router.get("", response_model=UserListResponse)
async def list_users(
    admin: User = Depends(require_capability(Capability.USERS_READ)),
    db: AsyncSession = Depends(get_db),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    status: UserStatus | None = Query(None),
    role: UserRole | None = Query(None),
):
    users = await user_service.list_users(db, skip, limit, status=status, role=role)
    return UserListResponse(
        count=len(users),
        users=[UserOut.model_validate(u) for u in users],
    )


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: uuid.UUID,
    admin: User = Depends(require_capability(Capability.USERS_READ)),
    db: AsyncSession = Depends(get_db),
):
    user = await user_service.get_user_by_id(user_id, db)
    return UserResponse(user=UserOut.model_validate(user))


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: uuid.UUID,
    body: UpdateUserRequest,
    admin: User = Depends(require_capability(Capability.USERS_UPDATE)),
    db: AsyncSession = Depends(get_db),
):
    """Update whitelisted fields.  Setting `status=inactive` revokes all sessions."""
    changes = {
        name: value
        for name, value in body.model_dump(exclude_unset=True).items()
        if value is not None
    }
    user = await user_service.update_user(user_id, changes, db, actor_id=admin.id)
    return UserResponse(user=UserOut.model_validate(user))


@router.delete("/{user_id}", response_model=SuccessResponse)
async def delete_user(
    user_id: uuid.UUID,
    admin: User = Depends(require_capability(Capability.USERS_DEACTIVATE)),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete — the row stays with `status=inactive`."""
    await user_service.deactivate_user(user_id, admin.id, db)
    return SuccessResponse(message="User deactivated successfully")
