from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from store.core.db import get_db
from store.core.deps import require_admin
from store.models.user import User
from store.schemas.auth import AdminUserCreateIn, UserOut
from store.services.users import create_user

router = APIRouter(prefix="/admin/users", tags=["Admin Users"])


@router.post("", response_model=UserOut, status_code=201)
async def admin_create_user(
    payload: AdminUserCreateIn,
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
):
    # wallet starts empty; fund it through /admin/wallet/{id}/adjust
    user = await create_user(
        db,
        username=payload.username,
        password=payload.password,
        role=payload.role,
        full_name=payload.full_name,
        email=payload.email,
        is_active=payload.is_active,
    )
    return UserOut.model_validate(user)
