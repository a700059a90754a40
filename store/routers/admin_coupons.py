from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from store.core.db import get_db
from store.core.deps import require_admin
from store.models.user import User
from store.schemas.coupons import (
    AdminCouponCreateIn,
    AdminCouponDetailOut,
    AdminCouponListOut,
    AdminCouponOut,
    AdminCouponUpdateIn,
    CouponDeleteOut,
)
from store.services.coupons import (
    create_coupon,
    delete_coupon,
    get_coupon,
    get_coupon_stats,
    list_coupons,
    update_coupon,
)

router = APIRouter(prefix="/admin/coupons", tags=["Admin - Coupons"])


@router.get("", response_model=AdminCouponListOut)
async def admin_list_coupons(
    search: Optional[str] = Query(default=None),
    status_filter: Optional[str] = Query(default=None, alias="status", pattern="^(active|expired|inactive)$"),
    sort_by: str = Query(default="created_at", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder", pattern="^(asc|desc)$"),
    limit: int = Query(default=20, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
):
    return await list_coupons(
        db,
        search=search,
        status=status_filter,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=AdminCouponOut, status_code=status.HTTP_201_CREATED)
async def admin_create_coupon(
    body: AdminCouponCreateIn,
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
):
    return await create_coupon(
        db,
        admin_user=admin_user,
        code=body.code,
        type_=body.type,
        value=body.value,
        min_amount=body.min_amount,
        max_discount=body.max_discount,
        usage_limit=body.usage_limit,
        valid_from=body.valid_from,
        valid_until=body.valid_until,
        is_active=body.is_active,
    )


@router.get("/{coupon_id}", response_model=AdminCouponDetailOut)
async def admin_get_coupon(
    coupon_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
):
    coupon = await get_coupon(db, coupon_id)
    stats = await get_coupon_stats(db, coupon_id)
    return AdminCouponDetailOut(coupon=AdminCouponOut.model_validate(coupon), stats=stats)


@router.patch("/{coupon_id}", response_model=AdminCouponOut)
async def admin_update_coupon(
    coupon_id: int,
    body: AdminCouponUpdateIn,
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
):
    # only fields the client actually sent
    changes = body.model_dump(exclude_unset=True)
    return await update_coupon(db, coupon_id, admin_user=admin_user, changes=changes)


@router.delete("/{coupon_id}", response_model=CouponDeleteOut)
async def admin_delete_coupon(
    coupon_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
):
    outcome = await delete_coupon(db, coupon_id, admin_user=admin_user)
    message = (
        "Coupon deleted successfully"
        if outcome == "deleted"
        else "Coupon has been used and was deactivated instead of deleted"
    )
    return CouponDeleteOut(outcome=outcome, message=message)
