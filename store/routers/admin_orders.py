from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from store.core.db import get_db
from store.core.deps import get_services, require_admin
from store.schemas.common import MessageOut
from store.schemas.orders import (
    AdminOrderUpdateIn,
    AdminRefundIn,
    OrderListOut,
    OrderOut,
    RefundOut,
)
from store.services.container import Services

router = APIRouter(prefix="/admin/orders", tags=["Admin - Orders"], dependencies=[Depends(require_admin)])


@router.get("", response_model=OrderListOut)
async def admin_list_orders(
    status: Optional[str] = Query(default=None),
    product_id: Optional[str] = Query(default=None, alias="productId"),
    user_id: Optional[int] = Query(default=None, alias="userId"),
    search: Optional[str] = Query(default=None),
    sort_by: str = Query(default="created_at", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder", pattern="^(asc|desc)$"),
    limit: int = Query(default=20, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    return await services.orders.list_orders(
        db,
        user_id=user_id,
        status=status,
        product_id=product_id,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=offset,
    )


@router.get("/{order_id}", response_model=OrderOut)
async def admin_get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    return await services.orders.get_order(db, order_id=order_id)


@router.patch("/{order_id}", response_model=OrderOut)
async def admin_update_order(
    order_id: int,
    body: AdminOrderUpdateIn,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    await services.orders.update_order_status(
        db, order_id=order_id, status=body.status, admin_notes=body.admin_notes
    )
    return await services.orders.get_order(db, order_id=order_id)


@router.post("/{order_id}/refund", response_model=RefundOut)
async def admin_refund_order(
    order_id: int,
    body: AdminRefundIn,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    refund_amount = await services.orders.refund_order(db, order_id=order_id, reason=body.reason)
    return RefundOut(order_id=order_id, refund_amount=refund_amount)


@router.delete("/{order_id}", response_model=MessageOut)
async def admin_delete_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    await services.orders.delete_order(db, order_id=order_id)
    return MessageOut(message="Order deleted successfully")
