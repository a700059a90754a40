from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from store.core.db import get_db
from store.core.deps import get_current_user, get_services
from store.models.user import User
from store.schemas.orders import CancelOrderOut, OrderCreateIn, OrderListOut, OrderOut
from store.services.container import Services

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.get("", response_model=OrderListOut)
async def list_my_orders(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.orders.list_orders(
        db,
        user_id=current_user.id,
        status=status_filter,
        limit=limit,
        offset=offset,
    )


@router.get("/{order_id}", response_model=OrderOut)
async def get_my_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.orders.get_order(db, order_id=order_id, user_id=current_user.id)


@router.post("", response_model=OrderOut, status_code=status.HTTP_201_CREATED)
async def create_order(
    body: OrderCreateIn,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    user_id = current_user.id
    order = await services.orders.create_order(
        db,
        user_id=user_id,
        product_id=body.product_id,
        option_name=body.option_name,
        quantity=body.quantity,
        total_price=body.total_price,
        coupon_code=body.coupon_code,
        telegram_id=body.telegram_id,
        notes=body.notes,
    )
    return await services.orders.get_order(db, order_id=order.id, user_id=user_id)


@router.put("/{order_id}/cancel", response_model=CancelOrderOut)
async def cancel_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    user_id = current_user.id
    order = await services.orders.cancel_order(db, order_id=order_id, user_id=user_id)
    refund_amount = int(order.total_price)
    return CancelOrderOut(
        order=await services.orders.get_order(db, order_id=order_id, user_id=user_id),
        refund_amount=refund_amount,
    )
