from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from store.schemas.common import ApiModel


class OrderCreateIn(ApiModel):
    product_id: str = Field(..., min_length=1, max_length=64)
    option_name: str = Field(..., min_length=1, max_length=255)
    quantity: int
    total_price: float
    coupon_code: Optional[str] = Field(default=None, max_length=64)
    telegram_id: Optional[str] = Field(default=None, max_length=64)
    notes: Optional[str] = Field(default=None, max_length=1000)


class OrderOut(ApiModel):
    id: int
    user_id: int
    username: Optional[str] = None
    product_id: str
    option_name: str
    quantity: int
    total_price: int
    discount_amount: Optional[int] = None
    coupon_id: Optional[int] = None
    coupon_code: Optional[str] = None
    status: str
    telegram_id: Optional[str] = None
    notes: Optional[str] = None
    admin_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class OrderListOut(ApiModel):
    items: List[OrderOut]
    total: int
    limit: int
    offset: int


class CancelOrderOut(ApiModel):
    order: OrderOut
    refund_amount: int
    message: str = "Order cancelled successfully"


# -------------------------
# Admin payloads
# -------------------------

class AdminOrderUpdateIn(ApiModel):
    status: Optional[str] = None
    admin_notes: Optional[str] = Field(default=None, max_length=2000)


class AdminRefundIn(ApiModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class RefundOut(ApiModel):
    order_id: int
    refund_amount: int
    message: str = "Order refunded successfully"
