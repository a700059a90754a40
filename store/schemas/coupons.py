from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field

from store.schemas.common import ApiModel


class CouponValidateIn(ApiModel):
    code: str = Field(..., max_length=64)
    order_amount: float


class AppliedCouponOut(ApiModel):
    id: int
    code: str
    type: str
    value: int
    max_discount: Optional[int] = None


class CouponValidateOut(ApiModel):
    is_valid: bool
    coupon: Optional[AppliedCouponOut] = None
    discount_amount: Optional[int] = None
    final_amount: Optional[int] = None
    error: Optional[str] = None
    reason: Optional[str] = None


# -------------------------
# Admin payloads
# -------------------------

class AdminCouponCreateIn(ApiModel):
    code: str = Field(..., min_length=3, max_length=64)
    type: Literal["PERCENTAGE", "FIXED"]
    value: int
    min_amount: int = 0
    max_discount: Optional[int] = None
    usage_limit: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True


class AdminCouponUpdateIn(ApiModel):
    code: Optional[str] = Field(default=None, min_length=3, max_length=64)
    type: Optional[Literal["PERCENTAGE", "FIXED"]] = None
    value: Optional[int] = None
    min_amount: Optional[int] = None
    max_discount: Optional[int] = None
    usage_limit: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None


class AdminCouponOut(ApiModel):
    id: int
    code: str
    type: str
    value: int
    min_amount: int
    max_discount: Optional[int]
    usage_limit: Optional[int]
    used_count: int
    valid_from: Optional[datetime]
    valid_until: Optional[datetime]
    is_active: bool
    created_by_user_id: Optional[int]
    created_at: datetime
    updated_at: datetime


class AdminCouponListOut(ApiModel):
    items: List[AdminCouponOut]
    total: int
    limit: int
    offset: int


class CouponUsageOut(ApiModel):
    id: int
    user_id: int
    order_id: Optional[int] = None
    discount_amount: int
    used_at: datetime
    full_name: Optional[str] = None
    email: Optional[str] = None
    product_id: Optional[str] = None
    total_price: Optional[int] = None


class CouponStatsOut(ApiModel):
    total_usage: int
    total_discount: int
    recent_usage: List[CouponUsageOut]


class AdminCouponDetailOut(ApiModel):
    coupon: AdminCouponOut
    stats: CouponStatsOut


class CouponDeleteOut(ApiModel):
    outcome: Literal["deleted", "deactivated"]
    message: str
