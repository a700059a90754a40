from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from store.core.db import get_db
from store.core.deps import get_current_user, get_services
from store.core.errors import CouponIneligible
from store.models.user import User
from store.schemas.coupons import CouponValidateIn, CouponValidateOut
from store.services.container import Services

router = APIRouter(prefix="/coupons", tags=["Coupons"])


@router.post("/validate", response_model=CouponValidateOut)
async def validate_coupon(
    body: CouponValidateIn,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    # Read-only preview; nothing is reserved until the order is placed.
    result = await services.validator.validate(db, body.code, current_user.id, body.order_amount)
    if not result.is_valid:
        raise CouponIneligible(result.error, reason=result.reason)
    return CouponValidateOut.model_validate(result, from_attributes=True)
