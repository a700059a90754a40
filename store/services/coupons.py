# store/services/coupons.py
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog
from sqlalchemy import func, or_, select, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from store.core.errors import Conflict, NotFound, ValidationError
from store.models.coupon import Coupon, CouponType, CouponUsage
from store.models.order import Order
from store.models.user import User

logger = structlog.get_logger(__name__)


MIN_CODE_LENGTH = 3


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class AppliedCoupon:
    id: int
    code: str
    type: str
    value: int
    max_discount: Optional[int]


@dataclass(frozen=True)
class CouponValidation:
    is_valid: bool
    coupon: Optional[AppliedCoupon] = None
    discount_amount: Optional[int] = None
    final_amount: Optional[int] = None
    error: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def rejected(cls, reason: str, error: str) -> "CouponValidation":
        return cls(is_valid=False, reason=reason, error=error)


def compute_discount(coupon: Coupon, amount: int) -> int:
    """
    Discount for ``amount`` under ``coupon``.

    Stored misconfiguration is tolerated: a percentage outside 1..100 is
    clamped and a negative fixed value counts as zero, both with a warning.
    """
    raw = int(coupon.value)

    if coupon.type == CouponType.PERCENTAGE.value:
        pct = min(100, max(1, raw))
        if pct != raw:
            logger.warning("coupon_percentage_clamped", code=coupon.code, original=raw, clamped=pct)
        discount = (amount * pct) // 100

        max_discount = int(coupon.max_discount or 0)
        if max_discount > 0 and discount > max_discount:
            discount = max_discount
    else:
        fixed = max(0, raw)
        if fixed != raw:
            logger.warning("coupon_fixed_value_clamped", code=coupon.code, original=raw)
        discount = min(fixed, amount)

    return max(0, discount)


class CouponValidator:
    """
    Eligibility and discount calculation for a coupon code.

    Read-only: the order transaction records the usage. Calling ``validate``
    again with the same inputs and no state change in between gives the same
    result.
    """

    def __init__(self, *, min_order_amount: int, clock: Callable[[], datetime] = _utcnow):
        self.min_order_amount = min_order_amount
        self.clock = clock

    async def validate(
        self,
        db: AsyncSession,
        code: str,
        user_id: int,
        order_amount: int | float,
    ) -> CouponValidation:
        normalized = normalize_code(code)
        if len(normalized) < MIN_CODE_LENGTH:
            return CouponValidation.rejected("invalid_code", "Coupon code is not valid.")

        if order_amount is None or not math.isfinite(order_amount):
            return CouponValidation.rejected("invalid_amount", "Order amount is not valid.")
        amount = int(order_amount)
        if amount < self.min_order_amount:
            return CouponValidation.rejected("invalid_amount", "Order amount is not valid.")

        res = await db.execute(select(Coupon).where(Coupon.code == normalized))
        coupon = res.scalar_one_or_none()

        if coupon is None:
            return CouponValidation.rejected("not_found", "Coupon code is not valid.")
        if not coupon.is_active:
            return CouponValidation.rejected("inactive", "Coupon code is inactive.")

        now = self.clock()
        if coupon.valid_from is not None and now < _as_utc(coupon.valid_from):
            return CouponValidation.rejected("not_started", "Coupon code is not active yet.")
        if coupon.valid_until is not None and now > _as_utc(coupon.valid_until):
            return CouponValidation.rejected("expired", "Coupon code has expired.")

        min_amount = int(coupon.min_amount or 0)
        if min_amount > 0 and amount < min_amount:
            return CouponValidation.rejected(
                "below_min_amount",
                f"Minimum order amount for this coupon is {min_amount:,}.",
            )

        # Read outside the order transaction; concurrent orders may overrun the limit slightly.
        if coupon.usage_limit and coupon.used_count >= coupon.usage_limit:
            return CouponValidation.rejected("usage_limit_reached", "Coupon usage limit has been reached.")

        used = await db.execute(
            select(CouponUsage.id).where(
                CouponUsage.coupon_id == coupon.id,
                CouponUsage.user_id == user_id,
            )
        )
        if used.first() is not None:
            return CouponValidation.rejected("already_used", "You have already used this coupon.")

        discount = compute_discount(coupon, amount)
        final_amount = max(0, amount - discount)

        logger.info(
            "coupon_validated",
            user_id=user_id,
            code=normalized,
            order_amount=amount,
            discount_amount=discount,
            final_amount=final_amount,
        )

        return CouponValidation(
            is_valid=True,
            coupon=AppliedCoupon(
                id=int(coupon.id),
                code=coupon.code,
                type=coupon.type,
                value=int(coupon.value),
                max_discount=int(coupon.max_discount) if coupon.max_discount is not None else None,
            ),
            discount_amount=discount,
            final_amount=final_amount,
        )

    async def validate_and_apply(
        self,
        db: AsyncSession,
        code: str,
        user_id: int,
        order_amount: int | float,
    ) -> CouponValidation:
        result = await self.validate(db, code, user_id, order_amount)
        if result.is_valid:
            logger.info(
                "coupon_will_be_applied",
                user_id=user_id,
                code=result.coupon.code,
                discount_amount=result.discount_amount,
                final_amount=result.final_amount,
            )
        return result


# -------------------------
# Admin
# -------------------------

COUPON_SORT_FIELDS = {
    "created_at": Coupon.created_at,
    "updated_at": Coupon.updated_at,
    "valid_from": Coupon.valid_from,
    "valid_until": Coupon.valid_until,
    "code": Coupon.code,
    "type": Coupon.type,
    "value": Coupon.value,
    "used_count": Coupon.used_count,
    "is_active": Coupon.is_active,
}


def _check_coupon_fields(
    *,
    type_: str,
    value: int,
    min_amount: int,
    max_discount: Optional[int],
    usage_limit: Optional[int],
    valid_from: Optional[datetime],
    valid_until: Optional[datetime],
) -> None:
    if type_ not in (CouponType.PERCENTAGE.value, CouponType.FIXED.value):
        raise ValidationError("Invalid coupon type.")
    if type_ == CouponType.PERCENTAGE.value:
        if value < 1 or value > 100:
            raise ValidationError("Percentage value must be between 1 and 100.")
    elif value <= 0:
        raise ValidationError("Fixed value must be greater than 0.")
    if min_amount < 0:
        raise ValidationError("min_amount must be non-negative.")
    if max_discount is not None and max_discount < 0:
        raise ValidationError("max_discount must be non-negative.")
    if usage_limit is not None and usage_limit < 1:
        raise ValidationError("usage_limit must be at least 1.")
    if valid_from and valid_until and _as_utc(valid_until) <= _as_utc(valid_from):
        raise ValidationError("valid_until must be after valid_from.")


async def _code_taken(db: AsyncSession, code: str, exclude_id: int | None = None) -> bool:
    stmt = select(Coupon.id).where(Coupon.code == code)
    if exclude_id is not None:
        stmt = stmt.where(Coupon.id != exclude_id)
    res = await db.execute(stmt)
    return res.first() is not None


async def create_coupon(
    db: AsyncSession,
    *,
    admin_user: User,
    code: str,
    type_: str,
    value: int,
    min_amount: int = 0,
    max_discount: Optional[int] = None,
    usage_limit: Optional[int] = None,
    valid_from: Optional[datetime] = None,
    valid_until: Optional[datetime] = None,
    is_active: bool = True,
) -> Coupon:
    code = normalize_code(code)
    if len(code) < MIN_CODE_LENGTH:
        raise ValidationError("Coupon code is required (min 3 chars).")

    _check_coupon_fields(
        type_=type_,
        value=value,
        min_amount=min_amount,
        max_discount=max_discount,
        usage_limit=usage_limit,
        valid_from=valid_from,
        valid_until=valid_until,
    )

    if await _code_taken(db, code):
        raise Conflict("Coupon code already exists.")

    coupon = Coupon(
        code=code,
        type=type_,
        value=value,
        min_amount=min_amount,
        max_discount=max_discount,
        usage_limit=usage_limit,
        used_count=0,
        valid_from=valid_from,
        valid_until=valid_until,
        is_active=is_active,
        created_by_user_id=admin_user.id,
    )
    db.add(coupon)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("Coupon code already exists.")

    await db.refresh(coupon)
    logger.info("coupon_created", admin_id=admin_user.id, coupon_id=coupon.id, code=code)
    return coupon


async def get_coupon(db: AsyncSession, coupon_id: int) -> Coupon:
    coupon = await db.get(Coupon, coupon_id)
    if coupon is None:
        raise NotFound("Coupon not found.")
    return coupon


async def update_coupon(db: AsyncSession, coupon_id: int, *, admin_user: User, changes: dict) -> Coupon:
    coupon = await get_coupon(db, coupon_id)

    if "code" in changes and changes["code"] is not None:
        code = normalize_code(changes["code"])
        if len(code) < MIN_CODE_LENGTH:
            raise ValidationError("Coupon code is required (min 3 chars).")
        if await _code_taken(db, code, exclude_id=coupon.id):
            raise Conflict("Coupon code already exists.")
        changes["code"] = code

    merged = {
        "type_": changes.get("type", coupon.type),
        "value": changes.get("value", coupon.value),
        "min_amount": changes.get("min_amount", coupon.min_amount),
        "max_discount": changes.get("max_discount", coupon.max_discount),
        "usage_limit": changes.get("usage_limit", coupon.usage_limit),
        "valid_from": changes.get("valid_from", coupon.valid_from),
        "valid_until": changes.get("valid_until", coupon.valid_until),
    }
    if merged["min_amount"] is None:
        raise ValidationError("min_amount must be non-negative.")
    _check_coupon_fields(**merged)

    for field, value in changes.items():
        setattr(coupon, field, value)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("Coupon code already exists.")

    await db.refresh(coupon)
    logger.info("coupon_updated", admin_id=admin_user.id, coupon_id=coupon.id, fields=sorted(changes))
    return coupon


async def delete_coupon(db: AsyncSession, coupon_id: int, *, admin_user: User) -> str:
    """Delete an unused coupon; a coupon with usages is deactivated instead."""
    coupon = await get_coupon(db, coupon_id)

    res = await db.execute(
        select(func.count()).select_from(CouponUsage).where(CouponUsage.coupon_id == coupon.id)
    )
    usages = int(res.scalar_one())

    if usages > 0:
        coupon.is_active = False
        outcome = "deactivated"
    else:
        await db.delete(coupon)
        outcome = "deleted"

    await db.commit()
    logger.info("coupon_removed", admin_id=admin_user.id, coupon_id=coupon_id, outcome=outcome)
    return outcome


async def list_coupons(
    db: AsyncSession,
    *,
    search: Optional[str] = None,
    status: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    limit: int = 20,
    offset: int = 0,
    now: Optional[datetime] = None,
) -> dict:
    filters = []
    now = now or _utcnow()

    if search and search.strip():
        filters.append(Coupon.code.ilike(f"%{search.strip()}%"))

    if status == "active":
        filters.append(Coupon.is_active.is_(True))
        filters.append(or_(Coupon.valid_from.is_(None), Coupon.valid_from <= now))
        filters.append(or_(Coupon.valid_until.is_(None), Coupon.valid_until > now))
    elif status == "expired":
        filters.append(and_(Coupon.valid_until.is_not(None), Coupon.valid_until <= now))
    elif status == "inactive":
        filters.append(Coupon.is_active.is_(False))
    elif status is not None:
        raise ValidationError("Invalid status filter.")

    column = COUPON_SORT_FIELDS.get(sort_by, Coupon.created_at)
    ordering = column.asc() if sort_order.lower() == "asc" else column.desc()

    total_res = await db.execute(select(func.count()).select_from(Coupon).where(*filters))
    total = int(total_res.scalar_one())

    res = await db.execute(
        select(Coupon).where(*filters).order_by(ordering, Coupon.id.desc()).limit(limit).offset(offset)
    )
    return {"items": list(res.scalars().all()), "total": total, "limit": limit, "offset": offset}


async def get_coupon_stats(db: AsyncSession, coupon_id: int) -> dict:
    agg = await db.execute(
        select(func.count(CouponUsage.id), func.coalesce(func.sum(CouponUsage.discount_amount), 0)).where(
            CouponUsage.coupon_id == coupon_id
        )
    )
    total_usage, total_discount = agg.one()

    recent_res = await db.execute(
        select(CouponUsage, User.full_name, User.email, Order.product_id, Order.total_price)
        .join(User, User.id == CouponUsage.user_id)
        .outerjoin(Order, Order.id == CouponUsage.order_id)
        .where(CouponUsage.coupon_id == coupon_id)
        .order_by(CouponUsage.used_at.desc(), CouponUsage.id.desc())
        .limit(10)
    )

    recent = []
    for usage, full_name, email, product_id, total_price in recent_res.all():
        recent.append(
            {
                "id": int(usage.id),
                "user_id": int(usage.user_id),
                "order_id": int(usage.order_id) if usage.order_id is not None else None,
                "discount_amount": int(usage.discount_amount),
                "used_at": usage.used_at,
                "full_name": full_name,
                "email": email,
                "product_id": product_id,
                "total_price": int(total_price) if total_price is not None else None,
            }
        )

    return {
        "total_usage": int(total_usage),
        "total_discount": int(total_discount),
        "recent_usage": recent,
    }
