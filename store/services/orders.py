from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

import structlog
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from store.core.errors import (
    AlreadyRefunded,
    CouponAlreadyUsed,
    CouponIneligible,
    InvalidTransition,
    NotCancellable,
    NotDeletable,
    NotFound,
    NotRefundable,
    ValidationError,
)
from store.core.tasks import DetachedTaskRunner
from store.models.coupon import Coupon, CouponUsage
from store.models.order import Order, OrderStatus
from store.models.user import User
from store.services import order_states, wallet
from store.services.catalog import is_valid_product
from store.services.coupons import CouponValidator
from store.services.notifications import Notifier, OrderConfirmation

logger = structlog.get_logger(__name__)


ORDER_SORT_FIELDS = {
    "created_at": Order.created_at,
    "status": Order.status,
    "total_price": Order.total_price,
    "product_id": Order.product_id,
}


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == "23505":
        return True
    return "unique" in str(orig).lower()


async def _get_coupon_code_map(db: AsyncSession, coupon_ids: list[int]) -> dict[int, str]:
    if not coupon_ids:
        return {}
    res = await db.execute(select(Coupon.id, Coupon.code).where(Coupon.id.in_(coupon_ids)))
    return {int(r[0]): r[1] for r in res.all()}


async def _get_username_map(db: AsyncSession, user_ids: list[int]) -> dict[int, str]:
    if not user_ids:
        return {}
    res = await db.execute(select(User.id, User.username).where(User.id.in_(user_ids)))
    return {int(r[0]): (r[1] or "") for r in res.all()}


def order_to_dict(o: Order, *, coupon_code: str | None = None, username: str | None = None) -> dict:
    return {
        "id": int(o.id),
        "user_id": int(o.user_id),
        "username": username,
        "product_id": o.product_id,
        "option_name": o.option_name,
        "quantity": int(o.quantity),
        "total_price": int(o.total_price),
        "discount_amount": int(o.discount_amount) if o.discount_amount is not None else None,
        "coupon_id": int(o.coupon_id) if o.coupon_id is not None else None,
        "coupon_code": coupon_code,
        "status": o.status,
        "telegram_id": o.telegram_id,
        "notes": o.notes,
        "admin_notes": o.admin_notes,
        "created_at": o.created_at,
        "updated_at": o.updated_at,
    }


class OrderService:
    """
    Order creation and the compensating transitions (cancel, refund).

    Every money-moving method is one transaction on the session it is given:
    it commits on success and rolls back everything on any failure.
    """

    def __init__(
        self,
        *,
        validator: CouponValidator,
        notifier: Notifier,
        tasks: DetachedTaskRunner,
        min_amount: int,
        max_amount: int,
        max_quantity: int = 100,
    ):
        self.validator = validator
        self.notifier = notifier
        self.tasks = tasks
        self.min_amount = min_amount
        self.max_amount = max_amount
        self.max_quantity = max_quantity

    # -------------------------
    # Create
    # -------------------------

    def _check_static(self, product_id: str, option_name: str, quantity: int, total_price: int | float) -> int:
        if not is_valid_product(product_id):
            raise ValidationError("Invalid product ID")
        if not option_name or not option_name.strip():
            raise ValidationError("Option name is required")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or not 1 <= quantity <= self.max_quantity:
            raise ValidationError("Invalid quantity")
        if total_price is None or not math.isfinite(total_price) or total_price < self.min_amount:
            raise ValidationError("Invalid total price")
        return int(total_price)

    async def create_order(
        self,
        db: AsyncSession,
        *,
        user_id: int,
        product_id: str,
        option_name: str,
        quantity: int,
        total_price: int | float,
        coupon_code: str | None = None,
        telegram_id: str | None = None,
        notes: str | None = None,
    ) -> Order:
        final_price = self._check_static(product_id, option_name, quantity, total_price)

        coupon_id: int | None = None
        discount_amount: int | None = None

        # Pre-check outside the transaction; the usage unique key settles races.
        if coupon_code and coupon_code.strip():
            result = await self.validator.validate_and_apply(db, coupon_code, user_id, final_price)
            if result.reason == "already_used":
                raise CouponAlreadyUsed()
            if not result.is_valid:
                raise CouponIneligible(result.error, reason=result.reason)
            final_price = int(result.final_amount)
            discount_amount = int(result.discount_amount)
            coupon_id = result.coupon.id

        if final_price < self.min_amount:
            raise ValidationError("Final amount is too small")
        if final_price > self.max_amount:
            raise ValidationError("Final amount exceeds allowed limit")

        tx_id = uuid4()

        try:
            # 1) wallet debit, refused if it would go negative
            entry = await wallet.debit(
                db,
                user_id,
                final_price,
                kind=wallet.ORDER_DEBIT,
                tx_id=tx_id,
                meta={"product_id": product_id, "quantity": quantity},
            )

            # 2) order row
            order = Order(
                user_id=user_id,
                product_id=product_id,
                option_name=option_name.strip(),
                quantity=quantity,
                total_price=final_price,
                discount_amount=discount_amount,
                coupon_id=coupon_id,
                status=OrderStatus.PENDING.value,
                telegram_id=telegram_id or None,
                notes=notes or None,
            )
            db.add(order)
            await db.flush()
            entry.order_id = order.id

            # 3) coupon usage, once per (coupon, user)
            if coupon_id is not None:
                db.add(
                    CouponUsage(
                        coupon_id=coupon_id,
                        user_id=user_id,
                        order_id=order.id,
                        discount_amount=discount_amount,
                    )
                )
                try:
                    await db.flush()
                except IntegrityError as e:
                    if _is_unique_violation(e):
                        raise CouponAlreadyUsed() from e
                    raise

                await db.execute(
                    update(Coupon)
                    .where(Coupon.id == coupon_id)
                    .values(used_count=Coupon.used_count + 1)
                )

            await db.commit()
        except Exception:
            await db.rollback()
            raise

        await db.refresh(order)

        logger.info(
            "order_created",
            user_id=user_id,
            order_id=order.id,
            product_id=product_id,
            total_price=final_price,
            discount_amount=discount_amount,
        )

        await self._send_confirmation(db, order)
        return order

    async def _send_confirmation(self, db: AsyncSession, order: Order) -> None:
        res = await db.execute(select(User.email, User.full_name).where(User.id == order.user_id))
        row = res.first()
        confirmation = OrderConfirmation(
            order_id=int(order.id),
            user_id=int(order.user_id),
            email=row[0] if row else None,
            full_name=row[1] if row else None,
            product_id=order.product_id,
            option_name=order.option_name,
            quantity=int(order.quantity),
            total_price=int(order.total_price),
            discount_amount=order.discount_amount,
        )
        self.tasks.submit(
            self.notifier.send_order_confirmation(confirmation.user_id, confirmation),
            name=f"order-confirmation-{order.id}",
        )

    # -------------------------
    # Compensation
    # -------------------------

    async def _compensate(
        self,
        db: AsyncSession,
        *,
        order_id: int,
        user_id: int,
        total_price: int,
        coupon_id: int | None,
        kind: str,
        note: str | None = None,
    ) -> None:
        if total_price > 0:
            await wallet.credit(db, user_id, int(total_price), kind=kind, order_id=order_id, note=note)

        if coupon_id is not None:
            await db.execute(
                update(Coupon)
                .where(Coupon.id == coupon_id, Coupon.used_count > 0)
                .values(used_count=Coupon.used_count - 1)
            )

    async def cancel_order(self, db: AsyncSession, *, order_id: int, user_id: int | None) -> Order:
        """
        PENDING -> CANCELLED with the wallet credited back and the coupon slot
        released. ``user_id`` scopes the order to its owner; admins pass None.
        """
        stmt = update(Order).where(
            Order.id == order_id,
            Order.status == OrderStatus.PENDING.value,
        )
        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)

        try:
            res = await db.execute(
                stmt.values(status=OrderStatus.CANCELLED.value, updated_at=_now_utc())
                .returning(Order.user_id, Order.total_price, Order.coupon_id)
            )
            row = res.first()
            if row is None:
                raise NotCancellable()

            owner_id, total_price, coupon_id = row
            await self._compensate(
                db,
                order_id=order_id,
                user_id=int(owner_id),
                total_price=int(total_price),
                coupon_id=coupon_id,
                kind=wallet.ORDER_CANCEL_CREDIT,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("order_cancelled", user_id=int(owner_id), order_id=order_id, refund_amount=int(total_price))
        return await self._load(db, order_id)

    async def refund_order(self, db: AsyncSession, *, order_id: int, reason: str | None = None) -> int:
        """COMPLETED/PROCESSING -> REFUNDED; returns the amount credited."""
        try:
            res = await db.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.status.in_([s.value for s in order_states.REFUNDABLE_FROM]),
                )
                .values(
                    status=OrderStatus.REFUNDED.value,
                    admin_notes=reason or "Refunded by admin",
                    updated_at=_now_utc(),
                )
                .returning(Order.user_id, Order.total_price, Order.coupon_id)
            )
            row = res.first()

            if row is None:
                current = await db.execute(select(Order.status).where(Order.id == order_id))
                status = current.scalar_one_or_none()
                if status is None:
                    raise NotFound("Order not found")
                if status == OrderStatus.REFUNDED.value:
                    raise AlreadyRefunded()
                raise NotRefundable()

            owner_id, total_price, coupon_id = row
            await self._compensate(
                db,
                order_id=order_id,
                user_id=int(owner_id),
                total_price=int(total_price),
                coupon_id=coupon_id,
                kind=wallet.ORDER_REFUND_CREDIT,
                note=reason,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("order_refunded", order_id=order_id, user_id=int(owner_id), refund_amount=int(total_price), reason=reason)
        return int(total_price)

    # -------------------------
    # Admin status changes
    # -------------------------

    async def update_order_status(
        self,
        db: AsyncSession,
        *,
        order_id: int,
        status: Optional[str] = None,
        admin_notes: Optional[str] = None,
    ) -> Order:
        current = await self._load(db, order_id)

        if status is not None:
            try:
                target = order_states.parse_status(status)
            except ValueError:
                raise ValidationError("Invalid order status")
        else:
            target = None

        # notes only
        if target is None or target.value == current.status:
            if admin_notes is not None:
                current.admin_notes = admin_notes
                await db.commit()
            return await self._load(db, order_id)

        if not order_states.can_transition(current.status, target):
            raise InvalidTransition(f"Cannot move order from {current.status} to {target.value}")

        if target == OrderStatus.REFUNDED:
            await self.refund_order(db, order_id=order_id, reason=admin_notes)
            return await self._load(db, order_id)

        if target == OrderStatus.CANCELLED:
            await self.cancel_order(db, order_id=order_id, user_id=None)
            if admin_notes is not None:
                return await self.update_order_status(db, order_id=order_id, admin_notes=admin_notes)
            return await self._load(db, order_id)

        previous = current.status
        values: dict = {"status": target.value, "updated_at": _now_utc()}
        if admin_notes is not None:
            values["admin_notes"] = admin_notes

        res = await db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == previous)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            await db.rollback()
            raise InvalidTransition("Order status changed concurrently")
        await db.commit()

        order = await self._load(db, order_id)
        logger.info("order_status_updated", order_id=order_id, old_status=previous, new_status=target.value)

        if target == OrderStatus.COMPLETED:
            await self._send_confirmation(db, order)
        return order

    async def delete_order(self, db: AsyncSession, *, order_id: int) -> None:
        res = await db.execute(
            delete(Order)
            .where(
                Order.id == order_id,
                Order.status.in_([s.value for s in order_states.DELETABLE]),
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            await db.rollback()
            exists = await db.execute(select(Order.id).where(Order.id == order_id))
            if exists.first() is None:
                raise NotFound("Order not found")
            raise NotDeletable()

        await db.commit()
        logger.info("order_deleted", order_id=order_id)

    # -------------------------
    # Queries
    # -------------------------

    async def _load(self, db: AsyncSession, order_id: int) -> Order:
        res = await db.execute(
            select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        )
        order = res.scalar_one_or_none()
        if order is None:
            raise NotFound("Order not found")
        return order

    async def get_order(self, db: AsyncSession, *, order_id: int, user_id: int | None = None) -> dict:
        stmt = select(Order).where(Order.id == order_id)
        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)
        res = await db.execute(stmt)
        order = res.scalar_one_or_none()
        if order is None:
            raise NotFound("Order not found")

        codes = await _get_coupon_code_map(db, [int(order.coupon_id)] if order.coupon_id else [])
        names = await _get_username_map(db, [int(order.user_id)])
        return order_to_dict(
            order,
            coupon_code=codes.get(int(order.coupon_id)) if order.coupon_id else None,
            username=names.get(int(order.user_id)),
        )

    async def list_orders(
        self,
        db: AsyncSession,
        *,
        user_id: Optional[int] = None,
        status: Optional[str] = None,
        product_id: Optional[str] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        limit: int = 20,
        offset: int = 0,
    ) -> dict:
        filters = []

        if user_id is not None:
            filters.append(Order.user_id == user_id)
        if status is not None:
            try:
                filters.append(Order.status == order_states.parse_status(status).value)
            except ValueError:
                raise ValidationError("Invalid status filter")
        if product_id and product_id.strip():
            filters.append(Order.product_id == product_id.strip())
        if search and search.strip():
            term = f"%{search.strip()}%"
            filters.append(
                or_(
                    Order.product_id.ilike(term),
                    Order.option_name.ilike(term),
                    Order.admin_notes.ilike(term),
                    Order.user_id.in_(
                        select(User.id).where(or_(User.full_name.ilike(term), User.email.ilike(term)))
                    ),
                )
            )

        column = ORDER_SORT_FIELDS.get(sort_by, Order.created_at)
        ordering = column.asc() if sort_order.lower() == "asc" else column.desc()

        total_res = await db.execute(select(func.count()).select_from(Order).where(*filters))
        total = int(total_res.scalar_one())

        res = await db.execute(
            select(Order).where(*filters).order_by(ordering, Order.id.desc()).limit(limit).offset(offset)
        )
        orders = res.scalars().all()

        codes = await _get_coupon_code_map(db, list({int(o.coupon_id) for o in orders if o.coupon_id}))
        names = await _get_username_map(db, list({int(o.user_id) for o in orders}))

        items = [
            order_to_dict(
                o,
                coupon_code=codes.get(int(o.coupon_id)) if o.coupon_id else None,
                username=names.get(int(o.user_id)),
            )
            for o in orders
        ]
        return {"items": items, "total": total, "limit": limit, "offset": offset}
