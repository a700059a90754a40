from __future__ import annotations

from typing import Optional
from uuid import UUID, uuid4

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from store.core.errors import InsufficientFunds, UserNotFound, ValidationError
from store.models.user import User
from store.models.wallet import WalletLedger

logger = structlog.get_logger(__name__)


ORDER_DEBIT = "order_debit"
ORDER_CANCEL_CREDIT = "order_cancel_credit"
ORDER_REFUND_CREDIT = "order_refund_credit"
PAYMENT_TOPUP = "payment_topup"
ADMIN_ADJUSTMENT = "admin_adjustment"

ENTRY_KINDS = (ORDER_DEBIT, ORDER_CANCEL_CREDIT, ORDER_REFUND_CREDIT, PAYMENT_TOPUP, ADMIN_ADJUSTMENT)


def _check_amount(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Amount must be an integer.")
    if amount <= 0:
        raise ValidationError("Amount must be positive.")
    return amount


async def _user_exists(db: AsyncSession, user_id: int) -> bool:
    res = await db.execute(select(User.id).where(User.id == user_id))
    return res.scalar_one_or_none() is not None


def _ledger_entry(
    *,
    user_id: int,
    kind: str,
    amount: int,
    tx_id: UUID | None,
    order_id: int | None,
    payment_id: int | None,
    note: str | None,
    meta: dict | None,
) -> WalletLedger:
    return WalletLedger(
        tx_id=tx_id or uuid4(),
        user_id=user_id,
        entry_kind=kind,
        amount=amount,
        order_id=order_id,
        payment_id=payment_id,
        note=note,
        meta=meta or {},
    )


async def debit(
    db: AsyncSession,
    user_id: int,
    amount: int,
    *,
    kind: str,
    tx_id: UUID | None = None,
    order_id: int | None = None,
    payment_id: int | None = None,
    note: str | None = None,
    meta: dict | None = None,
) -> WalletLedger:
    """
    Take ``amount`` from the user's wallet and return the ledger entry.

    The decrement is a single conditional UPDATE guarded by
    ``wallet_balance >= amount``, so concurrent debits serialize on the user
    row and the balance can never drop below zero. Runs inside the caller's
    transaction and does not commit.
    """
    _check_amount(amount)

    res = await db.execute(
        update(User)
        .where(User.id == user_id, User.wallet_balance >= amount)
        .values(wallet_balance=User.wallet_balance - amount)
        .returning(User.wallet_balance)
    )
    new_balance = res.scalar_one_or_none()

    if new_balance is None:
        if not await _user_exists(db, user_id):
            raise UserNotFound()
        raise InsufficientFunds()

    entry = _ledger_entry(
        user_id=user_id,
        kind=kind,
        amount=-amount,
        tx_id=tx_id,
        order_id=order_id,
        payment_id=payment_id,
        note=note,
        meta={**(meta or {}), "balance_after": int(new_balance)},
    )
    db.add(entry)
    return entry


async def credit(
    db: AsyncSession,
    user_id: int,
    amount: int,
    *,
    kind: str,
    tx_id: UUID | None = None,
    order_id: int | None = None,
    payment_id: int | None = None,
    note: str | None = None,
    meta: dict | None = None,
) -> WalletLedger:
    """Add ``amount`` to the user's wallet; same transaction rules as ``debit``."""
    _check_amount(amount)

    res = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(wallet_balance=User.wallet_balance + amount)
        .returning(User.wallet_balance)
    )
    new_balance = res.scalar_one_or_none()
    if new_balance is None:
        raise UserNotFound()

    entry = _ledger_entry(
        user_id=user_id,
        kind=kind,
        amount=amount,
        tx_id=tx_id,
        order_id=order_id,
        payment_id=payment_id,
        note=note,
        meta={**(meta or {}), "balance_after": int(new_balance)},
    )
    db.add(entry)
    return entry


async def get_balance(db: AsyncSession, user_id: int) -> int:
    res = await db.execute(select(User.wallet_balance).where(User.id == user_id))
    balance = res.scalar_one_or_none()
    if balance is None:
        raise UserNotFound()
    return int(balance)


async def list_ledger(
    db: AsyncSession,
    *,
    user_id: Optional[int] = None,
    entry_kind: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    filters = []
    if user_id is not None:
        filters.append(WalletLedger.user_id == user_id)
    if entry_kind is not None:
        if entry_kind not in ENTRY_KINDS:
            raise ValidationError("Invalid entry kind.")
        filters.append(WalletLedger.entry_kind == entry_kind)

    total_res = await db.execute(select(func.count()).select_from(WalletLedger).where(*filters))
    total = int(total_res.scalar_one())

    res = await db.execute(
        select(WalletLedger)
        .where(*filters)
        .order_by(WalletLedger.created_at.desc(), WalletLedger.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return {"items": list(res.scalars().all()), "total": total, "limit": limit, "offset": offset}


async def admin_adjust_balance(
    db: AsyncSession,
    admin_user: User,
    target_user_id: int,
    amount: int,
    note: str | None,
) -> int:
    """
    Admin adjusts a user's balance:
    - amount > 0: credit
    - amount < 0: debit, refused when the balance is too low
    Atomic: balance update + ledger insert. Returns the new balance.
    """
    if amount == 0:
        raise ValidationError("Amount cannot be 0.")

    meta = {"by_admin_user_id": int(admin_user.id)}

    try:
        if amount > 0:
            entry = await credit(
                db, target_user_id, amount, kind=ADMIN_ADJUSTMENT, note=note, meta=meta
            )
        else:
            entry = await debit(
                db, target_user_id, -amount, kind=ADMIN_ADJUSTMENT, note=note, meta=meta
            )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    new_balance = int(entry.meta["balance_after"])
    logger.info(
        "wallet_admin_adjustment",
        admin_id=admin_user.id,
        user_id=target_user_id,
        amount=amount,
        new_balance=new_balance,
    )
    return new_balance
