from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from store.core.db import get_db
from store.core.deps import get_current_user
from store.models.user import User
from store.models.wallet import WalletLedger
from store.schemas.wallet import WalletBalanceOut, WalletLedgerListOut, WalletLedgerRowOut
from store.services.wallet import get_balance, list_ledger

router = APIRouter(prefix="/wallet", tags=["Wallet"])


def ledger_row(entry: WalletLedger) -> WalletLedgerRowOut:
    balance_after = (entry.meta or {}).get("balance_after")
    return WalletLedgerRowOut(
        id=entry.id,
        tx_id=str(entry.tx_id),
        user_id=entry.user_id,
        entry_kind=entry.entry_kind,
        amount=entry.amount,
        order_id=entry.order_id,
        payment_id=entry.payment_id,
        note=entry.note,
        balance_after=int(balance_after) if balance_after is not None else None,
        created_at=entry.created_at,
    )


@router.get("", response_model=WalletBalanceOut)
async def my_balance(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    balance = await get_balance(db, current_user.id)
    return WalletBalanceOut(user_id=current_user.id, balance=balance)


@router.get("/transactions", response_model=WalletLedgerListOut)
async def my_transactions(
    entry_kind: Optional[str] = Query(default=None, alias="entryKind"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    page = await list_ledger(db, user_id=current_user.id, entry_kind=entry_kind, limit=limit, offset=offset)
    return WalletLedgerListOut(
        items=[ledger_row(e) for e in page["items"]],
        total=page["total"],
        limit=limit,
        offset=offset,
    )
