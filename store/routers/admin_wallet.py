from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from store.core.db import get_db
from store.core.deps import require_admin
from store.models.user import User
from store.routers.wallet import ledger_row
from store.schemas.wallet import AdminAdjustBalanceIn, AdminAdjustBalanceOut, WalletLedgerListOut
from store.services.wallet import admin_adjust_balance, list_ledger

router = APIRouter(prefix="/admin/wallet", tags=["Admin Wallet"])


@router.post("/{user_id}/adjust", response_model=AdminAdjustBalanceOut)
async def admin_adjust_user_balance(
    user_id: int,
    payload: AdminAdjustBalanceIn,
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
):
    balance = await admin_adjust_balance(
        db,
        admin_user=admin_user,
        target_user_id=user_id,
        amount=payload.amount,
        note=payload.note,
    )
    return AdminAdjustBalanceOut(user_id=user_id, balance=balance)


@router.get("/ledger", response_model=WalletLedgerListOut, dependencies=[Depends(require_admin)])
async def admin_list_wallet_ledger(
    user_id: Optional[int] = Query(default=None, alias="userId"),
    entry_kind: Optional[str] = Query(default=None, alias="entryKind"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    page = await list_ledger(db, user_id=user_id, entry_kind=entry_kind, limit=limit, offset=offset)
    return WalletLedgerListOut(
        items=[ledger_row(e) for e in page["items"]],
        total=page["total"],
        limit=limit,
        offset=offset,
    )
