from __future__ import annotations

from datetime import datetime
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import JSON, BigInteger, DateTime, ForeignKey, Index, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from store.core.db import Base, BigIntPK


class WalletLedger(Base):
    __tablename__ = "wallet_ledger"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    tx_id: Mapped[PyUUID] = mapped_column(Uuid, nullable=False, default=uuid4)

    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    # order_debit / order_cancel_credit / order_refund_credit / payment_topup / admin_adjustment
    entry_kind: Mapped[str] = mapped_column(Text, nullable=False)

    # signed: debits are negative
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    order_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True,
    )
    payment_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("payment_requests.id", ondelete="SET NULL"),
        nullable=True,
    )

    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    # "metadata" is reserved; use "meta" attribute but DB column "metadata"
    meta: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


Index("ix_wallet_ledger_user_created", WalletLedger.user_id, WalletLedger.created_at.desc())
Index("ix_wallet_ledger_entry_kind", WalletLedger.entry_kind)
