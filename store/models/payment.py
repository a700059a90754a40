from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from store.core.db import Base, BigIntPK


class PaymentProvider(str, enum.Enum):
    ZARINPAL = "ZARINPAL"
    PAYMENT4 = "PAYMENT4"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class PaymentRequest(Base):
    """Wallet top-up started at a payment gateway."""

    __tablename__ = "payment_requests"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    provider: Mapped[str] = mapped_column(String(16), nullable=False)
    # ZarinPal authority or Payment4 payment id
    external_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)

    # rial for ZARINPAL, coin units for PAYMENT4
    amount: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="IRR")
    # rial per coin, crypto only
    exchange_rate: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    # rial credited to the wallet once completed
    credit_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=PaymentStatus.PENDING.value)

    ref_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    wallet_address: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
