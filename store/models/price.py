from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from store.core.db import Base


class CryptoPrice(Base):
    """Latest normalized quote per currency."""

    __tablename__ = "crypto_prices"

    currency: Mapped[str] = mapped_column(String(8), primary_key=True)
    price_irt: Mapped[int] = mapped_column(BigInteger, nullable=False)
    price_usd: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 2), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
