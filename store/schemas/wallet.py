from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import ConfigDict, Field, field_validator

from store.schemas.common import ApiModel


class WalletBalanceOut(ApiModel):
    user_id: int
    balance: int
    currency: str = "IRR"


class WalletLedgerRowOut(ApiModel):
    id: int
    tx_id: str
    user_id: int
    entry_kind: str
    amount: int
    order_id: Optional[int] = None
    payment_id: Optional[int] = None
    note: Optional[str] = None
    balance_after: Optional[int] = None
    created_at: datetime

    @field_validator("tx_id", mode="before")
    @classmethod
    def _tx_id_str(cls, v):
        return str(v)


class WalletLedgerListOut(ApiModel):
    items: List[WalletLedgerRowOut]
    total: int
    limit: int
    offset: int


# -------------------------
# Admin payloads
# -------------------------

class AdminAdjustBalanceIn(ApiModel):
    model_config = ConfigDict(extra="forbid")

    amount: int  # negative debits
    note: Optional[str] = Field(default=None, max_length=500)


class AdminAdjustBalanceOut(ApiModel):
    user_id: int
    balance: int
    message: str = "Balance adjusted"
