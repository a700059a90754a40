from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import Field

from store.schemas.common import ApiModel


class ZarinpalTopupIn(ApiModel):
    amount: int
    description: Optional[str] = Field(default=None, max_length=255)


class ZarinpalTopupOut(ApiModel):
    payment_id: str
    payment_url: str
    amount: int


class ZarinpalVerifyOut(ApiModel):
    success: bool
    status: str
    ref_id: Optional[str] = None
    amount: Optional[int] = None
    message: Optional[str] = None


class CryptoTopupIn(ApiModel):
    amount: Decimal = Field(..., gt=0)
    currency: Literal["USDT", "BTC", "ETH", "TON"]
    description: Optional[str] = Field(default=None, max_length=255)


class CryptoTopupOut(ApiModel):
    payment_id: str
    payment_url: str
    wallet_address: Optional[str] = None
    amount: Decimal
    currency: str
    exchange_rate: int
    credit_amount: int


class CryptoVerifyOut(ApiModel):
    status: str
    transaction_hash: Optional[str] = None
    credit_amount: int


class WebhookAckOut(ApiModel):
    success: bool
    status: str


class PaymentOut(ApiModel):
    id: int
    provider: str
    payment_id: str
    amount: Decimal
    currency: str
    exchange_rate: Optional[int] = None
    credit_amount: int
    status: str
    ref_id: Optional[str] = None
    wallet_address: Optional[str] = None
    created_at: datetime


class CurrencyOut(ApiModel):
    code: str
    name: str
    network: str
