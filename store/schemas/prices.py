from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Optional

from store.schemas.common import ApiModel


class CurrencyPriceOut(ApiModel):
    irt: int
    toman: int
    usd: Optional[Decimal] = None


class PricesOut(ApiModel):
    unit: str = "irt"
    prices: Dict[str, CurrencyPriceOut]


class PlanPriceOut(ApiModel):
    key: str
    name: str
    usd: float
    toman: int


class ServicePricesOut(ApiModel):
    service: str
    plans: List[PlanPriceOut]


class RateOut(ApiModel):
    base: str
    toman_per_usdt: int
    source: str


class ProductPricesOut(ApiModel):
    unit: str
    rate: RateOut
    products: List[ServicePricesOut]
