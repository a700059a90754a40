"""
Product catalog.

Plan prices here are raw USD. Conversion to toman (with the USDT floor) is
done by the pricing service. Plan keys are stable: the storefront and the
payment pages depend on them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class ProductPlan:
    key: str
    name: str
    usd: float


# order product id -> plans
PRODUCT_CATALOG: dict[str, tuple[ProductPlan, ...]] = {
    "telegram-premium": (
        ProductPlan("telegram_month", "Telegram Premium - 1 month", 9.36),
        ProductPlan("telegram_quarter", "Telegram Premium - 3 months", 14.66),
        ProductPlan("telegram_half", "Telegram Premium - 6 months", 20.34),
        ProductPlan("telegram_year", "Telegram Premium - 12 months", 37.71),
    ),
    "spotify": (
        ProductPlan("spotify_month", "Spotify - 1 month", 6.01),
        ProductPlan("spotify_2month", "Spotify - 2 months", 10.51),
        ProductPlan("spotify_quarter", "Spotify - 3 months", 13.53),
        ProductPlan("spotify_half", "Spotify - 6 months", 22.54),
        ProductPlan("spotify_year", "Spotify - 12 months", 54.97),
    ),
    "chatgpt": (
        ProductPlan("chatgpt_plus", "ChatGPT Plus", 25.0),
        ProductPlan("chatgpt_pro", "ChatGPT Pro", 205.5),
    ),
}

PRODUCT_IDS = frozenset(PRODUCT_CATALOG)


def is_valid_product(product_id: str) -> bool:
    return product_id in PRODUCT_IDS


def toman_price(usd: float, usdt_toman: int) -> int:
    """USD -> toman, rounded up to the next thousand."""
    return int(math.ceil(usd * usdt_toman / 1000.0) * 1000)


def validate_catalog() -> None:
    seen: set[str] = set()
    for product_id, plans in PRODUCT_CATALOG.items():
        for plan in plans:
            if plan.key in seen:
                raise ValueError(f"Duplicate plan key {plan.key} (product {product_id})")
            seen.add(plan.key)
            if not plan.usd > 0:
                raise ValueError(f"Invalid USD price for {plan.key} (product {product_id})")
