"""
Price normalization.

Upstream quotes arrive as strings in rial (IRT pairs on Nobitex). Everything
stored and returned here is an integer amount of rial per coin, except the
product price list, which is shown in toman. The USDT rate has a floor: a
quote below it is treated as bad data and replaced by the floor.
"""

from __future__ import annotations

import asyncio
import math
import time
from decimal import ROUND_FLOOR, Decimal
from typing import Callable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from store.integrations.nobitex import NobitexClient
from store.models.price import CryptoPrice
from store.services.catalog import PRODUCT_CATALOG, toman_price

logger = structlog.get_logger(__name__)

CURRENCIES = ("USDT", "BTC", "ETH", "TON")

# rough sanity ranges in rial; outside values are logged, not rejected
SANE_RANGES = {
    "USDT": (800_000, 2_000_000),
    "BTC": (1_000_000_000, 5_000_000_000),
    "ETH": (50_000_000, 500_000_000),
    "TON": (200_000, 5_000_000),
}


def fallback_prices(usdt_fallback_toman: int) -> dict[str, int]:
    return {
        "USDT": usdt_fallback_toman * 10,
        "BTC": 2_600_000_000,
        "ETH": 160_000_000,
        "TON": 3_000_000,
    }


def parse_quote(value) -> Optional[float]:
    """A positive finite number, or None."""
    if value is None or value == "":
        return None
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(n) or n <= 0:
        return None
    return n


def normalize_quotes(
    stats: dict[str, dict],
    *,
    floor_irt: int,
    fallback: dict[str, int],
) -> dict[str, int]:
    def latest(pair: str) -> Optional[float]:
        stat = stats.get(pair)
        return parse_quote(stat.get("latest")) if isinstance(stat, dict) else None

    raw_usdt = latest("usdt-irt")
    if raw_usdt is None:
        usdt = fallback["USDT"]
    else:
        usdt = int(raw_usdt)
    if usdt < floor_irt:
        logger.warning("usdt_rate_floored", raw_usdt_irt=usdt, floor_irt=floor_irt)
        usdt = floor_irt

    btc = latest("btc-irt")
    eth = latest("eth-irt")

    ton = latest("ton-irt")
    if ton is None:
        ton_usdt = latest("ton-usdt")
        if ton_usdt is not None:
            ton = math.floor(ton_usdt * usdt)

    prices = {
        "USDT": usdt,
        "BTC": int(btc) if btc is not None else fallback["BTC"],
        "ETH": int(eth) if eth is not None else fallback["ETH"],
        "TON": int(ton) if ton else fallback["TON"],
    }

    for currency, (low, high) in SANE_RANGES.items():
        if not low <= prices[currency] <= high:
            logger.warning("price_out_of_range", currency=currency, price_irt=prices[currency])

    return prices


def usd_price(price_irt: int, usdt_irt: int) -> Optional[Decimal]:
    """floor(price / usdt, 2 decimals)"""
    if not usdt_irt:
        return None
    return (Decimal(price_irt) / Decimal(usdt_irt)).quantize(Decimal("0.01"), rounding=ROUND_FLOOR)


class PriceService:
    def __init__(
        self,
        *,
        client: NobitexClient,
        floor_toman: int,
        fallback_toman: int,
        cache_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.floor_toman = floor_toman
        self.fallback_toman = fallback_toman
        self.cache_seconds = max(5, cache_seconds)
        self.clock = clock
        self.fallback = fallback_prices(fallback_toman)

        self._cache: Optional[dict[str, int]] = None
        self._cache_expires_at = 0.0
        self._inflight: Optional[asyncio.Task] = None
        self.last_update: Optional[float] = None

    def _set_cache(self, prices: dict[str, int]) -> None:
        self._cache = dict(prices)
        self._cache_expires_at = self.clock() + self.cache_seconds

    async def get_current_prices(self, db: AsyncSession) -> dict[str, int]:
        if self._cache is not None and self.clock() < self._cache_expires_at:
            return dict(self._cache)

        res = await db.execute(select(CryptoPrice.currency, CryptoPrice.price_irt).where(CryptoPrice.currency.in_(CURRENCIES)))
        stored = {r[0]: int(r[1]) for r in res.all()}

        prices = {c: stored.get(c, self.fallback[c]) for c in CURRENCIES}
        self._set_cache(prices)
        return dict(prices)

    async def refresh(self, db: AsyncSession) -> dict[str, int]:
        """
        Pull fresh quotes, store them and refill the cache. A refresh started
        while another is running waits for that one instead of calling out.
        """
        if self._inflight is not None and not self._inflight.done():
            logger.info("price_refresh_joined_inflight")
            return dict(await asyncio.shield(self._inflight))

        self._inflight = asyncio.ensure_future(self._refresh(db))
        try:
            return dict(await self._inflight)
        finally:
            self._inflight = None

    async def _refresh(self, db: AsyncSession) -> dict[str, int]:
        stats = await self.client.market_stats()
        prices = normalize_quotes(stats, floor_irt=self.floor_toman * 10, fallback=self.fallback)
        await self._store(db, prices)
        self._set_cache(prices)
        self.last_update = self.clock()
        logger.info("prices_refreshed", **{c.lower(): p for c, p in prices.items()})
        return prices

    async def _store(self, db: AsyncSession, prices: dict[str, int]) -> None:
        usdt = prices["USDT"]
        try:
            for currency, price_irt in prices.items():
                row = await db.get(CryptoPrice, currency)
                price_usd = Decimal("1.00") if currency == "USDT" else usd_price(price_irt, usdt)
                if row is None:
                    db.add(CryptoPrice(currency=currency, price_irt=price_irt, price_usd=price_usd))
                else:
                    row.price_irt = price_irt
                    row.price_usd = price_usd
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    # -------------------------
    # Display helpers
    # -------------------------

    def with_usd(self, prices: dict[str, int]) -> dict[str, dict]:
        usdt = prices["USDT"]
        return {
            c: {
                "irt": p,
                "toman": p // 10,
                "usd": Decimal("1.00") if c == "USDT" else usd_price(p, usdt),
            }
            for c, p in prices.items()
        }

    async def product_prices(self, db: AsyncSession) -> dict:
        prices = await self.get_current_prices(db)
        usdt_toman = prices["USDT"] // 10
        source = "nobitex" if self._from_feed(prices) else "fallback"

        applied = max(usdt_toman, self.floor_toman)
        if applied != usdt_toman:
            logger.warning("usdt_below_floor", usdt_toman=usdt_toman, floor_toman=self.floor_toman)
            source = "nobitex+floor"

        products = [
            {
                "service": service,
                "plans": [
                    {
                        "key": plan.key,
                        "name": plan.name,
                        "usd": plan.usd,
                        "toman": toman_price(plan.usd, applied),
                    }
                    for plan in plans
                ],
            }
            for service, plans in PRODUCT_CATALOG.items()
        ]

        return {
            "unit": "toman",
            "rate": {"base": "USDT", "toman_per_usdt": applied, "source": source},
            "products": products,
        }

    def _from_feed(self, prices: dict[str, int]) -> bool:
        return prices.get("USDT") != self.fallback["USDT"]
