from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from store.core.db import get_db
from store.core.deps import get_services
from store.schemas.prices import PricesOut, ProductPricesOut
from store.services.container import Services

router = APIRouter(prefix="/prices", tags=["Prices"])


@router.get("", response_model=PricesOut)
async def current_prices(
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    prices = await services.prices.get_current_prices(db)
    return PricesOut(prices=services.prices.with_usd(prices))


@router.get("/products", response_model=ProductPricesOut)
async def product_prices(
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    return await services.prices.product_prices(db)
