from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from store.core.db import get_db
from store.core.deps import get_services, require_admin
from store.schemas.prices import PricesOut
from store.services.container import Services

router = APIRouter(prefix="/admin/prices", tags=["Admin - Prices"], dependencies=[Depends(require_admin)])


@router.post("/refresh", response_model=PricesOut)
async def admin_refresh_prices(
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    prices = await services.prices.refresh(db)
    return PricesOut(prices=services.prices.with_usd(prices))
