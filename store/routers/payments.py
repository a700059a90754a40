from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from store.core.db import get_db
from store.core.deps import get_current_user, get_services
from store.models.user import User
from store.schemas.payments import (
    CryptoTopupIn,
    CryptoTopupOut,
    CryptoVerifyOut,
    CurrencyOut,
    PaymentOut,
    WebhookAckOut,
    ZarinpalTopupIn,
    ZarinpalTopupOut,
    ZarinpalVerifyOut,
)
from store.services.container import Services

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.get("", response_model=list[PaymentOut])
async def my_payments(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.payments.list_user_payments(db, user_id=current_user.id, limit=limit, offset=offset)


@router.post("/zarinpal", response_model=ZarinpalTopupOut)
async def create_zarinpal_payment(
    body: ZarinpalTopupIn,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.payments.create_zarinpal_topup(
        db, user_id=current_user.id, amount=body.amount, description=body.description
    )


@router.get("/zarinpal/verify", response_model=ZarinpalVerifyOut)
async def verify_zarinpal_payment(
    authority: str = Query(default="", alias="Authority"),
    status: str = Query(default="", alias="Status"),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    # Reached by the gateway redirect, so there is no bearer token here.
    return await services.payments.verify_zarinpal_topup(db, authority=authority, status=status)


@router.post("/crypto", response_model=CryptoTopupOut)
async def create_crypto_payment(
    body: CryptoTopupIn,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.payments.create_crypto_topup(
        db,
        user_id=current_user.id,
        amount=body.amount,
        currency=body.currency,
        description=body.description,
    )


@router.get("/crypto/{payment_id}/verify", response_model=CryptoVerifyOut)
async def verify_crypto_payment(
    payment_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.payments.verify_crypto_topup(db, user_id=current_user.id, payment_id=payment_id)


@router.post("/crypto/callback", response_model=WebhookAckOut)
async def crypto_callback(
    request: Request,
    x_payment4_signature: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    raw_body = await request.body()
    return await services.payments.handle_crypto_webhook(
        db, raw_body=raw_body, signature=x_payment4_signature
    )


@router.get("/crypto/currencies", response_model=list[CurrencyOut])
async def crypto_currencies(services: Services = Depends(get_services)):
    return await services.payments.payment4.supported_currencies()
