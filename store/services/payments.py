"""
Wallet top-ups through the payment gateways.

A PaymentRequest row is written only after the gateway accepted the request.
Completion is a conditional status flip, and only the caller whose flip
succeeded credits the wallet, so repeated verifications and webhook replays
credit once.
"""

from __future__ import annotations

import json
import math
from decimal import Decimal, InvalidOperation
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from store.core.errors import AuthError, NotFound, UpstreamError, ValidationError
from store.integrations.payment4 import CURRENCIES, Payment4Client, normalize_status
from store.integrations.zarinpal import ZarinpalClient
from store.models.payment import PaymentProvider, PaymentRequest, PaymentStatus
from store.services import wallet
from store.services.pricing import PriceService

logger = structlog.get_logger(__name__)

# provider statuses that end a crypto request without payment
_CLOSING_STATUSES = {
    "FAILED": PaymentStatus.FAILED.value,
    "CANCELLED": PaymentStatus.CANCELLED.value,
    "EXPIRED": PaymentStatus.EXPIRED.value,
}


def payment_to_dict(p: PaymentRequest) -> dict:
    return {
        "id": int(p.id),
        "provider": p.provider,
        "payment_id": p.external_id,
        "amount": p.amount,
        "currency": p.currency,
        "exchange_rate": p.exchange_rate,
        "credit_amount": int(p.credit_amount),
        "status": p.status,
        "ref_id": p.ref_id,
        "wallet_address": p.wallet_address,
        "created_at": p.created_at,
    }


class PaymentService:
    def __init__(
        self,
        *,
        zarinpal: ZarinpalClient,
        payment4: Payment4Client,
        prices: PriceService,
        min_amount: int,
        max_amount: int,
    ):
        self.zarinpal = zarinpal
        self.payment4 = payment4
        self.prices = prices
        self.min_amount = min_amount
        self.max_amount = max_amount

    # -------------------------
    # Shared
    # -------------------------

    async def _find(self, db: AsyncSession, *, provider: str, external_id: str, user_id: int | None = None) -> PaymentRequest:
        stmt = select(PaymentRequest).where(
            PaymentRequest.provider == provider,
            PaymentRequest.external_id == external_id,
        )
        if user_id is not None:
            stmt = stmt.where(PaymentRequest.user_id == user_id)
        res = await db.execute(stmt.execution_options(populate_existing=True))
        payment = res.scalar_one_or_none()
        if payment is None:
            raise NotFound("Payment request not found")
        return payment

    async def _complete(self, db: AsyncSession, payment: PaymentRequest, *, ref_id: str | None) -> bool:
        """Flip to COMPLETED and credit the wallet. False when already completed."""
        try:
            res = await db.execute(
                update(PaymentRequest)
                .where(
                    PaymentRequest.id == payment.id,
                    PaymentRequest.status != PaymentStatus.COMPLETED.value,
                )
                .values(status=PaymentStatus.COMPLETED.value, ref_id=ref_id or payment.ref_id)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                await db.rollback()
                return False

            await wallet.credit(
                db,
                int(payment.user_id),
                int(payment.credit_amount),
                kind=wallet.PAYMENT_TOPUP,
                payment_id=int(payment.id),
                meta={"provider": payment.provider, "ref_id": ref_id},
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "topup_completed",
            user_id=int(payment.user_id),
            payment_id=int(payment.id),
            provider=payment.provider,
            credit_amount=int(payment.credit_amount),
        )
        return True

    async def _close(self, db: AsyncSession, payment: PaymentRequest, status: str) -> None:
        await db.execute(
            update(PaymentRequest)
            .where(
                PaymentRequest.id == payment.id,
                PaymentRequest.status == PaymentStatus.PENDING.value,
            )
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        logger.info("topup_closed", payment_id=int(payment.id), status=status)

    # -------------------------
    # ZarinPal (rial)
    # -------------------------

    async def create_zarinpal_topup(
        self,
        db: AsyncSession,
        *,
        user_id: int,
        amount: int,
        description: str | None = None,
    ) -> dict:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError("Amount must be an integer")
        if not self.min_amount <= amount <= self.max_amount:
            raise ValidationError(f"Amount must be between {self.min_amount:,} and {self.max_amount:,}")

        session = await self.zarinpal.create_payment(amount, description)

        payment = PaymentRequest(
            user_id=user_id,
            provider=PaymentProvider.ZARINPAL.value,
            external_id=session.payment_id,
            amount=Decimal(amount),
            currency="IRR",
            credit_amount=amount,
            description=description,
            status=PaymentStatus.PENDING.value,
        )
        db.add(payment)
        try:
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        await db.refresh(payment)

        logger.info("zarinpal_topup_created", user_id=user_id, payment_id=int(payment.id), amount=amount)
        return {"payment_id": session.payment_id, "payment_url": session.payment_url, "amount": amount}

    async def verify_zarinpal_topup(self, db: AsyncSession, *, authority: str, status: str) -> dict:
        if not authority:
            raise ValidationError("Authority parameter is required")

        payment = await self._find(db, provider=PaymentProvider.ZARINPAL.value, external_id=authority)
        credit_amount = int(payment.credit_amount)

        if payment.status == PaymentStatus.COMPLETED.value:
            return {"success": True, "status": payment.status, "ref_id": payment.ref_id, "amount": int(payment.credit_amount)}

        if status != "OK":
            await self._close(db, payment, PaymentStatus.FAILED.value)
            return {"success": False, "status": PaymentStatus.FAILED.value, "message": "Payment was cancelled or failed"}

        verification = await self.zarinpal.verify_payment(authority, credit_amount)
        if not verification.success:
            await self._close(db, payment, PaymentStatus.FAILED.value)
            return {"success": False, "status": PaymentStatus.FAILED.value, "message": verification.message}

        await self._complete(db, payment, ref_id=verification.ref_id)
        return {
            "success": True,
            "status": PaymentStatus.COMPLETED.value,
            "ref_id": verification.ref_id,
            "amount": credit_amount,
        }

    # -------------------------
    # Payment4 (crypto)
    # -------------------------

    async def create_crypto_topup(
        self,
        db: AsyncSession,
        *,
        user_id: int,
        amount: Decimal,
        currency: str,
        description: str | None = None,
    ) -> dict:
        currency = (currency or "").upper()
        if currency not in CURRENCIES:
            raise ValidationError("Unsupported currency")
        try:
            amount = Decimal(str(amount))
        except InvalidOperation:
            raise ValidationError("Invalid amount")
        if not amount.is_finite() or amount <= 0:
            raise ValidationError("Amount must be positive")

        prices = await self.prices.get_current_prices(db)
        rate = prices.get(currency)
        if not rate:
            raise UpstreamError("Exchange rate not available")

        credit_amount = math.floor(amount * rate)
        if not self.min_amount <= credit_amount <= self.max_amount:
            raise ValidationError(f"Amount must be worth between {self.min_amount:,} and {self.max_amount:,}")

        session = await self.payment4.create_payment(amount, currency, description, user_id=user_id)

        payment = PaymentRequest(
            user_id=user_id,
            provider=PaymentProvider.PAYMENT4.value,
            external_id=session.payment_id,
            amount=amount,
            currency=currency,
            exchange_rate=int(rate),
            credit_amount=int(credit_amount),
            description=description,
            status=PaymentStatus.PENDING.value,
            wallet_address=session.wallet_address,
        )
        db.add(payment)
        try:
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "crypto_topup_created",
            user_id=user_id,
            payment_id=session.payment_id,
            currency=currency,
            exchange_rate=int(rate),
            credit_amount=int(credit_amount),
        )
        return {
            "payment_id": session.payment_id,
            "payment_url": session.payment_url,
            "wallet_address": session.wallet_address,
            "amount": amount,
            "currency": currency,
            "exchange_rate": int(rate),
            "credit_amount": int(credit_amount),
        }

    async def _apply_crypto_status(self, db: AsyncSession, payment: PaymentRequest, status: str, tx_hash: Optional[str]) -> str:
        if status == "COMPLETED":
            await self._complete(db, payment, ref_id=tx_hash)
            return PaymentStatus.COMPLETED.value
        closing = _CLOSING_STATUSES.get(status)
        if closing is not None:
            await self._close(db, payment, closing)
            return closing
        return status

    async def verify_crypto_topup(self, db: AsyncSession, *, user_id: int, payment_id: str) -> dict:
        payment = await self._find(db, provider=PaymentProvider.PAYMENT4.value, external_id=payment_id, user_id=user_id)
        credit_amount = int(payment.credit_amount)

        if payment.status == PaymentStatus.COMPLETED.value:
            return {
                "status": payment.status,
                "transaction_hash": payment.ref_id,
                "credit_amount": int(payment.credit_amount),
            }

        result = await self.payment4.verify_payment(payment_id)
        status = await self._apply_crypto_status(db, payment, result.status, result.transaction_hash)
        return {
            "status": status,
            "transaction_hash": result.transaction_hash,
            "credit_amount": credit_amount if status == PaymentStatus.COMPLETED.value else 0,
        }

    async def handle_crypto_webhook(self, db: AsyncSession, *, raw_body: bytes, signature: str | None) -> dict:
        if not self.payment4.verify_webhook_signature(raw_body, signature):
            logger.warning("payment4_webhook_bad_signature", has_signature=bool(signature))
            raise AuthError("Invalid signature")

        try:
            body = json.loads(raw_body or b"{}")
        except ValueError:
            raise ValidationError("Invalid JSON body")

        payment_id = str(body.get("payment_id") or "").strip()
        raw_status = str(body.get("status") or "").strip()
        if not payment_id or not raw_status:
            raise ValidationError("Missing required fields")

        payment = await self._find(db, provider=PaymentProvider.PAYMENT4.value, external_id=payment_id)
        status = await self._apply_crypto_status(
            db, payment, normalize_status(raw_status), body.get("transaction_hash")
        )
        logger.info("payment4_webhook_processed", payment_id=payment_id, status=status)
        return {"success": True, "status": status}

    async def list_user_payments(self, db: AsyncSession, *, user_id: int, limit: int = 20, offset: int = 0) -> list[dict]:
        res = await db.execute(
            select(PaymentRequest)
            .where(PaymentRequest.user_id == user_id)
            .order_by(PaymentRequest.created_at.desc(), PaymentRequest.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return [payment_to_dict(p) for p in res.scalars().all()]
