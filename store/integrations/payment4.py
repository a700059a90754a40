from __future__ import annotations

import hashlib
import hmac
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import httpx
import structlog

from store.core.errors import UpstreamError
from store.integrations.http_retry import send_with_retry

logger = structlog.get_logger(__name__)

SANDBOX_API = "https://sandbox-api.payment4.io/v1/"
LIVE_API = "https://api.payment4.io/v1/"

CURRENCIES = ("USDT", "BTC", "ETH", "TON")

DEFAULT_CURRENCIES = [
    {"code": "USDT", "name": "Tether", "network": "Ethereum"},
    {"code": "BTC", "name": "Bitcoin", "network": "Bitcoin"},
    {"code": "ETH", "name": "Ethereum", "network": "Ethereum"},
    {"code": "TON", "name": "Toncoin", "network": "TON"},
]

_STATUSES = {
    "pending": "PENDING",
    "completed": "COMPLETED",
    "failed": "FAILED",
    "cancelled": "CANCELLED",
    "expired": "EXPIRED",
}


def normalize_currency(value: str | None) -> str:
    up = (value or "").upper()
    return up if up in CURRENCIES else "USDT"


def normalize_status(value: str | None) -> str:
    return _STATUSES.get(str(value or "").lower(), "UNKNOWN")


@dataclass(frozen=True)
class CryptoPaymentSession:
    payment_id: str
    payment_url: str
    wallet_address: Optional[str]
    qr_code: Optional[str]


@dataclass(frozen=True)
class CryptoPaymentStatus:
    status: str
    raw_status: Optional[str]
    transaction_hash: Optional[str]


class Payment4Client:
    def __init__(
        self,
        *,
        api_key: str,
        callback_url: str = "",
        webhook_secret: str = "",
        sandbox: bool = True,
        eth_wallet: str = "",
        ton_wallet: str = "",
        timeout: float = 30.0,
        retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.callback_url = callback_url
        # older deployments signed webhooks with the API key
        self.webhook_secret = webhook_secret or api_key
        self.sandbox = sandbox
        self.eth_wallet = eth_wallet
        self.ton_wallet = ton_wallet
        self.timeout = timeout
        self.retries = retries
        self.transport = transport
        self.base_url = SANDBOX_API if sandbox else LIVE_API

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.timeout,
            transport=self.transport,
            headers={
                "Accept": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
        )

    def store_wallet_address(self, currency: str) -> str:
        if currency == "TON":
            if not self.ton_wallet:
                logger.warning("payment4_wallet_missing", currency=currency)
            return self.ton_wallet
        if not self.eth_wallet:
            logger.warning("payment4_wallet_missing", currency=currency)
        return self.eth_wallet

    @staticmethod
    def _envelope(r: httpx.Response) -> dict:
        try:
            body = r.json()
        except ValueError as e:
            logger.error("payment4_bad_response", status_code=r.status_code)
            raise UpstreamError() from e
        return body if isinstance(body, dict) else {}

    async def create_payment(
        self,
        amount: Decimal,
        currency: str,
        description: str | None,
        *,
        order_id: str | None = None,
        user_id: int | None = None,
    ) -> CryptoPaymentSession:
        if not self.is_configured:
            logger.warning("payment4_not_configured")
            raise UpstreamError("Crypto payment gateway is not configured")

        cur = normalize_currency(currency)
        payload = {
            "amount": float(amount),
            "currency": cur,
            "description": (description or "")[:255],
            "callback_url": self.callback_url,
            "metadata": {"order_id": order_id, "user_id": user_id, "timestamp": int(time.time() * 1000)},
            "wallet_address": self.store_wallet_address(cur),
        }
        # one key per logical request, so retried POSTs are not charged twice
        idempotency_key = str(uuid.uuid4())

        async with self._client() as client:
            r = await send_with_retry(
                lambda: client.post("payments", json=payload, headers={"Idempotency-Key": idempotency_key}),
                gateway="payment4",
                retries=self.retries,
            )

        envelope = self._envelope(r)
        data = envelope.get("data")
        if envelope.get("success") and isinstance(data, dict) and data.get("payment_id"):
            logger.info(
                "payment4_payment_created",
                payment_id=data["payment_id"],
                amount=str(amount),
                currency=cur,
                user_id=user_id,
            )
            return CryptoPaymentSession(
                payment_id=str(data["payment_id"]),
                payment_url=data.get("payment_url") or "",
                wallet_address=data.get("wallet_address"),
                qr_code=data.get("qr_code"),
            )

        logger.warning(
            "payment4_payment_rejected",
            amount=str(amount),
            currency=cur,
            status_code=r.status_code,
            error=envelope.get("error"),
            message=envelope.get("message"),
        )
        raise UpstreamError("Failed to create crypto payment request")

    async def verify_payment(self, payment_id: str) -> CryptoPaymentStatus:
        if not self.is_configured:
            logger.warning("payment4_not_configured")
            raise UpstreamError("Crypto payment gateway is not configured")

        async with self._client(timeout=15.0) as client:
            r = await send_with_retry(
                lambda: client.get(f"payments/{payment_id}"),
                gateway="payment4",
                retries=self.retries,
            )

        envelope = self._envelope(r)
        data = envelope.get("data")
        if envelope.get("success") and isinstance(data, dict):
            return CryptoPaymentStatus(
                status=normalize_status(data.get("status")),
                raw_status=data.get("status"),
                transaction_hash=data.get("transaction_hash"),
            )

        logger.warning("payment4_verification_failed", payment_id=payment_id, message=envelope.get("message"))
        raise UpstreamError("Crypto payment verification failed")

    async def supported_currencies(self) -> list[dict]:
        if not self.is_configured:
            return DEFAULT_CURRENCIES

        async with self._client(timeout=10.0) as client:
            r = await send_with_retry(
                lambda: client.get("currencies"),
                gateway="payment4",
                retries=self.retries,
            )

        envelope = self._envelope(r)
        data = envelope.get("data")
        if not envelope.get("success") or not isinstance(data, list) or not data:
            return DEFAULT_CURRENCIES

        return [
            {
                "code": normalize_currency(c.get("code")),
                "name": str(c.get("name") or ""),
                "network": str(c.get("network") or ""),
            }
            for c in data
            if isinstance(c, dict)
        ]

    def verify_webhook_signature(self, raw_body: bytes, signature: str | None) -> bool:
        """HMAC-SHA256 of the raw request body, hex encoded."""
        if not signature or not self.webhook_secret:
            return False
        expected = hmac.new(self.webhook_secret.encode(), raw_body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature.strip().lower())
