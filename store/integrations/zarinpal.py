from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from store.core.errors import UpstreamError
from store.integrations.http_retry import send_with_retry

logger = structlog.get_logger(__name__)

SANDBOX_API = "https://sandbox.zarinpal.com/pg/rest/WebGate/"
LIVE_API = "https://api.zarinpal.com/pg/rest/WebGate/"
SANDBOX_START_PAY = "https://sandbox.zarinpal.com/pg/StartPay/"
LIVE_START_PAY = "https://www.zarinpal.com/pg/StartPay/"

DEFAULT_DESCRIPTION = "Wallet top-up"

# 100: verified now, 101: verified earlier
SUCCESS_CODES = frozenset({100, 101})

STATUS_MESSAGES = {
    -1: "Submitted data is incomplete",
    -2: "Merchant IP or merchant code is invalid",
    -3: "Amount is not allowed by Shaparak limits",
    -4: "Merchant verification level is below silver",
    -11: "Payment request not found",
    -12: "Payment request cannot be edited",
    -21: "No financial operation found for this transaction",
    -22: "Transaction failed",
    -33: "Transaction amount does not match the paid amount",
    -34: "Transaction split limit exceeded",
    -40: "Access to this method is not allowed",
    -41: "AdditionalData is invalid",
    -42: "Payment id lifetime must be between 30 minutes and 45 days",
    -54: "Payment request is archived",
    100: "Operation completed successfully",
    101: "Payment succeeded and was already verified",
}


def status_message(code: int | None) -> str:
    return STATUS_MESSAGES.get(code, "Unknown error")


@dataclass(frozen=True)
class PaymentSession:
    payment_id: str
    payment_url: str


@dataclass(frozen=True)
class PaymentVerification:
    success: bool
    code: Optional[int]
    ref_id: Optional[str]
    message: str


class ZarinpalClient:
    def __init__(
        self,
        *,
        merchant_id: str,
        callback_url: str,
        sandbox: bool = True,
        timeout: float = 30.0,
        retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.merchant_id = merchant_id
        self.callback_url = callback_url
        self.sandbox = sandbox
        self.timeout = timeout
        self.retries = retries
        self.transport = transport
        self.base_url = SANDBOX_API if sandbox else LIVE_API

    @property
    def is_configured(self) -> bool:
        return bool(self.merchant_id and self.callback_url)

    def start_pay_url(self, authority: str) -> str:
        return f"{SANDBOX_START_PAY if self.sandbox else LIVE_START_PAY}{authority}"

    @staticmethod
    def _sanitize_description(text: str | None) -> str:
        cleaned = re.sub(r"[\r\n]+", " ", text or "")[:255]
        return cleaned or DEFAULT_DESCRIPTION

    async def _post(self, path: str, payload: dict) -> dict:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={"Accept": "application/json"},
        ) as client:
            r = await send_with_retry(
                lambda: client.post(path, json=payload),
                gateway="zarinpal",
                retries=self.retries,
            )

        try:
            envelope = r.json()
        except ValueError as e:
            logger.error("zarinpal_bad_response", path=path, status_code=r.status_code)
            raise UpstreamError() from e

        if envelope.get("errors"):
            logger.warning("zarinpal_envelope_errors", path=path, errors=envelope["errors"])

        data = envelope.get("data")
        return data if isinstance(data, dict) else {}

    async def create_payment(
        self, amount: int, description: str | None, order_id: str | None = None
    ) -> PaymentSession:
        if not self.is_configured:
            logger.warning("zarinpal_not_configured")
            raise UpstreamError("Payment gateway is not configured")

        amount = int(amount)
        data = await self._post(
            "PaymentRequest.json",
            {
                "merchant_id": self.merchant_id,
                "amount": amount,
                "description": self._sanitize_description(description),
                "callback_url": self.callback_url,
                "metadata": {"order_id": order_id, "timestamp": int(time.time() * 1000)},
            },
        )

        code = data.get("code")
        authority = data.get("authority")
        if code == 100 and authority:
            logger.info("zarinpal_payment_created", authority=authority, amount=amount)
            return PaymentSession(payment_id=authority, payment_url=self.start_pay_url(authority))

        logger.warning("zarinpal_payment_rejected", code=code, message=status_message(code), amount=amount)
        raise UpstreamError("Failed to create payment request")

    async def verify_payment(self, authority: str, amount: int) -> PaymentVerification:
        if not self.is_configured:
            logger.warning("zarinpal_not_configured")
            raise UpstreamError("Payment gateway is not configured")

        amount = int(amount)
        data = await self._post(
            "PaymentVerification.json",
            {"merchant_id": self.merchant_id, "authority": authority, "amount": amount},
        )

        code = data.get("code")
        if code in SUCCESS_CODES:
            ref_id = data.get("ref_id")
            logger.info("zarinpal_payment_verified", authority=authority, ref_id=ref_id, code=code, amount=amount)
            return PaymentVerification(
                success=True,
                code=code,
                ref_id=str(ref_id) if ref_id is not None else None,
                message=status_message(code),
            )

        logger.warning("zarinpal_verification_failed", authority=authority, code=code, amount=amount)
        return PaymentVerification(success=False, code=code, ref_id=None, message=status_message(code))
