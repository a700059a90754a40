import hashlib
import hmac
import json
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import func, select

from store.core.errors import AuthError, NotFound, ValidationError
from store.integrations import http_retry
from store.integrations.nobitex import NobitexClient
from store.integrations.payment4 import Payment4Client
from store.integrations.zarinpal import ZarinpalClient
from store.models.payment import PaymentRequest
from store.models.user import User
from store.models.wallet import WalletLedger
from store.services import wallet
from store.services.payments import PaymentService
from store.services.pricing import PriceService

WEBHOOK_SECRET = "hook-secret"


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(http_retry, "backoff_delay", lambda attempt: 0)


class FakeGateway:
    """Answers both gateways; tests tweak the canned replies."""

    def __init__(self):
        self.zarinpal_verify_code = 100
        self.crypto_status = "pending"
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/PaymentRequest.json"):
            return httpx.Response(200, json={"data": {"code": 100, "authority": "A0001"}})
        if path.endswith("/PaymentVerification.json"):
            return httpx.Response(200, json={"data": {"code": self.zarinpal_verify_code, "ref_id": 555}})
        if request.method == "POST" and path.endswith("/payments"):
            return httpx.Response(
                200,
                json={"success": True, "data": {"payment_id": "p4-1", "payment_url": "https://pay.test/p4-1", "wallet_address": "0xstore"}},
            )
        if path.endswith("/payments/p4-1"):
            return httpx.Response(200, json={"success": True, "data": {"status": self.crypto_status, "transaction_hash": "0xhash"}})
        return httpx.Response(404, json={"success": False})


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def payment_service(gateway):
    transport = httpx.MockTransport(gateway)
    prices = PriceService(
        client=NobitexClient(api_url="https://nobitex.test/market/stats", transport=transport),
        floor_toman=110_000,
        fallback_toman=115_000,
    )
    return PaymentService(
        zarinpal=ZarinpalClient(merchant_id="m-1", callback_url="https://shop.test/cb", transport=transport),
        payment4=Payment4Client(api_key="key-1", webhook_secret=WEBHOOK_SECRET, eth_wallet="0xstore", transport=transport),
        prices=prices,
        min_amount=1_000,
        max_amount=50_000_000,
    )


def signed(body: dict) -> tuple[bytes, str]:
    raw = json.dumps(body).encode()
    return raw, hmac.new(WEBHOOK_SECRET.encode(), raw, hashlib.sha256).hexdigest()


async def _balance(db, user_id):
    res = await db.execute(select(User.wallet_balance).where(User.id == user_id))
    return int(res.scalar_one())


async def _topup_entries(db, user_id):
    res = await db.execute(
        select(func.count()).select_from(WalletLedger).where(
            WalletLedger.user_id == user_id, WalletLedger.entry_kind == wallet.PAYMENT_TOPUP
        )
    )
    return int(res.scalar_one())


async def test_zarinpal_topup_credits_once(db, make_user, payment_service):
    user = await make_user(balance=0)
    user_id = user.id

    created = await payment_service.create_zarinpal_topup(db, user_id=user_id, amount=200_000)
    assert created["payment_id"] == "A0001"
    assert created["payment_url"].endswith("/StartPay/A0001")

    first = await payment_service.verify_zarinpal_topup(db, authority="A0001", status="OK")
    again = await payment_service.verify_zarinpal_topup(db, authority="A0001", status="OK")

    assert first == {"success": True, "status": "COMPLETED", "ref_id": "555", "amount": 200_000}
    assert again["success"] and again["amount"] == 200_000
    assert await _balance(db, user_id) == 200_000
    assert await _topup_entries(db, user_id) == 1


async def test_zarinpal_cancelled_by_user(db, make_user, payment_service, gateway):
    user = await make_user(balance=0)
    user_id = user.id
    await payment_service.create_zarinpal_topup(db, user_id=user_id, amount=200_000)

    result = await payment_service.verify_zarinpal_topup(db, authority="A0001", status="NOK")

    assert result["success"] is False
    assert result["status"] == "FAILED"
    assert not any(r.url.path.endswith("/PaymentVerification.json") for r in gateway.requests)
    assert await _balance(db, user_id) == 0


async def test_zarinpal_verification_rejected(db, make_user, payment_service, gateway):
    gateway.zarinpal_verify_code = -22
    user = await make_user(balance=0)
    user_id = user.id
    await payment_service.create_zarinpal_topup(db, user_id=user_id, amount=200_000)

    result = await payment_service.verify_zarinpal_topup(db, authority="A0001", status="OK")

    assert result == {"success": False, "status": "FAILED", "message": "Transaction failed"}
    assert await _balance(db, user_id) == 0


async def test_zarinpal_amount_bounds(db, make_user, payment_service, gateway):
    user = await make_user(balance=0)

    with pytest.raises(ValidationError):
        await payment_service.create_zarinpal_topup(db, user_id=user.id, amount=999)
    with pytest.raises(ValidationError):
        await payment_service.create_zarinpal_topup(db, user_id=user.id, amount=60_000_000)
    assert gateway.requests == []


async def test_unknown_authority(db, payment_service):
    with pytest.raises(NotFound):
        await payment_service.verify_zarinpal_topup(db, authority="nope", status="OK")
    with pytest.raises(ValidationError):
        await payment_service.verify_zarinpal_topup(db, authority="", status="OK")


async def test_crypto_topup_uses_current_rate(db, make_user, payment_service):
    user = await make_user(balance=0)

    created = await payment_service.create_crypto_topup(db, user_id=user.id, amount=Decimal("10.5"), currency="usdt")

    # fallback USDT rate: 1,150,000 rial
    assert created["exchange_rate"] == 1_150_000
    assert created["credit_amount"] == 12_075_000
    assert created["wallet_address"] == "0xstore"

    res = await db.execute(select(PaymentRequest).where(PaymentRequest.external_id == "p4-1"))
    row = res.scalar_one()
    assert row.status == "PENDING"
    assert row.credit_amount == 12_075_000


async def test_crypto_topup_rejects_out_of_range_value(db, make_user, payment_service, gateway):
    user = await make_user(balance=0)

    with pytest.raises(ValidationError):
        await payment_service.create_crypto_topup(db, user_id=user.id, amount=Decimal("1"), currency="BTC")
    with pytest.raises(ValidationError):
        await payment_service.create_crypto_topup(db, user_id=user.id, amount=Decimal("1"), currency="DOGE")
    assert gateway.requests == []


async def test_webhook_replay_credits_once(db, make_user, payment_service):
    user = await make_user(balance=0)
    user_id = user.id
    await payment_service.create_crypto_topup(db, user_id=user_id, amount=Decimal("10"), currency="USDT")

    raw, signature = signed({"payment_id": "p4-1", "status": "completed", "transaction_hash": "0xhash"})
    first = await payment_service.handle_crypto_webhook(db, raw_body=raw, signature=signature)
    replayed = await payment_service.handle_crypto_webhook(db, raw_body=raw, signature=signature)

    assert first == {"success": True, "status": "COMPLETED"}
    assert replayed == {"success": True, "status": "COMPLETED"}
    assert await _balance(db, user_id) == 11_500_000
    assert await _topup_entries(db, user_id) == 1

    # a later verification sees the completed request and does not credit again
    verified = await payment_service.verify_crypto_topup(db, user_id=user_id, payment_id="p4-1")
    assert verified["status"] == "COMPLETED"
    assert await _topup_entries(db, user_id) == 1


async def test_webhook_rejects_bad_signature(db, make_user, payment_service):
    user = await make_user(balance=0)
    user_id = user.id
    await payment_service.create_crypto_topup(db, user_id=user_id, amount=Decimal("10"), currency="USDT")

    raw, _ = signed({"payment_id": "p4-1", "status": "completed"})
    with pytest.raises(AuthError):
        await payment_service.handle_crypto_webhook(db, raw_body=raw, signature="deadbeef")
    assert await _balance(db, user_id) == 0


async def test_webhook_missing_fields(db, payment_service):
    raw, signature = signed({"status": "completed"})
    with pytest.raises(ValidationError):
        await payment_service.handle_crypto_webhook(db, raw_body=raw, signature=signature)


async def test_verify_crypto_expired(db, make_user, payment_service, gateway):
    gateway.crypto_status = "expired"
    user = await make_user(balance=0)
    user_id = user.id
    await payment_service.create_crypto_topup(db, user_id=user_id, amount=Decimal("10"), currency="USDT")

    result = await payment_service.verify_crypto_topup(db, user_id=user_id, payment_id="p4-1")

    assert result == {"status": "EXPIRED", "transaction_hash": "0xhash", "credit_amount": 0}
    assert await _balance(db, user_id) == 0

    res = await db.execute(select(PaymentRequest.status).where(PaymentRequest.external_id == "p4-1"))
    assert res.scalar_one() == "EXPIRED"


async def test_verify_crypto_is_scoped_to_owner(db, make_user, payment_service):
    owner = await make_user(balance=0)
    stranger = await make_user(balance=0)
    stranger_id = stranger.id
    await payment_service.create_crypto_topup(db, user_id=owner.id, amount=Decimal("10"), currency="USDT")

    with pytest.raises(NotFound):
        await payment_service.verify_crypto_topup(db, user_id=stranger_id, payment_id="p4-1")


async def test_list_user_payments(db, make_user, payment_service):
    user = await make_user(balance=0)
    user_id = user.id
    await payment_service.create_zarinpal_topup(db, user_id=user_id, amount=200_000)
    await payment_service.create_crypto_topup(db, user_id=user_id, amount=Decimal("10"), currency="USDT")

    items = await payment_service.list_user_payments(db, user_id=user_id)

    assert {p["provider"] for p in items} == {"ZARINPAL", "PAYMENT4"}
    assert all(p["status"] == "PENDING" for p in items)
