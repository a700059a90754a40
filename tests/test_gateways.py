import hashlib
import hmac
import json
from decimal import Decimal

import httpx
import pytest

from store.core.errors import UpstreamError, UpstreamTimeout
from store.integrations import http_retry
from store.integrations.http_retry import backoff_delay, send_with_retry
from store.integrations.payment4 import DEFAULT_CURRENCIES, Payment4Client, normalize_currency, normalize_status
from store.integrations.zarinpal import ZarinpalClient


async def no_sleep(_delay):
    return None


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(http_retry, "backoff_delay", lambda attempt: 0)


def replay(*responses):
    """``send`` callable yielding the given responses (or raising exceptions) in order."""
    calls = []
    queue = list(responses)

    async def send():
        calls.append(1)
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    return send, calls


def test_backoff_grows_with_attempt():
    for attempt in (1, 2, 3):
        delay = backoff_delay(attempt)
        assert 0.25 * attempt <= delay <= 0.25 * attempt + 0.15


async def test_retries_server_errors_then_succeeds():
    send, calls = replay(httpx.Response(502), httpx.Response(503), httpx.Response(200))

    r = await send_with_retry(send, gateway="test", retries=2, sleep=no_sleep)

    assert r.status_code == 200
    assert len(calls) == 3


async def test_client_errors_are_not_retried():
    send, calls = replay(httpx.Response(400), httpx.Response(200))

    r = await send_with_retry(send, gateway="test", retries=2, sleep=no_sleep)

    assert r.status_code == 400
    assert len(calls) == 1


async def test_exhausted_retries_raise_upstream_error():
    send, calls = replay(httpx.Response(500), httpx.Response(500), httpx.Response(500))

    with pytest.raises(UpstreamError):
        await send_with_retry(send, gateway="test", retries=2, sleep=no_sleep)
    assert len(calls) == 3


async def test_network_errors_and_timeouts():
    send, calls = replay(httpx.ConnectError("refused"), httpx.Response(200))
    assert (await send_with_retry(send, gateway="test", sleep=no_sleep)).status_code == 200
    assert len(calls) == 2

    send, _ = replay(httpx.ReadTimeout("slow"), httpx.ReadTimeout("slow"))
    with pytest.raises(UpstreamTimeout):
        await send_with_retry(send, gateway="test", retries=1, sleep=no_sleep)

    send, _ = replay(httpx.ConnectError("refused"))
    with pytest.raises(UpstreamError) as exc:
        await send_with_retry(send, gateway="test", retries=0, sleep=no_sleep)
    assert not isinstance(exc.value, UpstreamTimeout)


# -------------------------
# ZarinPal
# -------------------------

def zarinpal(handler, **kwargs):
    return ZarinpalClient(
        merchant_id="merchant-1",
        callback_url="https://shop.test/payments/zarinpal/verify",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


async def test_zarinpal_create_payment():
    seen = []

    def handler(request):
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"data": {"code": 100, "authority": "A000123"}, "errors": []})

    session = await zarinpal(handler).create_payment(150_000, "line one\nline two")

    assert session.payment_id == "A000123"
    assert session.payment_url == "https://sandbox.zarinpal.com/pg/StartPay/A000123"
    path, payload = seen[0]
    assert path.endswith("/PaymentRequest.json")
    assert payload["amount"] == 150_000
    assert payload["description"] == "line one line two"
    assert payload["merchant_id"] == "merchant-1"


async def test_zarinpal_rejection_is_upstream_error():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400, json={"data": {}, "errors": {"code": -9, "message": "validation error"}})

    with pytest.raises(UpstreamError):
        await zarinpal(handler).create_payment(150_000, None)
    assert len(calls) == 1


async def test_zarinpal_retries_server_errors():
    responses = [httpx.Response(503), httpx.Response(200, json={"data": {"code": 100, "authority": "A1"}})]

    def handler(request):
        return responses.pop(0)

    session = await zarinpal(handler).create_payment(150_000, None)
    assert session.payment_id == "A1"


@pytest.mark.parametrize(
    "code, success, message",
    [
        (100, True, "Operation completed successfully"),
        (101, True, "Payment succeeded and was already verified"),
        (-22, False, "Transaction failed"),
        (-999, False, "Unknown error"),
    ],
)
async def test_zarinpal_verify(code, success, message):
    def handler(request):
        assert request.url.path.endswith("/PaymentVerification.json")
        return httpx.Response(200, json={"data": {"code": code, "ref_id": 98765}})

    result = await zarinpal(handler).verify_payment("A000123", 150_000)

    assert result.success is success
    assert result.message == message
    assert result.ref_id == ("98765" if success else None)


async def test_zarinpal_not_configured():
    client = ZarinpalClient(merchant_id="", callback_url="")
    with pytest.raises(UpstreamError):
        await client.create_payment(1_000, None)


async def test_zarinpal_live_urls():
    def handler(request):
        assert request.url.host == "api.zarinpal.com"
        return httpx.Response(200, json={"data": {"code": 100, "authority": "A9"}})

    session = await zarinpal(handler, sandbox=False).create_payment(1_000, None)
    assert session.payment_url == "https://www.zarinpal.com/pg/StartPay/A9"


# -------------------------
# Payment4
# -------------------------

def payment4(handler, **kwargs):
    kwargs.setdefault("api_key", "key-1")
    return Payment4Client(
        callback_url="https://shop.test/payments/crypto/callback",
        eth_wallet="0xstore",
        ton_wallet="UQstore",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


async def test_payment4_create_reuses_idempotency_key_on_retry():
    keys = []
    responses = [
        httpx.Response(502),
        httpx.Response(
            200,
            json={"success": True, "data": {"payment_id": "p4-1", "payment_url": "https://pay.test/p4-1", "wallet_address": "UQstore"}},
        ),
    ]

    def handler(request):
        keys.append(request.headers["Idempotency-Key"])
        assert request.headers["Authorization"] == "Bearer key-1"
        body = json.loads(request.content)
        assert body["currency"] == "TON"
        assert body["wallet_address"] == "UQstore"
        return responses.pop(0)

    session = await payment4(handler).create_payment(Decimal("3.5"), "ton", "top-up", user_id=7)

    assert session.payment_id == "p4-1"
    assert session.wallet_address == "UQstore"
    assert len(keys) == 2
    assert keys[0] == keys[1]


async def test_payment4_verify_normalizes_status():
    def handler(request):
        assert request.url.path.endswith("/payments/p4-1")
        return httpx.Response(200, json={"success": True, "data": {"status": "Completed", "transaction_hash": "0xhash"}})

    status = await payment4(handler).verify_payment("p4-1")

    assert status.status == "COMPLETED"
    assert status.raw_status == "Completed"
    assert status.transaction_hash == "0xhash"


async def test_payment4_unsuccessful_envelope():
    def handler(request):
        return httpx.Response(404, json={"success": False, "message": "not found"})

    with pytest.raises(UpstreamError):
        await payment4(handler).verify_payment("missing")


async def test_payment4_currencies_fall_back_to_defaults():
    def handler(request):
        return httpx.Response(200, json={"success": True, "data": []})

    assert await payment4(handler).supported_currencies() == DEFAULT_CURRENCIES
    assert await Payment4Client(api_key="").supported_currencies() == DEFAULT_CURRENCIES


def test_payment4_webhook_signature():
    client = Payment4Client(api_key="key-1", webhook_secret="hook-secret")
    body = b'{"payment_id":"p4-1","status":"completed"}'
    good = hmac.new(b"hook-secret", body, hashlib.sha256).hexdigest()

    assert client.verify_webhook_signature(body, good)
    assert client.verify_webhook_signature(body, good.upper())
    assert not client.verify_webhook_signature(body + b" ", good)
    assert not client.verify_webhook_signature(body, None)
    assert not client.verify_webhook_signature(body, "0" * 64)


def test_payment4_webhook_secret_defaults_to_api_key():
    client = Payment4Client(api_key="key-1")
    body = b"{}"
    assert client.verify_webhook_signature(body, hmac.new(b"key-1", body, hashlib.sha256).hexdigest())


def test_normalizers():
    assert normalize_status("EXPIRED") == "EXPIRED"
    assert normalize_status("refunded") == "UNKNOWN"
    assert normalize_status(None) == "UNKNOWN"
    assert normalize_currency("btc") == "BTC"
    assert normalize_currency("doge") == "USDT"
