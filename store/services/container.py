from __future__ import annotations

from dataclasses import dataclass

from store.core.config import Settings
from store.core.tasks import DetachedTaskRunner
from store.integrations.nobitex import NobitexClient
from store.integrations.payment4 import Payment4Client
from store.integrations.zarinpal import ZarinpalClient
from store.services.coupons import CouponValidator
from store.services.notifications import LoggingNotifier, Notifier, SmtpNotifier
from store.services.orders import OrderService
from store.services.payments import PaymentService
from store.services.pricing import PriceService


@dataclass
class Services:
    """Long-lived collaborators, built once per application."""

    tasks: DetachedTaskRunner
    notifier: Notifier
    validator: CouponValidator
    orders: OrderService
    prices: PriceService
    payments: PaymentService


def build_notifier(settings: Settings) -> Notifier:
    if not settings.SMTP_HOST:
        return LoggingNotifier()
    return SmtpNotifier(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        username=settings.SMTP_USER,
        password=settings.SMTP_PASSWORD,
        sender=settings.MAIL_FROM,
    )


def build_services(settings: Settings, *, notifier: Notifier | None = None) -> Services:
    tasks = DetachedTaskRunner()
    notifier = notifier or build_notifier(settings)
    validator = CouponValidator(min_order_amount=settings.ORDER_MIN_AMOUNT)

    orders = OrderService(
        validator=validator,
        notifier=notifier,
        tasks=tasks,
        min_amount=settings.ORDER_MIN_AMOUNT,
        max_amount=settings.ORDER_MAX_AMOUNT,
        max_quantity=settings.ORDER_MAX_QUANTITY,
    )

    prices = PriceService(
        client=NobitexClient(api_url=settings.NOBITEX_API_URL),
        floor_toman=settings.USDT_FLOOR_TOMAN,
        fallback_toman=settings.USDT_FALLBACK_TOMAN,
        cache_seconds=settings.PRICE_CACHE_SECONDS,
    )

    payments = PaymentService(
        zarinpal=ZarinpalClient(
            merchant_id=settings.ZARINPAL_MERCHANT_ID,
            callback_url=settings.ZARINPAL_CALLBACK_URL,
            sandbox=settings.ZARINPAL_SANDBOX,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            retries=settings.GATEWAY_RETRIES,
        ),
        payment4=Payment4Client(
            api_key=settings.PAYMENT4_API_KEY,
            callback_url=settings.PAYMENT4_CALLBACK_URL,
            webhook_secret=settings.PAYMENT4_WEBHOOK_SECRET,
            sandbox=settings.PAYMENT4_SANDBOX,
            eth_wallet=settings.STORE_ETH_WALLET,
            ton_wallet=settings.STORE_TON_WALLET,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            retries=settings.GATEWAY_RETRIES,
        ),
        prices=prices,
        min_amount=settings.ORDER_MIN_AMOUNT,
        max_amount=settings.ORDER_MAX_AMOUNT,
    )

    return Services(
        tasks=tasks,
        notifier=notifier,
        validator=validator,
        orders=orders,
        prices=prices,
        payments=payments,
    )
