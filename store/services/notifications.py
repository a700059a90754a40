"""
Order notifications.

Senders are called from detached tasks, so they may raise freely: the task
runner logs the failure and the order that triggered it is unaffected.
"""

from __future__ import annotations

import asyncio
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional, Protocol

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OrderConfirmation:
    order_id: int
    user_id: int
    email: Optional[str]
    full_name: Optional[str]
    product_id: str
    option_name: str
    quantity: int
    total_price: int
    discount_amount: Optional[int]


class Notifier(Protocol):
    async def send_order_confirmation(self, user_id: int, order: OrderConfirmation) -> None: ...


class LoggingNotifier:
    """Used when no mail transport is configured."""

    async def send_order_confirmation(self, user_id: int, order: OrderConfirmation) -> None:
        logger.info(
            "order_confirmation_logged",
            user_id=user_id,
            order_id=order.order_id,
            total_price=order.total_price,
        )


class SmtpNotifier:
    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: str = "",
        password: str = "",
        sender: str,
        timeout: float = 15.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.timeout = timeout

    def _build_message(self, order: OrderConfirmation) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = f"Order #{order.order_id} confirmed"
        msg["From"] = self.sender
        msg["To"] = order.email

        lines = [
            f"Hello {order.full_name or ''}".rstrip() + ",",
            "",
            f"Your order #{order.order_id} has been registered.",
            f"Product: {order.product_id} ({order.option_name}) x{order.quantity}",
        ]
        if order.discount_amount:
            lines.append(f"Discount: {order.discount_amount:,} IRR")
        lines.append(f"Paid from wallet: {order.total_price:,} IRR")
        msg.set_content("\n".join(lines))
        return msg

    def _send(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.starttls()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)

    async def send_order_confirmation(self, user_id: int, order: OrderConfirmation) -> None:
        if not order.email:
            logger.info("order_confirmation_skipped_no_email", user_id=user_id, order_id=order.order_id)
            return

        msg = self._build_message(order)
        await asyncio.to_thread(self._send, msg)
        logger.info("order_confirmation_sent", user_id=user_id, order_id=order.order_id)
