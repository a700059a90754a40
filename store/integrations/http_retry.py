"""
Retry policy shared by the payment gateway clients.

Network errors, timeouts and 5xx responses are retried with a short linear
backoff (250ms per attempt) plus up to 150ms of jitter. 4xx responses are
returned to the caller untouched: they are the gateway's answer, not a fault.
"""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable

import httpx
import structlog

from store.core.errors import UpstreamError, UpstreamTimeout

logger = structlog.get_logger(__name__)

BACKOFF_STEP_SECONDS = 0.25
JITTER_SECONDS = 0.15


def is_retryable_status(status_code: int) -> bool:
    return 500 <= status_code < 600


def backoff_delay(attempt: int) -> float:
    return BACKOFF_STEP_SECONDS * attempt + random.uniform(0, JITTER_SECONDS)


async def send_with_retry(
    send: Callable[[], Awaitable[httpx.Response]],
    *,
    gateway: str,
    retries: int = 2,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> httpx.Response:
    """
    Call ``send`` until it yields a non-5xx response or ``retries`` extra
    attempts are used up. Exhaustion maps to UpstreamError / UpstreamTimeout.
    """
    attempt = 0
    while True:
        try:
            response = await send()
        except httpx.TimeoutException as e:
            if attempt < retries:
                attempt += 1
                await sleep(backoff_delay(attempt))
                continue
            logger.error("gateway_timeout", gateway=gateway, attempts=attempt + 1, error=str(e))
            raise UpstreamTimeout() from e
        except httpx.TransportError as e:
            if attempt < retries:
                attempt += 1
                await sleep(backoff_delay(attempt))
                continue
            logger.error("gateway_unreachable", gateway=gateway, attempts=attempt + 1, error=str(e))
            raise UpstreamError() from e

        if is_retryable_status(response.status_code):
            if attempt < retries:
                attempt += 1
                await sleep(backoff_delay(attempt))
                continue
            logger.error(
                "gateway_server_error",
                gateway=gateway,
                attempts=attempt + 1,
                status_code=response.status_code,
            )
            raise UpstreamError()

        return response
