from __future__ import annotations

import httpx
import structlog

from store.core.errors import UpstreamError, UpstreamTimeout

logger = structlog.get_logger(__name__)


class NobitexClient:
    """Read-only client for the public market stats endpoint."""

    def __init__(
        self,
        *,
        api_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url
        self.timeout = timeout
        self.transport = transport

    async def market_stats(self) -> dict[str, dict]:
        """Return ``{"usdt-irt": {"latest": "...", ...}, ...}``."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.get(
                    self.api_url,
                    headers={"User-Agent": "store-backend/1.0", "Accept": "application/json"},
                )
        except httpx.TimeoutException as e:
            raise UpstreamTimeout("Price feed timed out") from e
        except httpx.TransportError as e:
            raise UpstreamError("Price feed is unavailable") from e

        if r.status_code == 429:
            raise UpstreamError("Price feed rate limit exceeded")
        if r.status_code != 200:
            raise UpstreamError(f"Price feed returned HTTP {r.status_code}")

        try:
            body = r.json()
        except ValueError as e:
            raise UpstreamError("Price feed returned invalid JSON") from e

        if not isinstance(body, dict) or body.get("status") != "ok":
            raise UpstreamError("Price feed returned an error status")

        stats = body.get("stats")
        return stats if isinstance(stats, dict) else {}
