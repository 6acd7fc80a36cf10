"""Gateway to the platform subsystems that event handlers act on.

Handlers never talk to the escrow ledger, order store, notification centre,
audit trail or scoring jobs directly; they go through a ``PlatformGateway``.
``HttpPlatformGateway`` is the production implementation, talking to the
platform API over httpx.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

import httpx

from eventbus.config import settings

logger = logging.getLogger(__name__)

# Retry config for platform API calls
_MAX_ATTEMPTS = 4
_RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})
_BASE_BACKOFF_SECONDS = 0.5
_MAX_RETRY_AFTER_SECONDS = 30.0


def _retry_delay(attempt: int, response: httpx.Response | None = None) -> float:
    """Seconds to wait after failed attempt number ``attempt`` (1-based).

    A ``Retry-After`` header given in seconds wins, capped at
    ``_MAX_RETRY_AFTER_SECONDS``. Otherwise the wait doubles per attempt.
    """
    if response is not None:
        retry_after = response.headers.get("Retry-After", "").strip()
        if retry_after.isdigit():
            return min(float(retry_after), _MAX_RETRY_AFTER_SECONDS)
    return _BASE_BACKOFF_SECONDS * (2 ** (attempt - 1))


class PlatformGateway(ABC):
    # -- Fintech ------------------------------------------------------------

    @abstractmethod
    async def get_escrow(self, order_id: str) -> dict | None:
        """Return the escrow record for an order (any status), or None."""

    @abstractmethod
    async def create_escrow(self, order_id: str) -> dict:
        """Create an escrow hold for an order."""

    @abstractmethod
    async def release_escrow(self, escrow_id: str) -> None:
        """Release a held escrow to the seller."""

    # -- Commerce / logistics -----------------------------------------------

    @abstractmethod
    async def update_order(self, order_id: str, fields: dict) -> None:
        """Patch an order (status, payment_status, ...)."""

    @abstractmethod
    async def create_notification(
        self, store_id: str, kind: str, title: str, body: str, metadata: dict
    ) -> None:
        """Insert a dashboard notification for a store."""

    @abstractmethod
    async def send_order_confirmation(self, message: dict) -> None:
        """Send the order confirmation email to the customer."""

    # -- Trust ----------------------------------------------------------------

    @abstractmethod
    async def append_audit_log(
        self, store_id: str, action: str, target_type: str, target_id: str, metadata: dict
    ) -> None:
        """Append one immutable audit trail row."""

    # -- Scoring jobs -------------------------------------------------------

    @abstractmethod
    async def request_risk_recalculation(self, target_type: str, target_id: str) -> None:
        """Ask the risk engine to rescore a seller or buyer (accepted, not completed)."""

    @abstractmethod
    async def request_ranking_recalculation(self, product_ids: list[str]) -> None:
        """Ask the ranking engine to rescore products."""

    @abstractmethod
    async def request_inventory_recalculation(self, product_ids: list[str]) -> None:
        """Ask the inventory engine to recompute stock intelligence."""

    async def aclose(self) -> None:
        """Release any network resources held by the gateway."""


class HttpPlatformGateway(PlatformGateway):
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or settings.platform_api_url
        self.api_key = api_key if api_key is not None else settings.platform_api_key
        self.timeout = timeout or settings.platform_api_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        **kwargs,
    ) -> httpx.Response:
        """Send a platform request, retrying 429/5xx answers and transport errors.

        Other error statuses raise ``httpx.HTTPStatusError`` at once. After
        ``_MAX_ATTEMPTS`` the last failure is raised as is.
        """
        client = await self._get_client()
        attempt = 0
        while True:
            attempt += 1
            try:
                response = await client.request(method, path, **kwargs)
            except httpx.RequestError as exc:
                if attempt >= _MAX_ATTEMPTS:
                    raise
                reason = str(exc) or type(exc).__name__
                delay = _retry_delay(attempt)
            else:
                if response.status_code < 400:
                    return response
                if response.status_code not in _RETRY_STATUSES or attempt >= _MAX_ATTEMPTS:
                    response.raise_for_status()
                reason = f"HTTP {response.status_code}"
                delay = _retry_delay(attempt, response)

            logger.warning(
                "Platform %s %s failed (%s) on attempt %d/%d, retrying in %.1fs",
                method, path, reason, attempt, _MAX_ATTEMPTS, delay,
            )
            await asyncio.sleep(delay)

    async def get_escrow(self, order_id: str) -> dict | None:
        response = await self._request_with_retry(
            "GET", "/rest/escrow_records", params={"order_id": order_id},
        )
        data = response.json()
        if not data:
            return None
        return data[0] if isinstance(data, list) else data

    async def create_escrow(self, order_id: str) -> dict:
        response = await self._request_with_retry(
            "POST", "/rpc/create_escrow_for_order", json={"order_id": order_id},
        )
        return response.json() or {}

    async def release_escrow(self, escrow_id: str) -> None:
        await self._request_with_retry(
            "POST", "/rpc/release_escrow", json={"escrow_id": escrow_id},
        )

    async def update_order(self, order_id: str, fields: dict) -> None:
        await self._request_with_retry("PATCH", f"/rest/orders/{order_id}", json=fields)

    async def create_notification(
        self, store_id: str, kind: str, title: str, body: str, metadata: dict
    ) -> None:
        await self._request_with_retry(
            "POST",
            "/rest/notifications",
            json={
                "store_id": store_id,
                "type": kind,
                "title": title,
                "body": body,
                "metadata": metadata,
            },
        )

    async def send_order_confirmation(self, message: dict) -> None:
        await self._request_with_retry(
            "POST", "/functions/send-order-confirmation", json=message,
        )

    async def append_audit_log(
        self, store_id: str, action: str, target_type: str, target_id: str, metadata: dict
    ) -> None:
        await self._request_with_retry(
            "POST",
            "/rest/audit_logs",
            json={
                "store_id": store_id,
                "action": action,
                "target_type": target_type,
                "target_id": target_id,
                "metadata": metadata,
            },
        )

    async def request_risk_recalculation(self, target_type: str, target_id: str) -> None:
        await self._request_with_retry(
            "POST",
            "/functions/calculate-risk-scores",
            json={"action": "calculate_one", "target_type": target_type, "target_id": target_id},
        )

    async def request_ranking_recalculation(self, product_ids: list[str]) -> None:
        await self._request_with_retry(
            "POST", "/functions/calculate-rankings", json={"product_ids": product_ids},
        )

    async def request_inventory_recalculation(self, product_ids: list[str]) -> None:
        await self._request_with_retry(
            "POST", "/functions/calculate-inventory", json={"product_ids": product_ids},
        )

    async def aclose(self) -> None:
        """Close the httpx client.

        Celery tasks must call this at the end of each asyncio.run() so a
        client never outlives its event loop.
        """
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
