"""
Fulfillment dispatcher: forwards paid orders to the kitchen printer webhook.

At most one successful POST per payment id. A per-id asyncio.Lock is held
across the precondition re-read, the POST and the dispatched marker write, so
concurrent approved observations of one id serialise here and all but the
first see dispatched=True.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any

import httpx

from shared.config.constants import PaymentStatus
from shared.config.logging import get_logger
from shared.config.settings import Settings
from rest_api.services.payments.errors import (
    ConfigurationMissing,
    FulfillmentUnreachable,
    FulfillmentUpstreamError,
)
from rest_api.services.payments.store import PaymentStore

logger = get_logger(__name__)


class DispatchResult(str, Enum):
    """Outcome of a dispatch attempt."""
    DISPATCHED = "dispatched"
    ALREADY_DISPATCHED = "already_dispatched"
    NOT_APPROVED = "not_approved"
    NO_PAYLOAD = "no_payload"
    SIMULATED = "simulated"
    NOT_CONFIGURED = "not_configured"
    FAILED = "failed"


class FulfillmentDispatcher:
    def __init__(
        self,
        store: PaymentStore,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._store = store
        self._settings = settings
        self._transport = transport
        self._locks: dict[str, list] = {}  # payment_id -> [lock, users]
        self._locks_guard = asyncio.Lock()
        self.posts_sent = 0

    @property
    def configured(self) -> bool:
        return bool(self._settings.print_webhook_url)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._settings.fulfillment_timeout_seconds,
            transport=self._transport,
        )

    async def _acquire_entry(self, payment_id: str) -> asyncio.Lock:
        async with self._locks_guard:
            entry = self._locks.get(payment_id)
            if entry is None:
                entry = [asyncio.Lock(), 0]
                self._locks[payment_id] = entry
            entry[1] += 1
            return entry[0]

    async def _release_entry(self, payment_id: str) -> None:
        # Drop the lock once no coroutine holds or waits for it
        async with self._locks_guard:
            entry = self._locks.get(payment_id)
            if entry is None:
                return
            entry[1] -= 1
            if entry[1] <= 0:
                del self._locks[payment_id]

    async def dispatch(self, payment_id: str) -> DispatchResult:
        """
        Forward the stored order payload of an approved payment once.

        Failures are logged and leave dispatched unset so a later
        observation of the same approved payment retries naturally.
        """
        if not self.configured:
            logger.info("PRINT_WEBHOOK_URL not configured, skipping order forwarding", payment_id=payment_id)
            return DispatchResult.NOT_CONFIGURED

        lock = await self._acquire_entry(payment_id)
        try:
            async with lock:
                return await self._dispatch_locked(payment_id)
        finally:
            await self._release_entry(payment_id)

    async def _dispatch_locked(self, payment_id: str) -> DispatchResult:
        record = self._store.get(payment_id)
        if record is None or record.status != PaymentStatus.APPROVED:
            logger.warning(
                "Not forwarding order: payment not approved",
                payment_id=payment_id,
                status=record.status if record else None,
            )
            return DispatchResult.NOT_APPROVED
        if record.dispatched:
            logger.info("Order already forwarded to print webhook", payment_id=payment_id)
            return DispatchResult.ALREADY_DISPATCHED
        if record.simulated:
            logger.info("Simulated payment, not forwarding order", payment_id=payment_id)
            return DispatchResult.SIMULATED
        if not record.order_payload:
            logger.warning("No order payload stored, cannot forward order", payment_id=payment_id)
            return DispatchResult.NO_PAYLOAD

        try:
            async with self._client() as client:
                response = await client.post(
                    self._settings.print_webhook_url,
                    json=record.order_payload,
                )
        except httpx.HTTPError as e:
            logger.warning(
                "Failed to post order to print webhook",
                payment_id=payment_id,
                error=str(e) or type(e).__name__,
            )
            return DispatchResult.FAILED

        self.posts_sent += 1
        if not response.is_success:
            logger.warning(
                "Print webhook returned non-OK",
                payment_id=payment_id,
                status_code=response.status_code,
                body=response.text[:200],
            )
            return DispatchResult.FAILED

        self._store.mark_dispatched(payment_id)
        logger.info("Order forwarded to print webhook", payment_id=payment_id, order_id=record.order_id)
        return DispatchResult.DISPATCHED

    async def forward(self, payload: Any) -> Any:
        """
        Proxy an arbitrary order body to the print webhook (used by the browser
        to avoid CORS on the external endpoint).

        Returns the parsed JSON answer, or its text when it is not JSON.

        Raises:
            ConfigurationMissing: PRINT_WEBHOOK_URL not set
            FulfillmentUpstreamError: webhook answered non-2xx
            FulfillmentUnreachable: webhook could not be reached
        """
        if not self.configured:
            raise ConfigurationMissing("PRINT_WEBHOOK_URL not configured on server")

        try:
            async with self._client() as client:
                response = await client.post(self._settings.print_webhook_url, json=payload)
        except httpx.HTTPError as e:
            raise FulfillmentUnreachable(str(e) or type(e).__name__) from e

        logger.info("Print proxy response received", status_code=response.status_code)
        if not response.is_success:
            raise FulfillmentUpstreamError(response.status_code, response.text)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text
