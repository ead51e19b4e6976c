"""
Client-side payment status poller.

Polls GET /api/check-payment/{id} until the payment reaches a terminal
status or the local deadline passes. The WebSocket push and this poller are
two independent consumers of the same status; a shared CompletionGuard makes
sure the completion callback runs once whichever of them sees approval first.

Deadline expiry is a local outcome only: nothing is written to the server.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

import httpx

from shared.config.constants import PaymentStatus
from shared.config.logging import get_logger
from rest_api.services.payments.status import is_approved, is_failed, normalize_status

logger = get_logger(__name__)

Callback = Callable[[str, dict[str, Any]], Any]

DEFAULT_INTERVAL_SECONDS = 3.0
DEFAULT_DEADLINE_SECONDS = 600.0


class PollOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


@dataclass
class PollResult:
    outcome: PollOutcome
    status: str
    attempts: int
    last_error: str | None = None


class CompletionGuard:
    """
    One-shot latch for the order completion flow.

    claim() has no await inside, so on one event loop exactly one caller
    gets True.
    """

    def __init__(self):
        self._claimed = False

    @property
    def claimed(self) -> bool:
        return self._claimed

    def claim(self) -> bool:
        if self._claimed:
            return False
        self._claimed = True
        return True


async def _invoke(callback: Callback | None, status: str, body: dict[str, Any]) -> None:
    if callback is None:
        return
    result = callback(status, body)
    if inspect.isawaitable(result):
        await result


class PaymentStatusPoller:
    """
    Usage:
        guard = CompletionGuard()
        poller = PaymentStatusPoller(
            "http://localhost:3000",
            payment_id,
            on_complete=print_receipt,
            on_failure=show_error,
            guard=guard,
        )
        result = await poller.run()
    """

    def __init__(
        self,
        base_url: str,
        payment_id: str,
        on_complete: Callback | None = None,
        on_failure: Callback | None = None,
        guard: CompletionGuard | None = None,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        deadline: float = DEFAULT_DEADLINE_SECONDS,
        request_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.payment_id = payment_id
        self.on_complete = on_complete
        self.on_failure = on_failure
        self.guard = guard or CompletionGuard()
        self.interval = interval
        self.deadline = deadline
        self.request_timeout = request_timeout
        self._transport = transport
        self._clock = clock
        self._sleep = sleep

    async def poll_once(self, client: httpx.AsyncClient) -> tuple[str | None, dict[str, Any], str | None]:
        """
        One status request.

        Returns (status, body, error). status is None when the request failed;
        failures are logged and the caller retries on the next tick.
        """
        path = f"/api/check-payment/{self.payment_id}"
        try:
            response = await client.get(path)
        except httpx.HTTPError as e:
            error = str(e) or type(e).__name__
            logger.warning("Status poll failed", payment_id=self.payment_id, error=error)
            return None, {}, error

        if not response.is_success:
            error = f"HTTP {response.status_code}"
            logger.warning("Status poll returned non-OK", payment_id=self.payment_id, status_code=response.status_code)
            return None, {}, error

        try:
            body = response.json()
        except ValueError:
            logger.warning("Status poll returned non-JSON body", payment_id=self.payment_id)
            return None, {}, "non-JSON body"
        if not isinstance(body, dict):
            return None, {}, "unexpected body"

        return body.get("status"), body, body.get("error")

    async def run(self) -> PollResult:
        started = self._clock()
        attempts = 0
        last_status = PaymentStatus.PENDING
        last_error: str | None = None

        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.request_timeout,
            transport=self._transport,
        ) as client:
            while True:
                if self.guard.claimed:
                    # The push consumer already completed the order
                    return PollResult(PollOutcome.COMPLETED, PaymentStatus.APPROVED, attempts, last_error)

                if self._clock() - started >= self.deadline:
                    logger.info("Payment poll deadline reached", payment_id=self.payment_id, attempts=attempts)
                    return PollResult(PollOutcome.EXPIRED, PaymentStatus.EXPIRED, attempts, last_error)

                attempts += 1
                status, body, error = await self.poll_once(client)
                if error:
                    last_error = error

                if status is not None:
                    last_status = normalize_status(status)

                    if is_approved(status):
                        if self.guard.claim():
                            logger.info("Payment approved", payment_id=self.payment_id, attempts=attempts)
                            await _invoke(self.on_complete, PaymentStatus.APPROVED, body)
                        return PollResult(PollOutcome.COMPLETED, PaymentStatus.APPROVED, attempts, last_error)

                    if is_failed(status):
                        logger.info("Payment failed", payment_id=self.payment_id, status=last_status)
                        await _invoke(self.on_failure, last_status, body)
                        return PollResult(PollOutcome.FAILED, last_status, attempts, last_error)

                await self._sleep(self.interval)


async def apply_push_update(
    message: dict[str, Any],
    payment_id: str,
    guard: CompletionGuard,
    on_complete: Callback | None = None,
    on_failure: Callback | None = None,
) -> PollOutcome | None:
    """
    Handle one payment_update message received over the WebSocket.

    Returns the outcome it triggered, or None when the message is for another
    payment, not terminal, or the order was already completed.
    """
    if message.get("type") != "payment_update":
        return None
    payload = message.get("payload") or {}
    if str(payload.get("id")) != str(payment_id):
        return None

    status = payload.get("status")
    if is_approved(status):
        if not guard.claim():
            return None
        await _invoke(on_complete, PaymentStatus.APPROVED, payload)
        return PollOutcome.COMPLETED
    if is_failed(status):
        await _invoke(on_failure, normalize_status(status), payload)
        return PollOutcome.FAILED
    return None
