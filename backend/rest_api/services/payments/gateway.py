"""
Mercado Pago REST client.

Creates PIX charges and reads payments by id. Every call carries an explicit
timeout and goes through the gateway's circuit breaker. Failures are raised
as domain errors; a failed lookup is never turned into a payment status.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx

from shared.config.logging import get_logger, mask_email
from shared.config.settings import Settings
from rest_api.services.payments.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerError,
)
from rest_api.services.payments.errors import (
    InvalidPaymentRequest,
    PixNotEnabled,
    ProcessorRejected,
    ProcessorUnauthorized,
    UpstreamUnavailable,
)
from rest_api.services.payments.payer import build_payer
from rest_api.services.payments.retry import RetryConfig, Sleep, retry_async

logger = get_logger(__name__)


@dataclass
class PixOrder:
    """What the checkout asks to charge."""

    order_id: str
    amount: Decimal
    order_data: dict[str, Any] | None = None
    payer: dict[str, Any] | None = None

    @property
    def description(self) -> str:
        return f"Pedido #{self.order_id}"


@dataclass
class CreatedPayment:
    id: str
    status: str
    status_detail: str | None
    qr_code: str | None
    qr_code_base64: str | None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class FetchedPayment:
    id: str
    status: str | None
    status_detail: str | None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def live_mode(self) -> bool | None:
        return self.raw.get("live_mode")


def round_amount(amount: Any) -> Decimal:
    return Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def generate_idempotency_key(order_id: str, now_ms: int | None = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"idemp-{order_id}-{now_ms}"


def _is_pix_not_enabled(message: str) -> bool:
    """Mercado Pago reports a collector without PIX keys as '... collector user ... key ... qr ...'."""
    text = message.lower()
    return "collector user" in text and "key" in text and "qr" in text


def _error_message(body: Any) -> str:
    if isinstance(body, dict):
        parts = [str(body.get("message") or "")]
        for cause in body.get("cause") or []:
            if isinstance(cause, dict):
                parts.append(str(cause.get("description") or ""))
        return " ".join(p for p in parts if p)
    return str(body or "")


def _parse_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text}


class MercadoPagoGateway:
    """
    Stateless apart from its circuit breaker.

    transport lets tests plug an httpx.MockTransport in place of the network.
    """

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        breaker: CircuitBreaker | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._settings = settings
        self._transport = transport
        self._sleep = sleep
        self.breaker = breaker or CircuitBreaker(
            CircuitBreakerConfig(
                name="mercadopago",
                failure_threshold=5,
                success_threshold=2,
                timeout_seconds=30.0,
                half_open_max_calls=2,
            )
        )
        self.fetch_retry = RetryConfig(
            initial_delay=settings.processor_fetch_initial_delay,
            backoff_base=2.0,
            jitter_factor=0.0,
            max_attempts=max(1, settings.processor_fetch_attempts),
        )

    @property
    def configured(self) -> bool:
        return bool(self._settings.mercadopago_access_token)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._settings.mercadopago_api_url,
            timeout=self._settings.processor_timeout_seconds,
            transport=self._transport,
        )

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._settings.mercadopago_access_token}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """
        Send one request through the breaker.

        Transport errors and 5xx count as breaker failures and surface as
        UpstreamUnavailable. 4xx answers are returned for the caller to map.
        """
        try:
            async with self.breaker.call():
                async with self._client() as client:
                    response = await client.request(method, path, **kwargs)
                if response.status_code >= 500:
                    raise UpstreamUnavailable(
                        f"Mercado Pago returned {response.status_code}",
                        status_code=response.status_code,
                    )
                return response
        except CircuitBreakerError as e:
            logger.warning("Mercado Pago circuit breaker open", retry_after=e.retry_after, path=path)
            raise UpstreamUnavailable(str(e)) from e
        except httpx.TimeoutException as e:
            raise UpstreamUnavailable(f"Mercado Pago timed out on {method} {path}") from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Mercado Pago unreachable: {e}") from e

    # =========================================================================
    # Create
    # =========================================================================

    def build_payment_body(self, order: PixOrder) -> dict[str, Any]:
        return {
            "transaction_amount": float(round_amount(order.amount)),
            "description": order.description,
            "payment_method_id": "pix",
            "external_reference": order.order_id,
            "payer": build_payer(
                order.payer,
                order.order_data,
                self._settings.mercadopago_fake_email_domain,
            ),
        }

    async def create_payment(self, order: PixOrder, idempotency_key: str | None = None) -> CreatedPayment:
        """
        Create a PIX charge.

        Raises:
            InvalidPaymentRequest: amount <= 0 or missing order id
            ProcessorUnauthorized: 401 from Mercado Pago
            PixNotEnabled: collector account cannot receive PIX QR payments
            ProcessorRejected: any other 4xx, or a 2xx without QR data
            UpstreamUnavailable: network error, timeout, 5xx or open circuit
        """
        if not order.order_id:
            raise InvalidPaymentRequest("orderId is required")
        try:
            amount = round_amount(order.amount)
        except (ArithmeticError, ValueError) as e:
            raise InvalidPaymentRequest("amount must be a number") from e
        if amount <= 0:
            raise InvalidPaymentRequest("amount must be greater than zero")

        key = idempotency_key or generate_idempotency_key(order.order_id)
        body = self.build_payment_body(order)

        logger.info(
            "Creating PIX payment",
            order_id=order.order_id,
            amount=str(amount),
            payer_email=mask_email(body["payer"]["email"]),
            idempotency_key=key,
        )

        response = await self._request(
            "POST",
            "/v1/payments",
            headers=self._headers({"X-Idempotency-Key": key}),
            json=body,
        )
        data = _parse_body(response)

        if response.status_code == 401:
            raise ProcessorUnauthorized(
                "Check MERCADOPAGO_ACCESS_TOKEN and environment (live vs test credentials)"
            )
        if response.status_code >= 400:
            message = _error_message(data)
            if _is_pix_not_enabled(message):
                raise PixNotEnabled(
                    "Collector account is not enabled for PIX QR generation. "
                    "Enable PIX keys / QR for your Mercado Pago account."
                )
            raise ProcessorRejected(response.status_code, data)

        if not isinstance(data, dict):
            raise ProcessorRejected(500, "Unexpected response from Mercado Pago")

        transaction = (data.get("point_of_interaction") or {}).get("transaction_data") or {}
        qr_code = transaction.get("qr_code")
        qr_code_base64 = transaction.get("qr_code_base64")
        if not (qr_code or qr_code_base64):
            raise ProcessorRejected(500, "QR code not returned by Mercado Pago")

        payment_id = data.get("id")
        if payment_id is None:
            raise ProcessorRejected(500, "Payment id not returned by Mercado Pago")

        created = CreatedPayment(
            id=str(payment_id),
            status=str(data.get("status") or "pending"),
            status_detail=data.get("status_detail"),
            qr_code=qr_code,
            qr_code_base64=qr_code_base64,
            raw=data,
        )
        logger.info(
            "PIX payment created",
            payment_id=created.id,
            order_id=order.order_id,
            status=created.status,
        )
        return created

    # =========================================================================
    # Fetch
    # =========================================================================

    async def fetch_payment(self, payment_id: str) -> FetchedPayment:
        """
        Single lookup of a payment by id.

        Any non-2xx (including 404), non-JSON body, transport failure or open
        circuit raises UpstreamUnavailable.
        """
        response = await self._request(
            "GET",
            f"/v1/payments/{payment_id}",
            headers=self._headers(),
        )
        if response.status_code != 200:
            raise UpstreamUnavailable(
                f"Mercado Pago lookup returned {response.status_code}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamUnavailable("Mercado Pago returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise UpstreamUnavailable("Mercado Pago returned an unexpected body")

        return FetchedPayment(
            id=str(payment_id),
            status=data.get("status"),
            status_detail=data.get("status_detail"),
            raw=data,
        )

    async def fetch_payment_with_retry(self, payment_id: str) -> FetchedPayment:
        """
        Lookup with exponential backoff (1s, 2s by default).

        After the last attempt the last UpstreamUnavailable is raised.
        """

        def _log_retry(attempt: int, exc: BaseException, delay: float) -> None:
            logger.warning(
                "Mercado Pago lookup failed, retrying",
                payment_id=payment_id,
                attempt=attempt,
                next_delay=delay,
                error=str(exc),
            )

        return await retry_async(
            lambda: self.fetch_payment(payment_id),
            retry_on=(UpstreamUnavailable,),
            config=self.fetch_retry,
            sleep=self._sleep,
            on_retry=_log_retry,
        )

    # =========================================================================
    # Credentials
    # =========================================================================

    async def validate_credentials(self) -> dict[str, Any]:
        """
        GET /users/me with the configured token.

        Returns the account document on 200. 401/403/404 raise
        ProcessorUnauthorized; transport failures raise UpstreamUnavailable.
        """
        if not self.configured:
            raise ProcessorUnauthorized("MERCADOPAGO_ACCESS_TOKEN is not set")

        response = await self._request("GET", "/users/me", headers=self._headers())
        if response.status_code in (401, 403, 404):
            raise ProcessorUnauthorized(
                f"Mercado Pago rejected the access token ({response.status_code})"
            )
        if response.status_code != 200:
            raise UpstreamUnavailable(
                f"Mercado Pago /users/me returned {response.status_code}",
                status_code=response.status_code,
            )
        data = _parse_body(response)
        logger.info(
            "Mercado Pago credentials valid",
            account_id=data.get("id") if isinstance(data, dict) else None,
        )
        return data if isinstance(data, dict) else {}
