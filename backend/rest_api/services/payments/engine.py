"""
Payment engine: owns the process-scoped payment state and wires the services.

One PaymentEngine is created in the application lifespan and stored on
app.state. It owns the connected-client set (ConnectionManager), the
simulated payment table and the per-id dispatch locks, so their lifetime is
exactly the process lifetime.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import httpx
from sqlalchemy.orm import sessionmaker

from shared.config.constants import Limits, PaymentStatus, StatusSource
from shared.config.logging import get_logger, mask_token
from shared.config.settings import Settings
from rest_api.services.payments.errors import (
    InvalidPaymentRequest,
    PaymentNotFound,
    PixNotEnabled,
    ProcessorUnauthorized,
    UpstreamUnavailable,
)
from rest_api.services.payments.fulfillment import FulfillmentDispatcher
from rest_api.services.payments.gateway import MercadoPagoGateway, PixOrder, round_amount
from rest_api.services.payments.reconciler import ReconcileResult, StatusReconciler
from rest_api.services.payments.retry import Sleep
from rest_api.services.payments.simulated import (
    SimulatedPaymentTable,
    build_pix_payload,
    is_simulated_id,
    render_qr_base64,
)
from rest_api.services.payments.store import PaymentStore
from rest_api.services.payments.webhook import WebhookIngestor
from ws_gateway.connection_manager import ConnectionManager

logger = get_logger(__name__)


@dataclass
class PixCharge:
    payment_id: str
    qr_image: str | None
    copy_paste_code: str | None
    status: str
    status_detail: str | None
    simulated: bool = False
    fallback: bool = False

    def to_response(self) -> dict[str, Any]:
        body = {
            "qrImage": self.qr_image,
            "copyPasteCode": self.copy_paste_code,
            "paymentId": self.payment_id,
            "status": self.status,
            "statusDetail": self.status_detail,
            "simulated": self.simulated,
        }
        if self.fallback:
            body["fallback"] = True
        return body


class PaymentEngine:
    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker,
        processor_transport: httpx.AsyncBaseTransport | None = None,
        fulfillment_transport: httpx.AsyncBaseTransport | None = None,
        notifier: ConnectionManager | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.settings = settings
        self.store = PaymentStore(session_factory)
        self.notifier = notifier or ConnectionManager(
            max_connections=settings.ws_max_total_connections,
            max_message_size=settings.ws_max_message_size,
        )
        self.simulated = SimulatedPaymentTable()
        self.gateway = MercadoPagoGateway(settings, transport=processor_transport, sleep=sleep)
        self.dispatcher = FulfillmentDispatcher(self.store, settings, transport=fulfillment_transport)
        self.reconciler = StatusReconciler(
            store=self.store,
            gateway=self.gateway,
            dispatcher=self.dispatcher,
            notifier=self.notifier,
            simulated=self.simulated,
        )
        self.webhooks = WebhookIngestor(self.reconciler, settings)
        self._timers: set[asyncio.Task] = set()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def startup(self) -> None:
        """
        Validate processor credentials.

        A token the processor rejects aborts startup in production; elsewhere
        it is logged. An unreachable processor never blocks startup.
        """
        settings = self.settings
        logger.info(
            "Payment engine starting",
            access_token=mask_token(settings.mercadopago_access_token),
            simulated_payments=settings.uses_test_token,
            signature_mode=settings.effective_signature_mode,
            print_webhook_configured=self.dispatcher.configured,
        )

        if not settings.mercadopago_validate_token_on_startup:
            return
        if not self.gateway.configured or settings.uses_test_token:
            return

        try:
            await self.gateway.validate_credentials()
        except ProcessorUnauthorized as e:
            if settings.is_production:
                raise RuntimeError(f"Mercado Pago access token rejected: {e}") from e
            logger.warning("Mercado Pago access token rejected", error=str(e))
        except UpstreamUnavailable as e:
            logger.warning("Could not validate Mercado Pago token at startup", error=str(e))

    async def shutdown(self) -> None:
        for task in list(self._timers):
            task.cancel()
        if self._timers:
            await asyncio.gather(*list(self._timers), return_exceptions=True)
        await self.webhooks.drain()
        await self.notifier.shutdown()

    # =========================================================================
    # Payment creation
    # =========================================================================

    async def create_pix(self, order: PixOrder, idempotency_key: str | None = None) -> PixCharge:
        """
        Create a PIX charge for an order.

        TEST- tokens produce simulated payments. When the collector account is
        not enabled for PIX QR and the local fallback is on, a simulated
        payment is returned instead of the error.
        """
        validate_order(order)

        if self.settings.uses_test_token:
            logger.info("Test token in use, creating simulated payment", order_id=order.order_id)
            return await self.create_simulated(order)

        try:
            created = await self.gateway.create_payment(order, idempotency_key)
        except PixNotEnabled:
            if not self.settings.enable_local_pix_fallback:
                raise
            logger.warning("PIX not enabled for collector, using local fallback", order_id=order.order_id)
            return await self.create_simulated(order, fallback=True)

        # Create-time write of the order data, then the processor's status
        self.store.merge(
            created.id,
            order_id=order.order_id,
            amount=round_amount(order.amount),
            order_payload=order.order_data,
        )
        result = await self.reconciler.reconcile(
            created.id,
            created.status,
            StatusSource.PROCESSOR_CREATE,
            raw=created.raw,
            status_detail=created.status_detail,
        )

        return PixCharge(
            payment_id=created.id,
            qr_image=created.qr_code_base64,
            copy_paste_code=created.qr_code,
            status=result.status,
            status_detail=created.status_detail,
        )

    async def create_simulated(self, order: PixOrder, fallback: bool = False) -> PixCharge:
        amount = round_amount(order.amount or 0)
        if amount < 0:
            raise InvalidPaymentRequest("amount must not be negative")

        payment = await self.simulated.create(order.order_id, amount)
        pix = build_pix_payload(order.order_id, amount)
        qr_image = render_qr_base64(pix)

        self.store.merge(
            payment.id,
            order_id=order.order_id,
            amount=amount,
            order_payload=order.order_data,
            simulated=True,
            status_source=StatusSource.SIMULATED,
        )
        logger.info(
            "Simulated payment created",
            payment_id=payment.id,
            order_id=order.order_id,
            amount=str(amount),
            fallback=fallback,
        )

        if self.settings.dev_auto_approve_seconds > 0:
            self._schedule_auto_approve(payment.id, self.settings.dev_auto_approve_seconds)

        return PixCharge(
            payment_id=payment.id,
            qr_image=qr_image,
            copy_paste_code=pix,
            status=payment.status,
            status_detail=None,
            simulated=True,
            fallback=fallback,
        )

    # =========================================================================
    # Simulated approval
    # =========================================================================

    async def approve_simulated(self, payment_id: str) -> ReconcileResult:
        """
        Raises:
            InvalidPaymentRequest: id is not a simulated (DEV-) id
            PaymentNotFound: no simulated payment with this id
        """
        if not is_simulated_id(payment_id):
            raise InvalidPaymentRequest("Only simulated (DEV-) payments can be approved")

        entry = await self.simulated.set_status(payment_id, PaymentStatus.APPROVED)
        if entry is None:
            raise PaymentNotFound(payment_id)

        logger.info("Simulated payment approved", payment_id=payment_id)
        return await self.reconciler.reconcile(payment_id, entry.status, StatusSource.SIMULATED)

    def _schedule_auto_approve(self, payment_id: str, delay: float) -> None:
        task = asyncio.create_task(self._auto_approve(payment_id, delay))
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)

    async def _auto_approve(self, payment_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.approve_simulated(payment_id)
            logger.info("Simulated payment auto-approved", payment_id=payment_id, after_seconds=delay)
        except Exception:
            logger.error("Simulated auto-approve failed", payment_id=payment_id, exc_info=True)

    # =========================================================================
    # Health
    # =========================================================================

    def health(self) -> dict[str, Any]:
        try:
            self.store.ping()
            database = "ok"
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            database = "error"

        return {
            "status": "healthy" if database == "ok" else "degraded",
            "service": "pix-checkout",
            "environment": self.settings.environment,
            "database": database,
            "processor_configured": self.gateway.configured,
            "processor_circuit": self.gateway.breaker.snapshot(),
            "fulfillment_configured": self.dispatcher.configured,
            "connections": self.notifier.total_connections,
        }


def validate_order(order: PixOrder) -> None:
    if not order.order_id or order.amount is None:
        raise InvalidPaymentRequest("amount and orderId are required")
    try:
        amount = Decimal(str(order.amount))
    except ArithmeticError as e:
        raise InvalidPaymentRequest("amount must be a number") from e
    if not amount.is_finite() or amount <= 0:
        raise InvalidPaymentRequest("amount must be greater than zero")
    if amount > Limits.MAX_AMOUNT:
        raise InvalidPaymentRequest(f"amount must not exceed {Limits.MAX_AMOUNT}")
