"""
PIX payment router.
Creates charges, answers status polls and serves the development helpers.
"""

from decimal import Decimal
import time

from fastapi import APIRouter, Depends, Header, Request

from shared.config.constants import Limits, PaymentStatus, StatusSource
from shared.config.logging import payments_logger as logger
from shared.config.settings import settings
from shared.rate_limit import limiter
from shared.utils.exceptions import ForbiddenError, InternalError, ValidationError
from shared.utils.schemas import DevApproveResponse, GeneratePixRequest
from rest_api.routers._common import get_payment_engine, payment_error_to_http
from rest_api.services.payments.engine import PaymentEngine
from rest_api.services.payments.errors import PaymentError
from rest_api.services.payments.gateway import PixOrder


router = APIRouter(tags=["payments"])


def _require_dev_endpoints(engine: PaymentEngine) -> None:
    if not engine.settings.dev_endpoints_enabled:
        raise ForbiddenError("use development payment endpoints in production")


def _check_payment_id(payment_id: str) -> str:
    payment_id = payment_id.strip()
    if not payment_id or len(payment_id) > Limits.MAX_PAYMENT_ID_LENGTH:
        raise ValidationError("payment id is invalid", payment_id=payment_id[:80])
    return payment_id


# =============================================================================
# Creation
# =============================================================================


@router.post("/api/generate-pix")
@limiter.limit(settings.create_payment_rate_limit)
async def generate_pix(
    request: Request,
    body: GeneratePixRequest,
    x_idempotency_key: str | None = Header(default=None, alias="X-Idempotency-Key"),
    engine: PaymentEngine = Depends(get_payment_engine),
) -> dict:
    """
    Create a PIX charge for an order.

    Returns the QR image (base64 PNG), the copy-and-paste code and the
    payment id the client polls with.
    """
    order = PixOrder(
        order_id=body.resolved_order_id(),
        amount=body.resolved_amount(),
        order_data=body.order_data,
        payer=body.payer,
    )

    try:
        charge = await engine.create_pix(order, idempotency_key=x_idempotency_key)
    except PaymentError as e:
        raise payment_error_to_http(e, order_id=order.order_id) from e
    except Exception as e:
        logger.error("Unexpected error creating PIX payment", order_id=order.order_id, exc_info=True)
        raise InternalError(
            {"error": "Failed to create PIX payment", "detail": str(e)},
            order_id=order.order_id,
        ) from e

    return charge.to_response()


@router.post("/api/generate-pix-dev")
@limiter.limit(settings.create_payment_rate_limit)
async def generate_pix_dev(
    request: Request,
    body: GeneratePixRequest,
    engine: PaymentEngine = Depends(get_payment_engine),
) -> dict:
    """Simulated PIX charge that bypasses Mercado Pago."""
    _require_dev_endpoints(engine)

    order = PixOrder(
        order_id=body.resolved_order_id() or f"DEV-{int(time.time() * 1000)}",
        amount=body.resolved_amount() or Decimal("0"),
        order_data=body.order_data,
    )
    try:
        charge = await engine.create_simulated(order)
    except PaymentError as e:
        raise payment_error_to_http(e, order_id=order.order_id) from e

    return charge.to_response()


@router.post("/api/dev-approve/{payment_id}", response_model=DevApproveResponse)
@limiter.limit(settings.create_payment_rate_limit)
async def dev_approve(
    request: Request,
    payment_id: str,
    engine: PaymentEngine = Depends(get_payment_engine),
) -> DevApproveResponse:
    """Approve a simulated (DEV-) payment by hand."""
    _require_dev_endpoints(engine)

    try:
        result = await engine.approve_simulated(_check_payment_id(payment_id))
    except PaymentError as e:
        raise payment_error_to_http(e, payment_id=payment_id) from e

    return DevApproveResponse(id=result.payment_id, status=result.status)


# =============================================================================
# Status
# =============================================================================


@router.get("/api/check-payment/{payment_id}")
async def check_payment(
    payment_id: str,
    engine: PaymentEngine = Depends(get_payment_engine),
) -> dict:
    """
    Status for client polling.

    Terminal statuses come from the local record; otherwise one processor
    lookup is made. A failed lookup answers with the stored status (or
    pending) and an error, never with a status the processor did not confirm.
    """
    check = await engine.reconciler.check_status(_check_payment_id(payment_id))
    return check.to_response()


@router.get("/status-pagamento/{payment_id}")
async def refresh_payment_status(
    payment_id: str,
    engine: PaymentEngine = Depends(get_payment_engine),
) -> dict:
    """
    Forced processor refresh. The answer is persisted and broadcast like a
    webhook; a failed lookup is a 503, never a status.
    """
    payment_id = _check_payment_id(payment_id)
    try:
        result = await engine.reconciler.refresh(payment_id, trigger=StatusSource.POLL)
    except PaymentError as e:
        raise payment_error_to_http(e, payment_id=payment_id) from e

    record = engine.store.get(payment_id)
    body = {
        "id": payment_id,
        "status": result.status,
        "status_detail": record.status_detail if record else None,
        "changed": result.changed,
    }
    raw = (record.raw if record else None) or {}
    if result.status == PaymentStatus.APPROVED and raw.get("date_approved"):
        body["date_approved"] = raw["date_approved"]
    return body
