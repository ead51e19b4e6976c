"""
Mercado Pago webhook router.

The raw body is read before any JSON parsing so the signature is computed
over exactly the bytes the processor signed.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from shared.config.constants import Limits
from shared.utils.exceptions import ValidationError
from rest_api.routers._common import get_payment_engine, payment_error_to_http
from rest_api.services.payments.engine import PaymentEngine
from rest_api.services.payments.errors import PaymentError
from rest_api.services.payments.webhook import InvalidWebhookBody


router = APIRouter(prefix="/api", tags=["webhooks"])


@router.post("/webhook")
async def mercadopago_webhook(
    request: Request,
    engine: PaymentEngine = Depends(get_payment_engine),
) -> JSONResponse:
    """
    Receive a payment notification.

    Answers 200 once the notification has been reconciled (or deliberately
    ignored) and 202 when the processor could not confirm the status yet or
    reconciliation is still running after the processing deadline.
    """
    body = await request.body()
    if len(body) > Limits.MAX_RAW_BODY_BYTES:
        raise ValidationError("Webhook body too large", size=len(body))

    try:
        response = await engine.webhooks.ingest(request.headers, body)
    except InvalidWebhookBody as e:
        raise ValidationError(str(e)) from e
    except PaymentError as e:
        raise payment_error_to_http(e) from e

    return JSONResponse(status_code=response.status_code, content=response.to_body())
