"""
Print proxy router.
Lets the browser post an order to the kitchen printer webhook through the
same origin, so the external endpoint needs no CORS setup.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends

from shared.utils.schemas import PrintOrderResponse
from rest_api.routers._common import get_payment_engine, payment_error_to_http
from rest_api.services.payments.engine import PaymentEngine
from rest_api.services.payments.errors import PaymentError


router = APIRouter(prefix="/api", tags=["fulfillment"])


@router.post("/print-order", response_model=PrintOrderResponse)
async def print_order(
    payload: Any = Body(default=None),
    engine: PaymentEngine = Depends(get_payment_engine),
) -> PrintOrderResponse:
    """
    Forward the body to PRINT_WEBHOOK_URL.

    400 when the webhook is not configured, 502 when it answers non-2xx,
    500 when it cannot be reached.
    """
    try:
        proxied = await engine.dispatcher.forward(payload if payload is not None else {})
    except PaymentError as e:
        raise payment_error_to_http(e) from e

    return PrintOrderResponse(proxied=proxied)
