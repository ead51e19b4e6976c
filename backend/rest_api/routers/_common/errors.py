"""
Translation of payment domain errors into HTTP exceptions.
"""

from typing import Any

from rest_api.services.payments.errors import (
    ConfigurationMissing,
    FulfillmentUnreachable,
    FulfillmentUpstreamError,
    InvalidPaymentRequest,
    PaymentError,
    PaymentNotFound,
    PixNotEnabled,
    ProcessorRejected,
    ProcessorUnauthorized,
    SignatureInvalid,
    UpstreamUnavailable,
)
from shared.utils.exceptions import (
    AppException,
    BadGatewayError,
    InternalError,
    NotFoundError,
    ServiceUnavailableError,
    UnauthorizedError,
    UpstreamRejectedError,
    ValidationError,
)


def payment_error_to_http(error: PaymentError, **log_context: Any) -> AppException:
    """
    Map a domain error to the HTTP exception the API answers with.

    Usage:
        try:
            charge = await engine.create_pix(order)
        except PaymentError as e:
            raise payment_error_to_http(e, order_id=order.order_id) from e
    """
    # PixNotEnabled is a ProcessorRejected, check it first
    if isinstance(error, PixNotEnabled):
        return ValidationError(error.detail, **log_context)
    if isinstance(error, ProcessorRejected):
        if 400 <= error.status_code < 500:
            return UpstreamRejectedError(error.status_code, error.detail, **log_context)
        return InternalError(error.detail, **log_context)
    if isinstance(error, InvalidPaymentRequest):
        return ValidationError(str(error), **log_context)
    if isinstance(error, ProcessorUnauthorized):
        return UnauthorizedError(str(error), **log_context)
    if isinstance(error, UpstreamUnavailable):
        return ServiceUnavailableError("mercadopago", str(error), **log_context)
    if isinstance(error, PaymentNotFound):
        return NotFoundError("Payment", str(error), **log_context)
    if isinstance(error, SignatureInvalid):
        if error.missing:
            return ValidationError(str(error), **log_context)
        return UnauthorizedError(str(error), **log_context)
    if isinstance(error, ConfigurationMissing):
        return ValidationError(str(error), **log_context)
    if isinstance(error, FulfillmentUpstreamError):
        return BadGatewayError({"status": error.status_code, "detail": error.body}, **log_context)
    if isinstance(error, FulfillmentUnreachable):
        return InternalError(
            {"error": "Failed to reach print webhook", "detail": str(error)},
            **log_context,
        )
    return InternalError(str(error), **log_context)
