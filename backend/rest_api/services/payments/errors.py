"""
Domain errors raised by the payment services.

Routers translate these into HTTP responses (see shared.utils.exceptions).
"""

from typing import Any


class PaymentError(Exception):
    """Base class for payment domain errors."""


class InvalidPaymentRequest(PaymentError):
    """Order data is unusable (non-positive amount, missing order id)."""


class PaymentNotFound(PaymentError):
    """No payment with this id is known locally."""


class UpstreamUnavailable(PaymentError):
    """
    The processor could not give an answer: network error, timeout, 5xx,
    non-JSON body or open circuit. Never means any payment status.
    """

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class ProcessorUnauthorized(PaymentError):
    """The processor rejected our access token."""


class ProcessorRejected(PaymentError):
    """The processor refused the request with a 4xx other than 401."""

    def __init__(self, status_code: int, detail: Any):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Processor rejected request ({status_code}): {detail}")


class PixNotEnabled(ProcessorRejected):
    """The collector account is not enabled to receive PIX QR payments."""

    def __init__(self, detail: Any):
        super().__init__(400, detail)


class SignatureInvalid(PaymentError):
    """Webhook signature missing or not matching the shared secret."""

    def __init__(self, message: str, missing: bool = False):
        self.missing = missing
        super().__init__(message)


class ConfigurationMissing(PaymentError):
    """A required integration setting is not configured."""


class FulfillmentUpstreamError(PaymentError):
    """The kitchen printer webhook answered with a non-2xx status."""

    def __init__(self, status_code: int, body: Any):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Print webhook returned {status_code}")


class FulfillmentUnreachable(PaymentError):
    """The kitchen printer webhook could not be reached."""
