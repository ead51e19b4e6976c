"""
HTTP exceptions raised by the routers.

Each exception logs itself when created, at a level chosen by its class, so
a router only has to raise. Payment domain errors are converted by
rest_api.routers._common.errors.payment_error_to_http.

Usage:
    from shared.utils.exceptions import ForbiddenError, ValidationError

    raise ValidationError("amount must be greater than zero", order_id="A1")
    raise ForbiddenError("use development payment endpoints in production")
"""

from typing import Any

from fastapi import HTTPException, status

from shared.config.logging import get_logger

logger = get_logger(__name__)


class AppException(HTTPException):
    """HTTPException that writes one log line with its context."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    log_level: str = "warning"

    def __init__(
        self,
        detail: Any,
        status_code: int | None = None,
        headers: dict[str, str] | None = None,
        **log_context: Any,
    ):
        code = status_code or type(self).status_code
        getattr(logger, self.log_level)(str(detail), status_code=code, **log_context)
        super().__init__(status_code=code, detail=detail, headers=headers)


class ValidationError(AppException):
    status_code = status.HTTP_400_BAD_REQUEST


class UnauthorizedError(AppException):
    """Rejected webhook signature, or credentials the processor refused."""

    status_code = status.HTTP_401_UNAUTHORIZED
    log_level = "error"


class ForbiddenError(AppException):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, action: str | None = None, **log_context: Any):
        detail = f"Not allowed to {action}" if action else "Access denied"
        super().__init__(detail, action=action, **log_context)


class NotFoundError(AppException):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id: int | str | None = None, **log_context: Any):
        detail = f"{entity} {entity_id} not found" if entity_id is not None else f"{entity} not found"
        super().__init__(detail, entity=entity, entity_id=entity_id, **log_context)


class UpstreamRejectedError(AppException):
    """The processor refused the request; its 4xx status is passed through."""

    def __init__(self, status_code: int, detail: Any, **log_context: Any):
        super().__init__(detail, status_code=status_code, **log_context)


class InternalError(AppException):
    log_level = "error"

    def __init__(self, detail: Any = "Internal server error", **log_context: Any):
        super().__init__(detail, **log_context)


class BadGatewayError(AppException):
    """The print webhook answered with an error."""

    status_code = status.HTTP_502_BAD_GATEWAY
    log_level = "error"


class ServiceUnavailableError(AppException):
    """Mercado Pago (or the payment engine itself) cannot be reached."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    log_level = "error"

    def __init__(
        self,
        service: str,
        detail: str | None = None,
        retry_after: int | None = None,
        **log_context: Any,
    ):
        super().__init__(
            detail or f"Service {service} temporarily unavailable",
            headers={"Retry-After": str(retry_after)} if retry_after else None,
            service=service,
            **log_context,
        )
