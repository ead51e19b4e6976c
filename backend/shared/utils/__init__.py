"""
Utilities module: HTTP exceptions.
"""

from shared.utils.exceptions import (
    AppException,
    NotFoundError,
    UnauthorizedError,
    ForbiddenError,
    ValidationError,
    UpstreamRejectedError,
    InternalError,
    BadGatewayError,
    ServiceUnavailableError,
)

__all__ = [
    "AppException",
    "NotFoundError",
    "UnauthorizedError",
    "ForbiddenError",
    "ValidationError",
    "UpstreamRejectedError",
    "InternalError",
    "BadGatewayError",
    "ServiceUnavailableError",
]
