"""
slowapi limiter for the payment creation endpoints.

Each call to /api/generate-pix creates a charge at Mercado Pago, so callers
are limited per client address (settings.create_payment_rate_limit).
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from shared.config.logging import rest_api_logger
from shared.config.settings import settings


def client_address(request: Request) -> str:
    # First hop of X-Forwarded-For when running behind the platform proxy
    forwarded = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    return first_hop or get_remote_address(request)


limiter = Limiter(key_func=client_address, enabled=settings.rate_limit_enabled)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    rest_api_logger.warning(
        "Payment creation rate limited",
        path=request.url.path,
        client=client_address(request),
        limit=str(exc.detail),
    )
    return JSONResponse(
        status_code=429,
        content={"error": "Too many payment requests", "limit": str(exc.detail)},
        headers={"Retry-After": "60"},
    )
