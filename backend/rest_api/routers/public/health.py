"""
Health check endpoints for the REST API.
Reports database reachability, processor and printer configuration, the
processor circuit breaker and the number of connected checkout clients.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from shared.utils.schemas import HealthResponse
from rest_api.routers._common import get_payment_engine
from rest_api.services.payments.engine import PaymentEngine


router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health_check(engine: PaymentEngine = Depends(get_payment_engine)):
    """
    Health check.

    Returns 503 when the database cannot be reached.
    """
    checks = engine.health()
    if checks["status"] != "healthy":
        return JSONResponse(content=checks, status_code=503)
    return checks
