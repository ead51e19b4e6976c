"""
FastAPI dependencies.

The PaymentEngine is created in the application lifespan and stored on
app.state; routes reach it through these dependencies so tests can install
their own engine.
"""

from fastapi import Request, WebSocket

from rest_api.services.payments.engine import PaymentEngine
from shared.utils.exceptions import ServiceUnavailableError


def get_payment_engine(request: Request) -> PaymentEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise ServiceUnavailableError("payment-engine", "Payment engine not initialized")
    return engine


def get_ws_payment_engine(websocket: WebSocket) -> PaymentEngine | None:
    return getattr(websocket.app.state, "engine", None)
