"""
Payment Services - PIX payment lifecycle and status reconciliation.

Provides:
- Mercado Pago gateway with circuit breaker and retrying lookups
- Webhook ingestion with signature verification
- Status reconciliation with sticky terminal states
- At-most-once fulfillment dispatch to the kitchen printer
- Simulated payments for development
"""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerStats,
    CircuitBreakerError,
    CircuitState,
)
from .engine import PaymentEngine, PixCharge
from .fulfillment import DispatchResult, FulfillmentDispatcher
from .gateway import CreatedPayment, FetchedPayment, MercadoPagoGateway, PixOrder
from .reconciler import FetchOutcome, ReconcileResult, StatusCheck, StatusReconciler
from .store import PaymentStore
from .webhook import WebhookIngestor, WebhookResponse

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerStats",
    "CircuitBreakerError",
    "CircuitState",
    # Engine
    "PaymentEngine",
    "PixCharge",
    # Fulfillment
    "DispatchResult",
    "FulfillmentDispatcher",
    # Gateway
    "CreatedPayment",
    "FetchedPayment",
    "MercadoPagoGateway",
    "PixOrder",
    # Reconciler
    "FetchOutcome",
    "ReconcileResult",
    "StatusCheck",
    "StatusReconciler",
    # Store
    "PaymentStore",
    # Webhook
    "WebhookIngestor",
    "WebhookResponse",
]
