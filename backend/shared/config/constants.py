"""
Centralized constants for the payment service.
Avoids magic strings for statuses and observation sources.

Usage:
    from shared.config.constants import PaymentStatus, StatusSource

    if status in PaymentStatus.TERMINAL:
        ...
"""

from typing import Final


# =============================================================================
# Payment Status
# =============================================================================


class PaymentStatus:
    """Payment lifecycle status constants."""

    PENDING: Final[str] = "pending"
    APPROVED: Final[str] = "approved"
    REJECTED: Final[str] = "rejected"
    CANCELLED: Final[str] = "cancelled"
    # Only ever produced locally by a client whose polling deadline elapsed
    EXPIRED: Final[str] = "expired"

    ALL: Final[frozenset[str]] = frozenset({PENDING, APPROVED, REJECTED, CANCELLED, EXPIRED})
    TERMINAL: Final[frozenset[str]] = frozenset({APPROVED, REJECTED, CANCELLED, EXPIRED})
    FAILED: Final[frozenset[str]] = frozenset({REJECTED, CANCELLED})


class StatusSource:
    """Where a status observation came from."""

    PROCESSOR_CREATE: Final[str] = "processor_create"
    PROCESSOR_FETCH: Final[str] = "processor_fetch"
    WEBHOOK: Final[str] = "webhook"
    POLL: Final[str] = "poll"
    SIMULATED: Final[str] = "simulated"

    # Sources whose value was read directly from the processor
    AUTHORITATIVE: Final[frozenset[str]] = frozenset({PROCESSOR_CREATE, PROCESSOR_FETCH})


class CheckSource:
    """Value of the `source` field in status check responses."""

    LOCAL: Final[str] = "local"
    UPSTREAM: Final[str] = "upstream"
    SIMULATED: Final[str] = "simulated"


# =============================================================================
# Identifiers
# =============================================================================


SIMULATED_ID_PREFIX: Final[str] = "DEV-"
TEST_TOKEN_PREFIX: Final[str] = "TEST-"


# =============================================================================
# Limits
# =============================================================================


class Limits:
    """Numeric limits shared by routers and services."""

    MAX_ORDER_ID_LENGTH: Final[int] = 64
    MAX_PAYMENT_ID_LENGTH: Final[int] = 64
    MAX_AMOUNT: Final[int] = 1_000_000
    MAX_RAW_BODY_BYTES: Final[int] = 256 * 1024
