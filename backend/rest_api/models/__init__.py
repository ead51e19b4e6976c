"""
SQLAlchemy ORM Models Package.

- base: Base class and TimestampMixin
- payment: PaymentRecord, PaymentObservation
"""

# Base classes
from .base import Base, TimestampMixin, utcnow

# Payments
from .payment import PaymentRecord, PaymentObservation

__all__ = [
    "Base",
    "TimestampMixin",
    "utcnow",
    "PaymentRecord",
    "PaymentObservation",
]
