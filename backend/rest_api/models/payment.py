"""
Payment Models: PaymentRecord, PaymentObservation.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, utcnow


class PaymentRecord(TimestampMixin, Base):
    """
    Local, durable view of one payment attempt.

    The id is assigned by the processor (or DEV-<ms> for simulated payments)
    and never changes. Several records may share one order_id when the
    customer retries checkout.

    Once status leaves "pending" it never changes again, and dispatched
    is only ever set on approved records.
    """

    __tablename__ = "payment_record"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    order_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False, index=True)
    status_detail: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    status_source: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    # Cart, customer and delivery data forwarded to the kitchen printer
    order_payload: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    # Last raw processor document seen for this id
    raw: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    dispatched: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    simulated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "orderId": self.order_id,
            "status": self.status,
            "statusDetail": self.status_detail,
            "statusSource": self.status_source,
            "amount": float(self.amount) if self.amount is not None else None,
            "dispatched": self.dispatched,
            "dispatchedAt": self.dispatched_at.isoformat() if self.dispatched_at else None,
            "simulated": self.simulated,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<PaymentRecord(id={self.id}, order={self.order_id}, "
            f"status={self.status}, dispatched={self.dispatched})>"
        )


class PaymentObservation(Base):
    """
    Append-only audit trail of every status observation handed to the reconciler.

    Rows are inserted in the same transaction as the record merge and are
    never updated or deleted.
    """

    __tablename__ = "payment_observation"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    payment_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # Raw value as received, before normalisation
    observed_status: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    # What prompted a processor fetch (webhook, poll, ...), when source is a fetch
    trigger: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    accepted: Mapped[bool] = mapped_column(Boolean, nullable=False)
    resulting_status: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_payment_observation_payment_created", "payment_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentObservation(payment={self.payment_id}, observed={self.observed_status}, "
            f"source={self.source}, accepted={self.accepted})>"
        )
