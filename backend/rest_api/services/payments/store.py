"""
Durable payment record store.

Records are keyed by id and updated by partial merge: fields not named in an
update are left untouched and the last writer wins per field. All methods are
synchronous and complete in one transaction, so a caller that does not await
between a read and a write sees an atomic read-modify-write on the event loop.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from shared.config.logging import get_logger
from shared.infrastructure.db import safe_commit
from rest_api.models import PaymentObservation, PaymentRecord, utcnow

logger = get_logger(__name__)

# Columns a merge is allowed to write. id is immutable.
MERGEABLE_FIELDS = frozenset({
    "order_id",
    "status",
    "status_detail",
    "status_source",
    "amount",
    "order_payload",
    "raw",
    "dispatched",
    "dispatched_at",
    "simulated",
})


class PaymentStore:
    """
    Get / merge payment records by id.

    Returned records are detached snapshots; mutate them only through merge().
    """

    def __init__(self, session_factory: sessionmaker | Callable[[], Session]):
        self._session_factory = session_factory

    def get(self, payment_id: str) -> PaymentRecord | None:
        with self._session_factory() as db:
            record = db.get(PaymentRecord, payment_id)
            if record is not None:
                db.expunge(record)
            return record

    def merge(self, payment_id: str, **fields: Any) -> PaymentRecord:
        """
        Create or partially update the record with this id.

        Raises:
            ValueError: if a field is not a mergeable column
        """
        with self._session_factory() as db:
            record = self._merge_in(db, payment_id, fields)
            safe_commit(db)
            db.refresh(record)
            db.expunge(record)
            return record

    def merge_with_observation(
        self,
        payment_id: str,
        observation: dict[str, Any],
        **fields: Any,
    ) -> PaymentRecord | None:
        """
        Append an observation row and, when fields are given, merge them in the
        same transaction. Returns the stored record (None if it does not exist
        and nothing was written to it).
        """
        with self._session_factory() as db:
            db.add(PaymentObservation(payment_id=payment_id, **observation))
            if fields:
                record = self._merge_in(db, payment_id, fields)
            else:
                record = db.get(PaymentRecord, payment_id)
            safe_commit(db)
            if record is None:
                return None
            db.refresh(record)
            db.expunge(record)
            return record

    def mark_dispatched(self, payment_id: str, when: datetime | None = None) -> PaymentRecord:
        return self.merge(payment_id, dispatched=True, dispatched_at=when or utcnow())

    def list_by_order(self, order_id: str) -> list[PaymentRecord]:
        with self._session_factory() as db:
            records = list(
                db.scalars(
                    select(PaymentRecord)
                    .where(PaymentRecord.order_id == order_id)
                    .order_by(PaymentRecord.created_at)
                )
            )
            for record in records:
                db.expunge(record)
            return records

    def observations(self, payment_id: str) -> list[PaymentObservation]:
        with self._session_factory() as db:
            rows = list(
                db.scalars(
                    select(PaymentObservation)
                    .where(PaymentObservation.payment_id == payment_id)
                    .order_by(PaymentObservation.id)
                )
            )
            for row in rows:
                db.expunge(row)
            return rows

    def ping(self) -> bool:
        """Cheap connectivity check for the health endpoint."""
        with self._session_factory() as db:
            db.execute(select(1))
        return True

    @staticmethod
    def _merge_in(db: Session, payment_id: str, fields: dict[str, Any]) -> PaymentRecord:
        unknown = set(fields) - MERGEABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot merge unknown fields: {sorted(unknown)}")

        record = db.get(PaymentRecord, payment_id)
        if record is None:
            record = PaymentRecord(id=payment_id, status="pending", dispatched=False, simulated=False)
            db.add(record)
            logger.debug("Payment record created", payment_id=payment_id)

        for name, value in fields.items():
            setattr(record, name, value)
        return record
