"""
Tests for the payment record store.
"""

from decimal import Decimal

import pytest


class TestPaymentStore:
    def test_get_unknown_returns_none(self, store):
        assert store.get("nope") is None

    def test_merge_creates_pending_record(self, store):
        record = store.merge("P1", order_id="A1", amount=Decimal("10.00"))

        assert record.id == "P1"
        assert record.status == "pending"
        assert record.dispatched is False
        assert record.simulated is False
        assert record.amount == Decimal("10.00")

    def test_merge_is_partial(self, store):
        store.merge("P1", order_id="A1", order_payload={"items": [1, 2]})
        store.merge("P1", status="approved", status_source="processor_fetch")

        record = store.get("P1")
        assert record.order_id == "A1"
        assert record.order_payload == {"items": [1, 2]}
        assert record.status == "approved"
        assert record.status_source == "processor_fetch"

    def test_merge_rejects_unknown_fields(self, store):
        with pytest.raises(ValueError):
            store.merge("P1", id="P2")
        assert store.get("P1") is None

    def test_mark_dispatched(self, store):
        store.merge("P1", status="approved")
        record = store.mark_dispatched("P1")

        assert record.dispatched is True
        assert record.dispatched_at is not None

    def test_list_by_order(self, store):
        store.merge("P1", order_id="A1")
        store.merge("P2", order_id="A1")
        store.merge("P3", order_id="B2")

        ids = [record.id for record in store.list_by_order("A1")]
        assert sorted(ids) == ["P1", "P2"]

    def test_observations_are_appended_in_order(self, store):
        store.merge_with_observation(
            "P1",
            {"observed_status": "pending", "source": "processor_create", "accepted": True, "resulting_status": "pending"},
            status="pending",
        )
        store.merge_with_observation(
            "P1",
            {"observed_status": "approved", "source": "webhook", "accepted": False, "resulting_status": "pending", "reason": "not_authoritative"},
        )

        rows = store.observations("P1")
        assert [row.observed_status for row in rows] == ["pending", "approved"]
        assert rows[1].accepted is False
        assert rows[1].reason == "not_authoritative"

    def test_observation_without_record(self, store):
        result = store.merge_with_observation(
            "ghost",
            {"observed_status": "approved", "source": "webhook", "accepted": False, "resulting_status": "pending"},
        )

        assert result is None
        assert store.get("ghost") is None
        assert len(store.observations("ghost")) == 1

    def test_ping(self, store):
        assert store.ping() is True

    def test_to_dict(self, store):
        record = store.merge("P1", order_id="A1", amount=Decimal("12.30"), simulated=True)
        data = record.to_dict()

        assert data["id"] == "P1"
        assert data["orderId"] == "A1"
        assert data["amount"] == 12.3
        assert data["simulated"] is True
        assert data["dispatchedAt"] is None
