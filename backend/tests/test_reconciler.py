"""
Tests for the status reconciler: monotonic status, authoritative approvals,
fulfillment trigger and client notifications.
"""

import pytest

from shared.config.constants import PaymentStatus, StatusSource
from rest_api.services.payments.fulfillment import DispatchResult
from rest_api.services.payments.reconciler import judge_observation


ORDER_PAYLOAD = {"customer": {"name": "Ana"}, "items": [{"sku": "PIZZA", "qty": 1}]}


class TestJudgeObservation:
    @pytest.mark.parametrize(
        "current,observed,source,simulated,expected",
        [
            ("pending", "approved", StatusSource.PROCESSOR_FETCH, False, (True, None)),
            ("pending", "approved", StatusSource.PROCESSOR_CREATE, False, (True, None)),
            ("pending", "approved", StatusSource.WEBHOOK, False, (False, "non_authoritative_approval")),
            ("pending", "approved", StatusSource.SIMULATED, False, (False, "non_authoritative_approval")),
            ("pending", "approved", StatusSource.SIMULATED, True, (True, None)),
            ("pending", "rejected", StatusSource.PROCESSOR_FETCH, False, (True, None)),
            ("approved", "rejected", StatusSource.PROCESSOR_FETCH, False, (False, "terminal_state_is_sticky")),
            ("rejected", "pending", StatusSource.PROCESSOR_FETCH, False, (False, "terminal_state_is_sticky")),
            ("approved", "approved", StatusSource.PROCESSOR_FETCH, False, (True, None)),
            ("pending", "expired", StatusSource.PROCESSOR_FETCH, False, (False, "expired_is_client_only")),
            ("pending", "unknown", StatusSource.PROCESSOR_FETCH, False, (False, "unknown_status")),
        ],
    )
    def test_rules(self, current, observed, source, simulated, expected):
        assert judge_observation(current, observed, source, simulated) == expected


class TestReconcile:
    @pytest.mark.asyncio
    async def test_approval_dispatches_and_broadcasts(self, payment_engine, printer, notifier):
        payment_engine.store.merge("P1", order_id="A1", order_payload=ORDER_PAYLOAD)

        result = await payment_engine.reconciler.reconcile("P1", "approved", StatusSource.PROCESSOR_FETCH)

        assert result.status == PaymentStatus.APPROVED
        assert result.changed is True
        assert result.dispatch == DispatchResult.DISPATCHED
        assert printer.received == [ORDER_PAYLOAD]
        assert notifier.events == [{"id": "P1", "status": "approved", "orderId": "A1"}]
        assert payment_engine.store.get("P1").dispatched is True

    @pytest.mark.asyncio
    async def test_terminal_status_is_sticky(self, payment_engine):
        reconciler = payment_engine.reconciler
        payment_engine.store.merge("P1", order_id="A1")
        await reconciler.reconcile("P1", "approved", StatusSource.PROCESSOR_FETCH)

        result = await reconciler.reconcile("P1", "rejected", StatusSource.PROCESSOR_FETCH)

        assert result.accepted is False
        assert result.status == PaymentStatus.APPROVED
        assert payment_engine.store.get("P1").status == PaymentStatus.APPROVED

    @pytest.mark.asyncio
    async def test_late_pending_after_approval_is_discarded(self, payment_engine, notifier):
        reconciler = payment_engine.reconciler
        await reconciler.reconcile("P1", "approved", StatusSource.PROCESSOR_FETCH)
        await reconciler.reconcile("P1", "pending", StatusSource.PROCESSOR_FETCH)

        assert payment_engine.store.get("P1").status == PaymentStatus.APPROVED
        assert [event["status"] for event in notifier.events] == ["approved"]

    @pytest.mark.asyncio
    async def test_non_authoritative_approval_is_rejected(self, payment_engine, printer, notifier):
        payment_engine.store.merge("P1", order_id="A1", order_payload=ORDER_PAYLOAD)

        result = await payment_engine.reconciler.reconcile("P1", "approved", StatusSource.WEBHOOK)

        assert result.accepted is False
        assert result.reason == "non_authoritative_approval"
        assert payment_engine.store.get("P1").status == PaymentStatus.PENDING
        assert printer.received == []
        assert notifier.events == []

    @pytest.mark.asyncio
    async def test_expired_is_never_stored(self, payment_engine):
        payment_engine.store.merge("P1", order_id="A1")

        result = await payment_engine.reconciler.reconcile("P1", "expired", StatusSource.PROCESSOR_FETCH)

        assert result.accepted is False
        assert payment_engine.store.get("P1").status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_aliases_are_normalised(self, payment_engine):
        payment_engine.store.merge("P1", order_id="A1")

        result = await payment_engine.reconciler.reconcile("P1", "canceled", StatusSource.PROCESSOR_FETCH)

        assert result.status == PaymentStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_broadcast_only_on_change(self, payment_engine, notifier):
        reconciler = payment_engine.reconciler
        payment_engine.store.merge("P1", order_id="A1")

        await reconciler.reconcile("P1", "pending", StatusSource.PROCESSOR_FETCH)
        await reconciler.reconcile("P1", "approved", StatusSource.PROCESSOR_FETCH)
        await reconciler.reconcile("P1", "approved", StatusSource.PROCESSOR_FETCH)

        assert notifier.events == [{"id": "P1", "status": "approved", "orderId": "A1"}]

    @pytest.mark.asyncio
    async def test_every_observation_is_audited(self, payment_engine):
        reconciler = payment_engine.reconciler
        payment_engine.store.merge("P1", order_id="A1")

        await reconciler.reconcile("P1", "approved", StatusSource.WEBHOOK)
        await reconciler.reconcile("P1", "approved", StatusSource.PROCESSOR_FETCH, trigger=StatusSource.WEBHOOK)

        rows = payment_engine.store.observations("P1")
        assert [(row.source, row.accepted) for row in rows] == [
            (StatusSource.WEBHOOK, False),
            (StatusSource.PROCESSOR_FETCH, True),
        ]
        assert rows[1].trigger == StatusSource.WEBHOOK

    @pytest.mark.asyncio
    async def test_simulated_approval_is_not_dispatched(self, payment_engine, printer, notifier):
        payment_engine.store.merge("DEV-1", order_id="A1", order_payload=ORDER_PAYLOAD, simulated=True)

        result = await payment_engine.reconciler.reconcile("DEV-1", "approved", StatusSource.SIMULATED)

        assert result.status == PaymentStatus.APPROVED
        assert result.dispatch is None
        assert printer.received == []
        assert notifier.events == [{"id": "DEV-1", "status": "approved", "orderId": "A1", "simulated": True}]


class TestFetchAndReconcile:
    @pytest.mark.asyncio
    async def test_confirmed(self, payment_engine, processor):
        payment_engine.store.merge("P1", order_id="A1", order_payload=ORDER_PAYLOAD)
        processor.set_status("P1", "approved", status_detail="accredited")

        outcome = await payment_engine.reconciler.fetch_and_reconcile("P1", trigger=StatusSource.WEBHOOK)

        assert outcome.confirmed is True
        assert outcome.status == PaymentStatus.APPROVED
        assert outcome.dispatch == DispatchResult.DISPATCHED
        assert payment_engine.store.get("P1").status_detail == "accredited"

    @pytest.mark.asyncio
    async def test_failed_lookup_keeps_stored_status(self, payment_engine, processor, notifier, sleeps):
        payment_engine.store.merge("P1", order_id="A1")
        processor.fetch_status_code = 503

        outcome = await payment_engine.reconciler.fetch_and_reconcile("P1", trigger=StatusSource.WEBHOOK)

        assert outcome.confirmed is False
        assert outcome.status == PaymentStatus.PENDING
        assert outcome.error
        assert sleeps == [1.0, 2.0]
        assert payment_engine.store.get("P1").status == PaymentStatus.PENDING
        assert notifier.events == []
        assert payment_engine.store.observations("P1")[-1].reason == "upstream_unavailable"

    @pytest.mark.asyncio
    async def test_failed_lookup_retries_dispatch_from_stored_approval(self, payment_engine, processor, printer):
        payment_engine.store.merge("P1", order_id="A1", order_payload=ORDER_PAYLOAD, status="approved")
        processor.fetch_status_code = 500

        outcome = await payment_engine.reconciler.fetch_and_reconcile("P1", trigger=StatusSource.WEBHOOK)

        assert outcome.confirmed is False
        assert outcome.stored_status == PaymentStatus.APPROVED
        assert outcome.dispatch == DispatchResult.DISPATCHED
        assert printer.received == [ORDER_PAYLOAD]

    @pytest.mark.asyncio
    async def test_unknown_payment_without_record(self, payment_engine, processor):
        outcome = await payment_engine.reconciler.fetch_and_reconcile("nope", trigger=StatusSource.WEBHOOK)

        assert outcome.confirmed is False
        assert outcome.stored_status is None
        assert outcome.status == PaymentStatus.PENDING
        assert payment_engine.store.get("nope") is None

    @pytest.mark.asyncio
    async def test_refresh_raises_when_unavailable(self, payment_engine, processor):
        from rest_api.services.payments.errors import UpstreamUnavailable

        processor.fetch_status_code = 502
        with pytest.raises(UpstreamUnavailable):
            await payment_engine.reconciler.refresh("P1")


class TestCheckStatus:
    @pytest.mark.asyncio
    async def test_terminal_answered_locally(self, payment_engine, processor):
        payment_engine.store.merge("P1", status="rejected", raw={"status": "rejected"})

        check = await payment_engine.reconciler.check_status("P1")

        assert check.to_response() == {
            "status": "rejected",
            "source": "local",
            "raw": {"status": "rejected"},
            "dispatched": False,
        }
        assert processor.fetch_count() == 0

    @pytest.mark.asyncio
    async def test_pending_asks_processor_once(self, payment_engine, processor):
        payment_engine.store.merge("P1", order_id="A1")
        processor.set_status("P1", "approved")

        check = await payment_engine.reconciler.check_status("P1")

        assert check.status == PaymentStatus.APPROVED
        assert check.source == "upstream"
        assert check.raw["status"] == "approved"
        assert processor.fetch_count("P1") == 1

    @pytest.mark.asyncio
    async def test_upstream_failure_is_not_a_status(self, payment_engine, processor, sleeps):
        payment_engine.store.merge("P1", order_id="A1")
        processor.fetch_status_code = 503

        body = (await payment_engine.reconciler.check_status("P1")).to_response()

        assert body["status"] == PaymentStatus.PENDING
        assert body["source"] == "upstream"
        assert body["error"]
        assert processor.fetch_count("P1") == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_simulated(self, payment_engine):
        from rest_api.services.payments.gateway import PixOrder
        from decimal import Decimal

        charge = await payment_engine.create_simulated(PixOrder(order_id="A1", amount=Decimal("5")))

        check = await payment_engine.reconciler.check_status(charge.payment_id)
        assert check.to_response() == {"status": "pending", "source": "simulated"}

        await payment_engine.approve_simulated(charge.payment_id)
        check = await payment_engine.reconciler.check_status(charge.payment_id)
        assert check.status == PaymentStatus.APPROVED
