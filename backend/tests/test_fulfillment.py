"""
Tests for the fulfillment dispatcher and the print proxy.
"""

import asyncio

import pytest

from shared.config.constants import StatusSource
from rest_api.services.payments.errors import (
    ConfigurationMissing,
    FulfillmentUnreachable,
    FulfillmentUpstreamError,
)
from rest_api.services.payments.fulfillment import DispatchResult


ORDER_PAYLOAD = {"orderId": "A1", "items": [{"sku": "ACAI", "qty": 2}]}


def _approved(engine, payment_id="P1", **fields):
    values = dict(order_id="A1", order_payload=ORDER_PAYLOAD, status="approved")
    values.update(fields)
    engine.store.merge(payment_id, **values)


class TestDispatch:
    @pytest.mark.asyncio
    async def test_posts_once(self, payment_engine, printer):
        _approved(payment_engine)
        dispatcher = payment_engine.dispatcher

        assert await dispatcher.dispatch("P1") == DispatchResult.DISPATCHED
        assert await dispatcher.dispatch("P1") == DispatchResult.ALREADY_DISPATCHED

        assert printer.received == [ORDER_PAYLOAD]
        assert dispatcher.posts_sent == 1

    @pytest.mark.asyncio
    async def test_non_2xx_leaves_record_undispatched(self, payment_engine, printer):
        _approved(payment_engine)
        printer.status_code = 500

        assert await payment_engine.dispatcher.dispatch("P1") == DispatchResult.FAILED
        assert payment_engine.store.get("P1").dispatched is False

        printer.status_code = 200
        assert await payment_engine.dispatcher.dispatch("P1") == DispatchResult.DISPATCHED
        assert payment_engine.store.get("P1").dispatched is True

    @pytest.mark.asyncio
    async def test_unreachable(self, payment_engine, printer):
        _approved(payment_engine)
        printer.unreachable = True

        assert await payment_engine.dispatcher.dispatch("P1") == DispatchResult.FAILED
        assert payment_engine.store.get("P1").dispatched is False

    @pytest.mark.asyncio
    async def test_requires_approval(self, payment_engine, printer):
        _approved(payment_engine, status="pending")

        assert await payment_engine.dispatcher.dispatch("P1") == DispatchResult.NOT_APPROVED
        assert await payment_engine.dispatcher.dispatch("missing") == DispatchResult.NOT_APPROVED
        assert printer.received == []

    @pytest.mark.asyncio
    async def test_simulated_never_dispatched(self, payment_engine, printer):
        _approved(payment_engine, "DEV-1", simulated=True)

        assert await payment_engine.dispatcher.dispatch("DEV-1") == DispatchResult.SIMULATED
        assert printer.received == []

    @pytest.mark.asyncio
    async def test_no_payload(self, payment_engine, printer):
        _approved(payment_engine, order_payload=None)

        assert await payment_engine.dispatcher.dispatch("P1") == DispatchResult.NO_PAYLOAD
        assert printer.received == []

    @pytest.mark.asyncio
    async def test_not_configured(self, build_payment_engine, printer):
        engine = build_payment_engine(print_webhook_url="")
        _approved(engine)

        assert await engine.dispatcher.dispatch("P1") == DispatchResult.NOT_CONFIGURED
        assert printer.received == []

    @pytest.mark.asyncio
    async def test_concurrent_approvals_post_once(self, payment_engine, printer):
        payment_engine.store.merge("P1", order_id="A1", order_payload=ORDER_PAYLOAD)
        printer.delay = 0.05

        results = await asyncio.gather(*[
            payment_engine.reconciler.reconcile("P1", "approved", StatusSource.PROCESSOR_FETCH)
            for _ in range(5)
        ])

        assert len(printer.received) == 1
        dispatches = [r.dispatch for r in results if r.dispatch is not None]
        assert dispatches.count(DispatchResult.DISPATCHED) == 1
        assert payment_engine.dispatcher._locks == {}

    @pytest.mark.asyncio
    async def test_concurrent_dispatch_calls_post_once(self, payment_engine, printer):
        _approved(payment_engine)
        printer.delay = 0.05

        results = await asyncio.gather(*[payment_engine.dispatcher.dispatch("P1") for _ in range(10)])

        assert results.count(DispatchResult.DISPATCHED) == 1
        assert results.count(DispatchResult.ALREADY_DISPATCHED) == 9
        assert len(printer.received) == 1


class TestForward:
    @pytest.mark.asyncio
    async def test_returns_json(self, payment_engine, printer):
        answer = await payment_engine.dispatcher.forward({"orderId": "A9"})

        assert answer == {"printed": True}
        assert printer.received == [{"orderId": "A9"}]

    @pytest.mark.asyncio
    async def test_upstream_error(self, payment_engine, printer):
        printer.status_code = 503

        with pytest.raises(FulfillmentUpstreamError) as exc_info:
            await payment_engine.dispatcher.forward({"orderId": "A9"})
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_unreachable(self, payment_engine, printer):
        printer.unreachable = True

        with pytest.raises(FulfillmentUnreachable):
            await payment_engine.dispatcher.forward({"orderId": "A9"})

    @pytest.mark.asyncio
    async def test_not_configured(self, build_payment_engine):
        engine = build_payment_engine(print_webhook_url="")

        with pytest.raises(ConfigurationMissing):
            await engine.dispatcher.forward({"orderId": "A9"})
