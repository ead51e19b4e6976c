"""
Status reconciler.

Single entry point for every payment status observation, whatever its source
(processor create response, processor lookup, simulated approval). Decides
whether the observation may change the stored record, persists it, triggers
fulfillment for approved payments and pushes changes to connected clients.

Rules:
- terminal statuses (approved, rejected, cancelled, expired) never change
- approved is only accepted when read from the processor (create or lookup),
  or from the simulated source for simulated records
- expired is a client-side outcome and is never stored
- a failed processor lookup is "no new information", never a status

reconcile() performs its read and write without awaiting in between, so the
read-modify-write of one id is atomic on the event loop.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from shared.config.constants import CheckSource, PaymentStatus, StatusSource
from shared.config.logging import get_logger
from rest_api.services.payments.errors import UpstreamUnavailable
from rest_api.services.payments.fulfillment import DispatchResult, FulfillmentDispatcher
from rest_api.services.payments.gateway import FetchedPayment, MercadoPagoGateway
from rest_api.services.payments.simulated import SimulatedPaymentTable, is_simulated_id
from rest_api.services.payments.status import UNKNOWN, is_terminal, normalize_status
from rest_api.services.payments.store import PaymentStore

logger = get_logger(__name__)


class Notifier(Protocol):
    async def broadcast(self, event: dict[str, Any]) -> int: ...


@dataclass
class ReconcileResult:
    payment_id: str
    status: str
    changed: bool
    accepted: bool
    dispatch: DispatchResult | None = None
    reason: str | None = None


@dataclass
class FetchOutcome:
    """Result of fetch_and_reconcile. confirmed=False means the processor gave no answer."""
    payment_id: str
    status: str
    confirmed: bool
    stored_status: str | None = None
    result: ReconcileResult | None = None
    dispatch: DispatchResult | None = None
    raw: dict[str, Any] | None = None
    error: str | None = None


@dataclass
class StatusCheck:
    status: str
    source: str
    raw: dict[str, Any] | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {"status": self.status, "source": self.source}
        if self.raw is not None:
            body["raw"] = self.raw
        if self.error:
            body["error"] = self.error
        body.update(self.extra)
        return body


def judge_observation(
    current: str,
    observed: str,
    source: str,
    simulated: bool,
) -> tuple[bool, str | None]:
    """
    Decide whether an observation may be written.

    Returns (accepted, reason). reason explains a rejection.
    """
    if observed == UNKNOWN:
        return False, "unknown_status"
    if observed == PaymentStatus.EXPIRED:
        return False, "expired_is_client_only"
    if observed == PaymentStatus.APPROVED:
        authoritative = source in StatusSource.AUTHORITATIVE or (
            source == StatusSource.SIMULATED and simulated
        )
        if not authoritative:
            return False, "non_authoritative_approval"
    if is_terminal(current) and observed != current:
        return False, "terminal_state_is_sticky"
    return True, None


class StatusReconciler:
    def __init__(
        self,
        store: PaymentStore,
        gateway: MercadoPagoGateway,
        dispatcher: FulfillmentDispatcher,
        notifier: Notifier,
        simulated: SimulatedPaymentTable,
    ):
        self._store = store
        self._gateway = gateway
        self._dispatcher = dispatcher
        self._notifier = notifier
        self._simulated = simulated

    async def reconcile(
        self,
        payment_id: str,
        observed_status: str | None,
        source: str,
        raw: dict[str, Any] | None = None,
        status_detail: str | None = None,
        trigger: str | None = None,
        **fields: Any,
    ) -> ReconcileResult:
        """
        Apply one status observation to the stored record.

        fields are extra columns merged only when the observation is accepted.
        """
        observed = normalize_status(observed_status)

        # Read and write below must not be separated by an await
        record = self._store.get(payment_id)
        current = record.status if record else PaymentStatus.PENDING
        simulated = record.simulated if record else False

        accepted, reason = judge_observation(current, observed, source, simulated)

        observation = {
            "observed_status": observed_status,
            "source": source,
            "trigger": trigger,
            "accepted": accepted,
            "resulting_status": observed if accepted else current,
            "reason": reason,
        }
        if accepted:
            update = dict(fields)
            update["status"] = observed
            update["status_source"] = source
            if raw is not None:
                update["raw"] = raw
            if status_detail is not None:
                update["status_detail"] = status_detail
            record = self._store.merge_with_observation(payment_id, observation, **update)
        else:
            logger.warning(
                "Status observation discarded",
                payment_id=payment_id,
                observed=observed_status,
                source=source,
                current=current,
                reason=reason,
            )
            record = self._store.merge_with_observation(payment_id, observation)

        resulting = record.status if record else PaymentStatus.PENDING
        changed = accepted and observed != current
        if changed:
            logger.info(
                "Payment status changed",
                payment_id=payment_id,
                old_status=current,
                new_status=resulting,
                source=source,
            )

        dispatch = None
        if (
            record is not None
            and resulting == PaymentStatus.APPROVED
            and not record.dispatched
            and not record.simulated
        ):
            dispatch = await self._dispatcher.dispatch(payment_id)

        if changed and record is not None:
            await self._broadcast(record.id, resulting, record.order_id, record.simulated)

        return ReconcileResult(
            payment_id=payment_id,
            status=resulting,
            changed=changed,
            accepted=accepted,
            dispatch=dispatch,
            reason=reason,
        )

    async def _broadcast(self, payment_id: str, status: str, order_id: str | None, simulated: bool) -> None:
        event = {"id": payment_id, "status": status, "orderId": order_id}
        if simulated:
            event["simulated"] = True
        try:
            await self._notifier.broadcast(event)
        except Exception as e:
            logger.warning("Payment update broadcast failed", payment_id=payment_id, error=str(e))

    async def apply_fetched(self, fetched: FetchedPayment, trigger: str | None = None) -> ReconcileResult:
        return await self.reconcile(
            fetched.id,
            fetched.status,
            StatusSource.PROCESSOR_FETCH,
            raw=fetched.raw,
            status_detail=fetched.status_detail,
            trigger=trigger,
        )

    async def fetch_and_reconcile(
        self,
        payment_id: str,
        trigger: str,
        retry: bool = True,
    ) -> FetchOutcome:
        """
        Look the payment up at the processor and reconcile the answer.

        Never raises for processor failures: the stored status (or pending)
        is returned with confirmed=False. When the stored record is already
        approved the dispatch retry still runs from the stored approval.
        """
        try:
            if retry:
                fetched = await self._gateway.fetch_payment_with_retry(payment_id)
            else:
                fetched = await self._gateway.fetch_payment(payment_id)
        except UpstreamUnavailable as e:
            return await self._no_new_information(payment_id, trigger, str(e))
        except Exception as e:
            logger.error("Unexpected error fetching payment", payment_id=payment_id, exc_info=True)
            return await self._no_new_information(payment_id, trigger, f"unexpected error: {e}")

        result = await self.apply_fetched(fetched, trigger=trigger)
        return FetchOutcome(
            payment_id=payment_id,
            status=result.status,
            confirmed=True,
            stored_status=result.status,
            result=result,
            dispatch=result.dispatch,
            raw=fetched.raw,
        )

    async def _no_new_information(self, payment_id: str, trigger: str, error: str) -> FetchOutcome:
        logger.warning(
            "Processor lookup failed, keeping stored status",
            payment_id=payment_id,
            trigger=trigger,
            error=error,
        )
        record = self._store.merge_with_observation(
            payment_id,
            {
                "observed_status": None,
                "source": StatusSource.PROCESSOR_FETCH,
                "trigger": trigger,
                "accepted": False,
                "resulting_status": self._stored_status(payment_id),
                "reason": "upstream_unavailable",
            },
        )
        stored = record.status if record else None

        dispatch = None
        if (
            record is not None
            and record.status == PaymentStatus.APPROVED
            and not record.dispatched
            and not record.simulated
        ):
            logger.info("Using stored approval to retry fulfillment", payment_id=payment_id)
            dispatch = await self._dispatcher.dispatch(payment_id)

        return FetchOutcome(
            payment_id=payment_id,
            status=stored or PaymentStatus.PENDING,
            confirmed=False,
            stored_status=stored,
            dispatch=dispatch,
            error=error,
        )

    def _stored_status(self, payment_id: str) -> str:
        record = self._store.get(payment_id)
        return record.status if record else PaymentStatus.PENDING

    async def refresh(self, payment_id: str, trigger: str = StatusSource.POLL) -> ReconcileResult:
        """
        Forced processor lookup. Unlike fetch_and_reconcile, a failed lookup
        raises UpstreamUnavailable.
        """
        fetched = await self._gateway.fetch_payment_with_retry(payment_id)
        return await self.apply_fetched(fetched, trigger=trigger)

    async def check_status(self, payment_id: str) -> StatusCheck:
        """
        Status for client polling. Never reports a status the processor did
        not confirm.
        """
        if is_simulated_id(payment_id):
            entry = self._simulated.get(payment_id)
            if entry is not None:
                status = entry.status
            else:
                status = self._stored_status(payment_id)
            return StatusCheck(status=status, source=CheckSource.SIMULATED)

        record = self._store.get(payment_id)
        if record is not None and is_terminal(record.status):
            return StatusCheck(
                status=record.status,
                source=CheckSource.LOCAL,
                raw=record.raw,
                extra={"dispatched": record.dispatched},
            )

        outcome = await self.fetch_and_reconcile(payment_id, trigger=StatusSource.POLL, retry=False)
        if outcome.confirmed:
            return StatusCheck(status=outcome.status, source=CheckSource.UPSTREAM, raw=outcome.raw)
        return StatusCheck(
            status=outcome.status,
            source=CheckSource.UPSTREAM,
            error=outcome.error or "Processor unavailable",
        )
