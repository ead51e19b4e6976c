"""
Processor webhook ingestion.

Verifies the notification signature, filters test and non-payment
notifications, and hands the payment id to the reconciler. The response is
always quick: reconciliation runs as a task with a processing deadline, and
if it overruns the webhook is acknowledged with 202 while the task finishes
in the background.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Mapping

from shared.config.constants import PaymentStatus, StatusSource
from shared.config.logging import audit_webhook_signature, get_logger
from shared.config.settings import Settings
from rest_api.services.payments.errors import SignatureInvalid
from rest_api.services.payments.reconciler import FetchOutcome, StatusReconciler
from rest_api.services.payments.signature import find_signature, verify_signature

logger = get_logger(__name__)


@dataclass
class WebhookResponse:
    status_code: int
    result: str
    payment_id: str | None = None

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"result": self.result}
        if self.payment_id:
            body["paymentId"] = self.payment_id
        return body


class InvalidWebhookBody(ValueError):
    """Body is not a JSON object."""


def extract_payment_id(payload: dict[str, Any]) -> str | None:
    """data.id first, then top-level id."""
    data = payload.get("data")
    if isinstance(data, dict) and data.get("id"):
        return str(data["id"])
    if payload.get("id"):
        return str(payload["id"])
    return None


def notification_type(payload: dict[str, Any]) -> str | None:
    value = payload.get("type") or payload.get("topic")
    return str(value).lower() if value else None


def live_mode_flag(payload: dict[str, Any]) -> bool | None:
    """live_mode as a bool; "true"/"false" strings and 1/0 are accepted, anything else is None."""
    value = payload.get("live_mode")
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, str)):
        return {"true": True, "1": True, "false": False, "0": False}.get(str(value).strip().lower())
    return None


class WebhookIngestor:
    def __init__(self, reconciler: StatusReconciler, settings: Settings):
        self._reconciler = reconciler
        self._settings = settings
        self._background: set[asyncio.Task] = set()

    @staticmethod
    def parse_body(body: bytes) -> dict[str, Any]:
        try:
            payload = json.loads(body or b"")
        except ValueError as e:
            raise InvalidWebhookBody("Body is not valid JSON") from e
        if not isinstance(payload, dict):
            raise InvalidWebhookBody("Body must be a JSON object")
        return payload

    def check_signature(self, headers: Mapping[str, str], body: bytes, payload: dict[str, Any]) -> bool:
        """
        Apply the signature policy.

        Returns True when the signature was verified or tolerated.

        Raises:
            SignatureInvalid: missing signature (missing=True) or a rejected mismatch
        """
        secret = self._settings.webhook_secret
        payment_id = extract_payment_id(payload)
        live_mode = live_mode_flag(payload)

        if not secret:
            audit_webhook_signature("SKIPPED", payment_id=payment_id, live_mode=live_mode, reason="no secret configured")
            return True

        signature = find_signature(headers)
        if signature is None:
            audit_webhook_signature("MISSING", payment_id=payment_id, live_mode=live_mode)
            raise SignatureInvalid("Missing signature", missing=True)

        if verify_signature(secret, body, signature.digest):
            audit_webhook_signature("VERIFIED", payment_id=payment_id, live_mode=live_mode, header=signature.name)
            return True

        # A live notification with a bad signature is never accepted
        if live_mode is True or self._settings.effective_signature_mode == "strict":
            audit_webhook_signature(
                "REJECTED",
                payment_id=payment_id,
                live_mode=live_mode,
                header=signature.name,
                reason="signature mismatch",
            )
            raise SignatureInvalid("Invalid signature")

        audit_webhook_signature(
            "TOLERATED",
            payment_id=payment_id,
            live_mode=live_mode,
            header=signature.name,
            reason="signature mismatch on non-live payload (permissive mode)",
            signature_tolerated=True,
        )
        return True

    async def ingest(self, headers: Mapping[str, str], body: bytes) -> WebhookResponse:
        """
        Handle one webhook delivery.

        Raises:
            InvalidWebhookBody: body is not a JSON object (400)
            SignatureInvalid: see check_signature (400 when missing, else 401)
        """
        payload = self.parse_body(body)
        self.check_signature(headers, body, payload)

        kind = notification_type(payload)
        if kind and kind != "payment":
            logger.info("Ignoring non-payment notification", type=kind)
            return WebhookResponse(200, "ignored")

        payment_id = extract_payment_id(payload)
        if not payment_id:
            logger.warning("Webhook has no payment id")
            return WebhookResponse(200, "no-op")

        if live_mode_flag(payload) is False:
            logger.info("Test-mode webhook ignored", payment_id=payment_id)
            return WebhookResponse(200, "test-webhook-ignored", payment_id)

        logger.info("Webhook received, reconciling", payment_id=payment_id)
        task = asyncio.create_task(
            self._reconciler.fetch_and_reconcile(payment_id, trigger=StatusSource.WEBHOOK)
        )
        try:
            outcome = await asyncio.wait_for(
                asyncio.shield(task),
                timeout=self._settings.webhook_processing_deadline_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Webhook reconciliation exceeded deadline, continuing in background",
                payment_id=payment_id,
                deadline=self._settings.webhook_processing_deadline_seconds,
            )
            self._background.add(task)
            task.add_done_callback(self._on_background_done)
            return WebhookResponse(202, "accepted-processing", payment_id)

        return self._respond(outcome)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background webhook reconciliation failed", exc_info=exc)

    @staticmethod
    def _respond(outcome: FetchOutcome) -> WebhookResponse:
        payment_id = outcome.payment_id
        if outcome.confirmed:
            return WebhookResponse(200, "ok", payment_id)

        stored = outcome.stored_status
        if stored == PaymentStatus.APPROVED:
            return WebhookResponse(200, "ok-stored-approved", payment_id)
        if stored in PaymentStatus.TERMINAL:
            return WebhookResponse(200, "ok-stored-terminal", payment_id)
        return WebhookResponse(202, "accepted-awaiting-confirmation", payment_id)

    async def drain(self) -> None:
        """Wait for background reconciliations (used at shutdown)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
