"""
Simulated (development) PIX payments.

Used with TEST- access tokens, the dev endpoint and the local fallback when
the collector account cannot generate PIX QR codes. Simulated payments are
never financially authoritative and never reach the kitchen printer.
"""

from __future__ import annotations

import asyncio
import base64
import io
import re
import time
from dataclasses import dataclass, field
from decimal import Decimal

import qrcode

from shared.config.constants import SIMULATED_ID_PREFIX, PaymentStatus


@dataclass
class SimulatedPayment:
    id: str
    order_id: str
    amount: Decimal
    status: str = PaymentStatus.PENDING
    created_at: float = field(default_factory=time.time)


def is_simulated_id(payment_id: str | None) -> bool:
    return bool(payment_id) and str(payment_id).startswith(SIMULATED_ID_PREFIX)


class SimulatedPaymentTable:
    """
    Process-scoped table of simulated payments.

    Created in the application lifespan and cleared only by restart. All
    mutations go through an asyncio.Lock; reads of a single entry are atomic
    on the event loop.
    """

    def __init__(self):
        self._payments: dict[str, SimulatedPayment] = {}
        self._lock = asyncio.Lock()
        self._last_ms = 0

    def _next_id(self) -> str:
        # Two payments created in the same millisecond still get distinct ids
        now_ms = int(time.time() * 1000)
        if now_ms <= self._last_ms:
            now_ms = self._last_ms + 1
        self._last_ms = now_ms
        return f"{SIMULATED_ID_PREFIX}{now_ms}"

    async def create(self, order_id: str, amount: Decimal) -> SimulatedPayment:
        async with self._lock:
            payment = SimulatedPayment(id=self._next_id(), order_id=order_id, amount=amount)
            self._payments[payment.id] = payment
            return payment

    async def set_status(self, payment_id: str, status: str) -> SimulatedPayment | None:
        async with self._lock:
            payment = self._payments.get(payment_id)
            if payment is None:
                return None
            if payment.status != PaymentStatus.PENDING:
                # Terminal simulated states are sticky too
                return payment
            payment.status = status
            return payment

    def get(self, payment_id: str) -> SimulatedPayment | None:
        return self._payments.get(payment_id)

    def __len__(self) -> int:
        return len(self._payments)


def build_pix_payload(order_id: str, amount: Decimal, now_ms: int | None = None) -> str:
    """
    Deterministic pseudo BR Code for local testing. Not a valid PIX charge.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    order_digits = re.sub(r"\D", "", str(order_id))[-14:]
    cents = str(int((Decimal(amount) * 100).to_integral_value())).rjust(3, "0")
    return (
        "00020126360014BR.GOV.BCB.PIX01"
        f"{order_digits}"
        f"52040000530398654{cents}"
        "5802BR5925Empresa6009Cidade6108"
        f"{str(now_ms)[-8:]}"
        "62070503***6304ABCD"
    )


def render_qr_base64(payload: str) -> str:
    """Render payload as a PNG QR code, base64 encoded (no data: prefix)."""
    qr = qrcode.QRCode(box_size=10, border=4)
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffered = io.BytesIO()
    img.save(buffered, "PNG")
    return base64.b64encode(buffered.getvalue()).decode("ascii")
