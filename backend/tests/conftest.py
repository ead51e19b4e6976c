"""
Pytest configuration and fixtures for backend tests.

Environment variables are set before any application module is imported,
because settings are read once at import time.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("MERCADOPAGO_VALIDATE_TOKEN_ON_STARTUP", "false")

import asyncio
import hashlib
import hmac
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from shared.config.settings import Settings
from shared.infrastructure.db import build_engine, build_session_factory
from rest_api.models import Base
from rest_api.services.payments.engine import PaymentEngine
from rest_api.services.payments.store import PaymentStore


PROCESSOR_URL = "https://api.mercadopago.test"
PRINTER_URL = "http://printer.test/print"
WEBHOOK_SECRET = "whsec-test"


# =============================================================================
# Test doubles
# =============================================================================


class FakeProcessor:
    """
    In-memory Mercado Pago served through httpx.MockTransport.

    payments maps id -> payment document returned by GET /v1/payments/{id}.
    """

    def __init__(self):
        self.payments: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.next_ids: list[str] = []
        self.create_response: httpx.Response | None = None
        self.fetch_status_code: int | None = None
        self.fetch_delay = 0.0
        self.users_me_status = 200
        self._counter = 1000

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def set_status(self, payment_id: str, status: str, **extra) -> None:
        self.payments[payment_id] = {"id": payment_id, "status": status, "live_mode": True, **extra}

    def fetch_count(self, payment_id: str | None = None) -> int:
        return sum(
            1
            for r in self.requests
            if r.method == "GET"
            and r.url.path.startswith("/v1/payments/")
            and (payment_id is None or r.url.path.endswith(f"/{payment_id}"))
        )

    @property
    def creates(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST" and r.url.path == "/v1/payments"]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path == "/v1/payments":
            if self.create_response is not None:
                return self.create_response
            body = json.loads(request.content)
            if self.next_ids:
                payment_id = self.next_ids.pop(0)
            else:
                self._counter += 1
                payment_id = str(self._counter)
            self.set_status(payment_id, "pending", status_detail="pending_waiting_transfer")
            return httpx.Response(
                201,
                json={
                    "id": payment_id,
                    "status": "pending",
                    "status_detail": "pending_waiting_transfer",
                    "transaction_amount": body["transaction_amount"],
                    "point_of_interaction": {
                        "transaction_data": {
                            "qr_code": f"00020126PIX{payment_id}",
                            "qr_code_base64": "iVBORw0KGgo=",
                        }
                    },
                },
            )

        if request.method == "GET" and path.startswith("/v1/payments/"):
            if self.fetch_delay:
                await asyncio.sleep(self.fetch_delay)
            if self.fetch_status_code is not None:
                return httpx.Response(self.fetch_status_code, json={"message": "unavailable"})
            payment_id = path.rsplit("/", 1)[1]
            payment = self.payments.get(payment_id)
            if payment is None:
                return httpx.Response(404, json={"message": "Payment not found"})
            return httpx.Response(200, json=payment)

        if request.method == "GET" and path == "/users/me":
            if self.users_me_status != 200:
                return httpx.Response(self.users_me_status, json={"message": "invalid token"})
            return httpx.Response(200, json={"id": 123, "nickname": "TESTSELLER"})

        return httpx.Response(404, json={"message": "not found"})


class FakePrinter:
    """Kitchen printer webhook served through httpx.MockTransport."""

    def __init__(self):
        self.received: list = []
        self.status_code = 200
        self.delay = 0.0
        self.unreachable = False

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.unreachable:
            raise httpx.ConnectError("printer offline", request=request)
        self.received.append(json.loads(request.content or b"null"))
        return httpx.Response(self.status_code, json={"printed": self.status_code < 300})


class RecordingNotifier:
    """Stands in for ConnectionManager and records every broadcast."""

    def __init__(self):
        self.events: list[dict] = []
        self.total_connections = 0
        self.closed = False

    async def broadcast(self, event: dict) -> int:
        self.events.append(event)
        return 1

    async def shutdown(self) -> int:
        self.closed = True
        return 0


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"ts=1700000000,v1={digest}"


def webhook_body(payment_id: str, live_mode: bool | None = True, **extra) -> bytes:
    payload = {"type": "payment", "action": "payment.updated", "data": {"id": payment_id}, **extra}
    if live_mode is not None:
        payload["live_mode"] = live_mode
    return json.dumps(payload).encode()


# =============================================================================
# Fixtures
# =============================================================================


def make_settings(**overrides) -> Settings:
    values = dict(
        environment="test",
        debug=False,
        database_url="sqlite:///:memory:",
        mercadopago_access_token="APP_USR-1234567890-test-token",
        mercadopago_api_url=PROCESSOR_URL,
        mercadopago_validate_token_on_startup=False,
        processor_fetch_initial_delay=1.0,
        webhook_secret=WEBHOOK_SECRET,
        webhook_signature_mode="strict",
        webhook_processing_deadline_seconds=5.0,
        print_webhook_url=PRINTER_URL,
        rate_limit_enabled=False,
        dev_auto_approve_seconds=0,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def session_factory():
    """Fresh in-memory SQLite database per test."""
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    try:
        yield build_session_factory(engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def store(session_factory):
    return PaymentStore(session_factory)


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest.fixture
def printer():
    return FakePrinter()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def sleeps():
    """Delays requested by retry loops; no real sleeping happens."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep


@pytest.fixture
def build_payment_engine(session_factory, processor, printer, notifier, fake_sleep):
    """Factory so a test can override settings before the engine is built."""

    def _build(**setting_overrides) -> PaymentEngine:
        return PaymentEngine(
            make_settings(**setting_overrides),
            session_factory,
            processor_transport=processor.transport,
            fulfillment_transport=printer.transport,
            notifier=notifier,
            sleep=fake_sleep,
        )

    return _build


@pytest.fixture
def payment_engine(build_payment_engine):
    return build_payment_engine()


@pytest.fixture
def client(payment_engine):
    """
    Test client bound to the payment_engine fixture.

    The lifespan keeps an engine already installed on app.state.
    """
    from rest_api.main import app

    app.state.engine = payment_engine
    with TestClient(app) as test_client:
        yield test_client
    app.state.engine = None
