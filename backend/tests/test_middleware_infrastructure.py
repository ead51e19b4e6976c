"""
Tests for middleware and infrastructure components.

Covers security headers, content-type validation, correlation ids,
logging helpers, safe_commit, CORS origins and the rate limit key.
"""

import logging

import pytest
from unittest.mock import MagicMock, patch
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from rest_api.core.middlewares import (
    SecurityHeadersMiddleware,
    ContentTypeValidationMiddleware,
    register_middlewares,
)
from shared.infrastructure.correlation import (
    CorrelationIdMiddleware,
    CorrelationIdFilter,
    get_request_id,
    request_id_var,
    resolve_request_id,
)
from shared.infrastructure.db import safe_commit


# =============================================================================
# SecurityHeadersMiddleware Tests
# =============================================================================

class TestSecurityHeadersMiddleware:

    @staticmethod
    def _get(environment: str = "test"):
        with patch("shared.config.settings.settings") as mock_settings:
            mock_settings.environment = environment
            app = FastAPI()
            app.add_middleware(SecurityHeadersMiddleware)

            @app.get("/api/check-payment")
            def check_payment():
                return {"status": "pending"}

            return TestClient(app).get("/api/check-payment")

    @pytest.mark.parametrize(
        "header,expected",
        [
            ("X-Content-Type-Options", "nosniff"),
            ("X-Frame-Options", "DENY"),
            ("Referrer-Policy", "strict-origin-when-cross-origin"),
            ("Cache-Control", "no-store"),
        ],
    )
    def test_fixed_headers(self, header, expected):
        assert self._get().headers.get(header) == expected

    def test_policies(self):
        response = self._get()
        assert "geolocation=()" in response.headers.get("Permissions-Policy", "")
        csp = response.headers.get("Content-Security-Policy", "")
        assert "default-src 'none'" in csp
        assert "frame-ancestors 'none'" in csp

    def test_hsts_only_in_production(self):
        assert "max-age=31536000" in self._get("production").headers.get("Strict-Transport-Security", "")
        assert "Strict-Transport-Security" not in self._get("development").headers


# =============================================================================
# ContentTypeValidationMiddleware Tests
# =============================================================================

class TestContentTypeValidationMiddleware:

    @pytest.fixture
    def client(self):
        app = FastAPI()
        app.add_middleware(ContentTypeValidationMiddleware)

        @app.post("/api/generate-pix")
        async def generate_pix(request: Request):
            return {"received": len(await request.body())}

        @app.get("/api/check-payment")
        def check_payment():
            return {"status": "pending"}

        @app.post("/api/webhook")
        def webhook():
            return {"result": "ignored"}

        @app.post("/api/print-order")
        def print_order():
            return {"printed": True}

        return TestClient(app)

    def test_json_body_passes(self, client):
        response = client.post("/api/generate-pix", json={"orderId": "A1", "amount": 10})
        assert response.status_code == 200

    @pytest.mark.parametrize(
        "content_type",
        ["application/x-www-form-urlencoded", "text/plain", "multipart/form-data; boundary=x"],
    )
    def test_non_json_body_rejected(self, client, content_type):
        response = client.post("/api/generate-pix", content=b"orderId=A1", headers={"Content-Type": content_type})

        assert response.status_code == 415
        assert "application/json" in response.json()["detail"]

    def test_get_is_not_checked(self, client):
        assert client.get("/api/check-payment").status_code == 200

    @pytest.mark.parametrize("path", ["/api/webhook", "/api/print-order"])
    def test_exempt_paths_accept_any_content_type(self, client, path):
        response = client.post(path, content=b"id=123&topic=payment", headers={"Content-Type": "text/plain"})
        assert response.status_code == 200


# =============================================================================
# Correlation id Tests
# =============================================================================

class TestCorrelationId:

    @pytest.fixture
    def client(self):
        app = FastAPI()
        app.add_middleware(CorrelationIdMiddleware)

        @app.get("/echo")
        def echo():
            return {"request_id": get_request_id()}

        return TestClient(app)

    def test_new_id_when_absent(self, client):
        response = client.get("/echo")

        request_id = response.headers["X-Request-ID"]
        assert len(request_id) == 36
        assert response.json()["request_id"] == request_id

    def test_processor_request_id_is_kept(self, client):
        delivery_id = "bb56a2f1-6aae-46ac-982e-9dcd3581d08e"
        response = client.get("/echo", headers={"X-Request-ID": delivery_id})

        assert response.headers["X-Request-ID"] == delivery_id
        assert response.json()["request_id"] == delivery_id

    def test_malformed_id_is_replaced(self, client):
        response = client.get("/echo", headers={"X-Request-ID": "abc def;drop"})

        assert response.headers["X-Request-ID"] != "abc def;drop"
        assert len(response.headers["X-Request-ID"]) == 36

    def test_context_is_reset_after_request(self, client):
        client.get("/echo", headers={"X-Request-ID": "req-1"})
        assert get_request_id() == ""

    @pytest.mark.parametrize("incoming", ["a" * 129, "line\nbreak", ""])
    def test_resolve_rejects(self, incoming):
        assert resolve_request_id(incoming) != incoming

    def test_filter_binds_current_id(self):
        record = logging.LogRecord("rest_api", logging.INFO, __file__, 1, "msg", (), None)
        token = request_id_var.set("req-42")
        try:
            assert CorrelationIdFilter().filter(record) is True
        finally:
            request_id_var.reset(token)
        assert record.request_id == "req-42"

    def test_filter_uses_dash_outside_requests(self):
        record = logging.LogRecord("rest_api", logging.INFO, __file__, 1, "msg", (), None)
        CorrelationIdFilter().filter(record)
        assert record.request_id == "-"


# =============================================================================
# safe_commit and registration Tests
# =============================================================================

class TestSafeCommit:

    def test_commit(self):
        db = MagicMock()
        safe_commit(db)

        db.commit.assert_called_once()
        db.rollback.assert_not_called()

    def test_rollback_then_reraise(self):
        class IntegrityProblem(Exception):
            pass

        db = MagicMock()
        db.commit.side_effect = IntegrityProblem("duplicate payment id")

        with pytest.raises(IntegrityProblem):
            safe_commit(db)
        db.rollback.assert_called_once()


def test_register_middlewares():
    app = FastAPI()
    register_middlewares(app)

    registered = [m.cls for m in app.user_middleware]
    assert registered[0] is CorrelationIdMiddleware
    assert {SecurityHeadersMiddleware, ContentTypeValidationMiddleware} <= set(registered)


# =============================================================================
# Logging helper Tests
# =============================================================================

class TestLoggingMasks:
    """Secrets and PII never reach the logs in clear."""

    def test_mask_token_keeps_prefix_and_tail(self):
        from shared.config.logging import mask_token

        masked = mask_token("APP_USR-1234567890123456-abcd")
        assert masked == "APP_USR-***abcd"
        assert "1234567890" not in masked

    def test_mask_token_short_or_missing(self):
        from shared.config.logging import mask_token

        assert mask_token("") == "<not-set>"
        assert mask_token(None) == "<not-set>"
        assert mask_token("TEST-abc") == "TEST-***"

    def test_mask_email(self):
        from shared.config.logging import mask_email

        assert mask_email("maria.11999990000@seudominio.com") == "ma***@seudominio.com"
        assert mask_email(None) == "<no-email>"
        assert mask_email("not-an-email") == "***@invalid"

    def test_formatter_masks_credential_context(self):
        import json
        import logging

        from shared.config.logging import StructuredFormatter

        record = logging.LogRecord("rest_api", logging.INFO, __file__, 1, "Payment engine starting", (), None)
        record.extra_data = {"access_token": "APP_USR-1234567890abcdef", "payment_id": "P1"}

        data = json.loads(StructuredFormatter().format(record))["data"]
        assert data["access_token"] == "APP_USR-***cdef"
        assert data["payment_id"] == "P1"


# =============================================================================
# CORS and rate limit key Tests
# =============================================================================

class TestCorsAndRateLimitKey:

    def test_configured_origins_win(self):
        from rest_api.core import cors

        with patch.object(cors, "settings") as mock_settings:
            mock_settings.allowed_origins = "https://loja.example.com, ,https://admin.example.com"
            assert cors.get_cors_origins() == ["https://loja.example.com", "https://admin.example.com"]

    def test_local_origins_by_default(self):
        from rest_api.core import cors

        with patch.object(cors, "settings") as mock_settings:
            mock_settings.allowed_origins = ""
            origins = cors.get_cors_origins()
        assert "http://localhost:5173" in origins
        assert "http://127.0.0.1:8080" in origins

    def test_client_address_prefers_first_forwarded_hop(self):
        from shared.rate_limit import client_address

        request = MagicMock()
        request.headers = {"x-forwarded-for": "203.0.113.7, 10.0.0.2"}
        assert client_address(request) == "203.0.113.7"

    def test_client_address_falls_back_to_peer(self):
        from shared.rate_limit import client_address

        request = MagicMock()
        request.headers = {}
        request.client.host = "198.51.100.4"
        assert client_address(request) == "198.51.100.4"
