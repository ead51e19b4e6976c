"""
CORS for the checkout frontend.

ALLOWED_ORIGINS (comma-separated) wins when set; otherwise the local Vite
dev server origins are allowed.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shared.config.settings import settings


LOCAL_FRONTEND_ORIGINS = [
    f"http://{host}:{port}"
    for host in ("localhost", "127.0.0.1")
    for port in (5173, 8080)
]

# Headers the checkout frontend sends
REQUEST_HEADERS = ["Accept", "Content-Type", "X-Idempotency-Key", "X-Request-ID"]


def get_cors_origins() -> list[str]:
    configured = [o.strip() for o in (settings.allowed_origins or "").split(",")]
    return [o for o in configured if o] or LOCAL_FRONTEND_ORIGINS


def configure_cors(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(),
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=REQUEST_HEADERS,
        expose_headers=["X-Request-ID"],
        max_age=0 if settings.environment == "development" else 600,
    )
