"""
Application lifespan handler.
Manages startup and shutdown events for the FastAPI application.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from shared.infrastructure.db import engine as db_engine, SessionLocal
from shared.config.settings import settings
from shared.config.logging import setup_logging, rest_api_logger as logger
from rest_api.models import Base
from rest_api.services.payments.engine import PaymentEngine


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.
    Runs on startup and shutdown.

    An engine already installed on app.state (tests) is used as is.
    """
    # Initialize logging
    setup_logging()

    # Validate production secrets before startup
    secret_errors = settings.validate_production_secrets()
    if secret_errors:
        for error in secret_errors:
            logger.error("Configuration error", error=error)
        if settings.is_production:
            raise RuntimeError(
                f"Production configuration errors: {'; '.join(secret_errors)}. "
                "Server will not start with insecure configuration."
            )
    if not settings.is_production and settings.uses_test_token:
        logger.warning("TEST- access token in use: payments will be simulated")

    # Startup
    logger.info("Starting REST API", port=settings.rest_api_port, env=settings.environment)

    payment_engine = getattr(app.state, "engine", None)
    owns_engine = payment_engine is None
    if owns_engine:
        Base.metadata.create_all(bind=db_engine)
        logger.info("Database tables created/verified")

        payment_engine = PaymentEngine(settings, SessionLocal)
        app.state.engine = payment_engine

    await payment_engine.startup()
    logger.info("Payment engine started")

    yield

    # Shutdown
    logger.info("Shutting down REST API")
    await payment_engine.shutdown()
    logger.info("Payment engine stopped")

    if owns_engine:
        app.state.engine = None
        db_engine.dispose()
