"""
REST API main application.
Entry point for the FastAPI server: PIX checkout, payment webhooks, print
proxy and the real-time payment channel.

Run with:
    uvicorn rest_api.main:app --port 3000
"""

from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from shared.config.settings import settings
from shared.rate_limit import limiter, rate_limit_exceeded_handler
from rest_api.core.cors import configure_cors
from rest_api.core.lifespan import lifespan
from rest_api.core.middlewares import register_middlewares
from rest_api.routers.payments import pix_router, print_router, webhook_router
from rest_api.routers.public import health_router
from ws_gateway.router import router as ws_router


# Create FastAPI application
app = FastAPI(
    title="PIX Checkout API",
    description="PIX payment creation, status reconciliation and order fulfillment",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

register_middlewares(app)
configure_cors(app)


# =============================================================================
# Include Routers
# =============================================================================

app.include_router(health_router)
app.include_router(pix_router)
app.include_router(webhook_router)
app.include_router(print_router)
app.include_router(ws_router)


# =============================================================================
# Development entry point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "rest_api.main:app",
        host="0.0.0.0",
        port=settings.rest_api_port,
        reload=settings.debug,
    )
