"""
Payment routers - /api/generate-pix*, /api/check-payment, /api/webhook,
/api/print-order, /status-pagamento.
"""

from .pix import router as pix_router
from .print_proxy import router as print_router
from .webhook import router as webhook_router

__all__ = ["pix_router", "print_router", "webhook_router"]
