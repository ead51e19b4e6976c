"""
Common utilities shared across routers.
"""

from .deps import get_payment_engine, get_ws_payment_engine
from .errors import payment_error_to_http

__all__ = [
    "get_payment_engine",
    "get_ws_payment_engine",
    "payment_error_to_http",
]
