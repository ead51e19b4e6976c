"""
Request correlation ids.

Every HTTP request gets an id that is bound to a ContextVar, added to every
log record and echoed in the X-Request-ID response header. Mercado Pago sends
its own x-request-id with each webhook delivery; it is reused so our log lines
can be matched with the processor's delivery log.

Tasks created while handling a request (webhook reconciliation that outlives
the processing deadline) copy the context and keep the id.
"""

import logging
import re
import uuid
from contextvars import ContextVar
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Incoming ids end up in log lines, so only a conservative alphabet is kept
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:\-]{1,128}$")


def get_request_id() -> str:
    return request_id_var.get()


def resolve_request_id(incoming: str | None) -> str:
    """Use the caller's id when it is well formed, otherwise a new UUID4."""
    if incoming and _VALID_REQUEST_ID.match(incoming):
        return incoming
    return str(uuid.uuid4())


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = resolve_request_id(request.headers.get(self.HEADER_NAME))
        token = request_id_var.set(request_id)
        try:
            request.state.request_id = request_id
            response = await call_next(request)
            response.headers[self.HEADER_NAME] = request_id
            return response
        finally:
            request_id_var.reset(token)


class CorrelationIdFilter(logging.Filter):
    """
    Adds record.request_id ("-" outside a request).

    Usage:
        handler = logging.StreamHandler()
        handler.addFilter(CorrelationIdFilter())
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        return True
