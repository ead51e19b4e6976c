"""
Structured logging for the backend.

Loggers accept keyword context next to the message:

    logger.info("Payment status changed", payment_id="123", new_status="approved")

Production writes one JSON object per line; development writes a coloured
single line. Every record carries the request correlation id when one is
bound, and context keys that name credentials are masked before formatting.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from shared.config.settings import settings

# Context keys whose values are credentials
SENSITIVE_KEYS = frozenset({
    "access_token",
    "authorization",
    "secret",
    "token",
    "webhook_secret",
})


def _context(record: logging.LogRecord) -> dict[str, Any] | None:
    data = getattr(record, "extra_data", None)
    if not data:
        return None
    return {
        k: mask_token(v) if k.lower() in SENSITIVE_KEYS and v and "***" not in str(v) else v
        for k, v in data.items()
    }


def _request_id(record: logging.LogRecord) -> str | None:
    request_id = getattr(record, "request_id", None)
    return request_id if request_id and request_id != "-" else None


class StructuredFormatter(logging.Formatter):
    """One JSON object per line for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = _request_id(record)
        if request_id:
            log_data["request_id"] = request_id

        context = _context(record)
        if context:
            log_data["data"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if settings.debug:
            log_data["source"] = f"{record.filename}:{record.lineno}"

        return json.dumps(log_data, default=str)


class DevelopmentFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    DIM = "\033[2m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.now().strftime("%H:%M:%S")

        request_id = _request_id(record)
        request_part = f"{self.DIM}[{request_id[:8]}]{self.RESET} " if request_id else ""

        line = (
            f"{color}[{timestamp}] {record.levelname:8}{self.RESET} "
            f"{request_part}{record.name}: {record.getMessage()}"
        )

        context = _context(record)
        if context:
            line += " (" + " | ".join(f"{k}={v}" for k, v in context.items()) + ")"

        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"

        return line


class StructuredLogger(logging.Logger):
    """
    Logger whose keyword arguments (other than exc_info, stack_info and
    extra) become the record's structured context.
    """

    def _log_with_data(
        self,
        level: int,
        msg: str,
        args: tuple,
        exc_info: Any = None,
        extra: dict | None = None,
        stack_info: bool = False,
        **context: Any,
    ) -> None:
        if not self.isEnabledFor(level):
            return
        extra = dict(extra or {})
        extra["extra_data"] = context or None
        self._log(level, msg, args, exc_info=exc_info, extra=extra, stack_info=stack_info, stacklevel=3)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.DEBUG, msg, args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.INFO, msg, args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.WARNING, msg, args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.ERROR, msg, args, **kwargs)

    def critical(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.CRITICAL, msg, args, **kwargs)


logging.setLoggerClass(StructuredLogger)


def setup_logging() -> None:
    """Configure the root handler. Called once from the application lifespan."""
    # Imported here: correlation imports FastAPI, which the CLI does not need at import
    from shared.infrastructure.correlation import CorrelationIdFilter

    log_level = logging.DEBUG if settings.debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(StructuredFormatter() if settings.is_production else DevelopmentFormatter())

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()
    root.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    """
    Usage:
        from shared.config.logging import get_logger
        logger = get_logger(__name__)

        logger.error("Failed to reach processor", payment_id="123", exc_info=True)
    """
    return logging.getLogger(name)  # type: ignore[return-value]


def mask_email(email: str | None) -> str:
    """
    "maria.11999990000@seudominio.com" -> "ma***@seudominio.com"
    """
    if not email:
        return "<no-email>"
    local, at, domain = email.partition("@")
    if not at or not local:
        return "***@invalid"
    return f"{local[:2]}***@{domain}"


def mask_token(token: str | None) -> str:
    """
    Mask an access token or shared secret for logging.

    Keeps the environment prefix (TEST- / APP_USR-) and the last 4 characters
    so operators can tell which credential is loaded.
    Example: "APP_USR-1234...cdef" -> "APP_USR-***cdef"
    """
    if not token:
        return "<not-set>"
    token = str(token)

    prefix = ""
    for candidate in ("TEST-", "APP_USR-"):
        if token.startswith(candidate):
            prefix = candidate
            break

    if len(token) - len(prefix) <= 8:
        return f"{prefix}***"
    return f"{prefix}***{token[-4:]}"


# Pre-configured loggers
rest_api_logger = get_logger("rest_api")
payments_logger = get_logger("rest_api.payments")
ws_gateway_logger = get_logger("ws_gateway")

# Webhook signature decisions, kept on their own logger for alerting
security_audit_logger = get_logger("security.audit")

_AUDIT_LEVELS = {
    "REJECTED": logging.ERROR,
    "MISSING": logging.ERROR,
    "TOLERATED": logging.WARNING,
    "SKIPPED": logging.WARNING,
}


def audit_webhook_signature(
    outcome: str,
    payment_id: str | None = None,
    live_mode: bool | None = None,
    header: str | None = None,
    reason: str | None = None,
    **extra: Any,
) -> None:
    """
    Record one webhook signature decision.

    Args:
        outcome: VERIFIED, REJECTED, MISSING, TOLERATED or SKIPPED
        payment_id: Payment id extracted from the notification, when known
        live_mode: Value of the payload's live_mode flag
        header: Name of the header the signature was read from
        reason: Reason for the outcome
    """
    security_audit_logger._log_with_data(
        _AUDIT_LEVELS.get(outcome, logging.INFO),
        f"WEBHOOK_SIGNATURE_AUDIT: {outcome}",
        (),
        outcome=outcome,
        payment_id=payment_id,
        live_mode=live_mode,
        header=header,
        reason=reason,
        **extra,
    )
