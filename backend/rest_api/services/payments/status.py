"""
Status vocabulary shared by the reconciler, the status endpoint and the poller.
"""

from shared.config.constants import PaymentStatus

_APPROVED_ALIASES = frozenset({"approved", "paid", "success"})
# "authorized" is not captured yet, so it is still pending
_PENDING_ALIASES = frozenset({"pending", "in_process", "in_mediation", "authorized"})
_CANCELLED_ALIASES = frozenset({"cancelled", "canceled"})

UNKNOWN = "unknown"


def normalize_status(raw: str | None) -> str:
    """
    Map a processor status string to the local vocabulary.

    Returns one of pending / approved / rejected / cancelled / expired, or
    "unknown" for anything else (including None).
    """
    if not raw:
        return UNKNOWN
    value = str(raw).strip().lower()
    if value in _APPROVED_ALIASES:
        return PaymentStatus.APPROVED
    if value in _PENDING_ALIASES:
        return PaymentStatus.PENDING
    if value == "rejected":
        return PaymentStatus.REJECTED
    if value in _CANCELLED_ALIASES:
        return PaymentStatus.CANCELLED
    if value == "expired":
        return PaymentStatus.EXPIRED
    return UNKNOWN


def is_approved(raw: str | None) -> bool:
    return normalize_status(raw) == PaymentStatus.APPROVED


def is_failed(raw: str | None) -> bool:
    return normalize_status(raw) in PaymentStatus.FAILED


def is_terminal(status: str | None) -> bool:
    return status in PaymentStatus.TERMINAL
