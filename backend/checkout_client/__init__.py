"""
Checkout-side payment status consumers.
"""

from checkout_client.poller import (
    CompletionGuard,
    PaymentStatusPoller,
    PollOutcome,
    PollResult,
    apply_push_update,
)

__all__ = ["CompletionGuard", "PaymentStatusPoller", "PollOutcome", "PollResult", "apply_push_update"]
