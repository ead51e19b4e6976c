"""
Circuit breaker guarding calls to Mercado Pago.

Each MercadoPagoGateway owns one breaker, so a processor outage turns into
fast UpstreamUnavailable errors instead of piling up request timeouts.

    CLOSED     calls pass; consecutive failures are counted
    OPEN       calls are refused until the cool-down has elapsed
    HALF_OPEN  a few trial calls decide between CLOSED and OPEN

Usage:
    breaker = CircuitBreaker(CircuitBreakerConfig(name="mercadopago"))

    async with breaker.call():
        response = await client.get(...)

Only exceptions raised inside the block count as failures. The gateway
raises for 5xx and transport errors inside the block and inspects 4xx
answers outside it.

State changes happen between awaits, so they are atomic on the event loop.
"""

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncGenerator, Callable

from shared.config.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    name: str
    failure_threshold: int = 5       # consecutive failures that open the circuit
    success_threshold: int = 2       # trial successes that close it again
    timeout_seconds: float = 30.0    # cool-down before trial calls
    half_open_max_calls: int = 2     # trial calls allowed in flight


@dataclass
class CircuitBreakerStats:
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    state_changes: int = 0
    last_failure_time: float | None = None
    last_success_time: float | None = None


class CircuitBreakerError(Exception):
    """The circuit is open; retry_after is the remaining cool-down in seconds."""

    def __init__(self, breaker_name: str, retry_after: float):
        self.breaker_name = breaker_name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{breaker_name}' is open. Retry after {retry_after:.1f}s")


class CircuitBreaker:
    def __init__(self, config: CircuitBreakerConfig, clock: Callable[[], float] = time.monotonic):
        self.config = config
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._trial_successes = 0
        self._trials_in_flight = 0
        self._opened_at: float | None = None
        self._stats = CircuitBreakerStats()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def stats(self) -> CircuitBreakerStats:
        return self._stats

    def _move_to(self, new_state: CircuitState) -> None:
        logger.info(
            "Circuit breaker state change",
            breaker=self.config.name,
            old_state=self._state.value,
            new_state=new_state.value,
            consecutive_failures=self._consecutive_failures,
        )
        self._state = new_state
        self._stats.state_changes += 1
        self._trial_successes = 0
        self._trials_in_flight = 0
        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state == CircuitState.CLOSED:
            self._consecutive_failures = 0
            self._opened_at = None

    def _remaining_cooldown(self) -> float:
        if self._opened_at is None:
            return 0.0
        elapsed = self._clock() - self._opened_at
        return max(0.0, self.config.timeout_seconds - elapsed)

    def _admit(self) -> float | None:
        """None when the call may proceed, else seconds until it could."""
        if self._state == CircuitState.OPEN:
            remaining = self._remaining_cooldown()
            if remaining > 0:
                return remaining
            self._move_to(CircuitState.HALF_OPEN)

        if self._state == CircuitState.HALF_OPEN:
            if self._trials_in_flight >= self.config.half_open_max_calls:
                return 1.0
            self._trials_in_flight += 1
        return None

    def _on_success(self) -> None:
        self._stats.total_calls += 1
        self._stats.successful_calls += 1
        self._stats.last_success_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            self._trials_in_flight = max(0, self._trials_in_flight - 1)
            self._trial_successes += 1
            if self._trial_successes >= self.config.success_threshold:
                self._move_to(CircuitState.CLOSED)
        else:
            self._consecutive_failures = 0

    def _on_failure(self, error: Exception) -> None:
        self._stats.total_calls += 1
        self._stats.failed_calls += 1
        self._stats.last_failure_time = self._clock()
        self._consecutive_failures += 1

        logger.warning(
            "Circuit breaker recorded failure",
            breaker=self.config.name,
            error=str(error) or type(error).__name__,
            consecutive_failures=self._consecutive_failures,
            threshold=self.config.failure_threshold,
        )

        if self._state == CircuitState.HALF_OPEN:
            self._move_to(CircuitState.OPEN)
        elif (
            self._state == CircuitState.CLOSED
            and self._consecutive_failures >= self.config.failure_threshold
        ):
            self._move_to(CircuitState.OPEN)

    @asynccontextmanager
    async def call(self) -> AsyncGenerator[None, None]:
        """
        Guard one call.

        Raises:
            CircuitBreakerError: circuit open, or half-open with all trial slots taken
        """
        retry_after = self._admit()
        if retry_after is not None:
            self._stats.rejected_calls += 1
            raise CircuitBreakerError(self.config.name, retry_after)

        trial = self._state == CircuitState.HALF_OPEN
        admitted_in = self._stats.state_changes
        try:
            yield
        except Exception as e:
            self._on_failure(e)
            raise
        except BaseException:
            # Cancelled: no outcome to record, but the trial slot must be returned
            if trial and admitted_in == self._stats.state_changes:
                self._trials_in_flight = max(0, self._trials_in_flight - 1)
            raise
        self._on_success()

    def reset(self) -> None:
        if self._state != CircuitState.CLOSED:
            self._move_to(CircuitState.CLOSED)
        self._consecutive_failures = 0

    def snapshot(self) -> dict:
        """State and counters for the health endpoint."""
        return {
            "state": self._state.value,
            "retry_after": round(self._remaining_cooldown(), 1) if self._state == CircuitState.OPEN else 0.0,
            "total_calls": self._stats.total_calls,
            "successful_calls": self._stats.successful_calls,
            "failed_calls": self._stats.failed_calls,
            "rejected_calls": self._stats.rejected_calls,
            "state_changes": self._stats.state_changes,
        }
