"""
Exponential backoff for processor lookups.

Lookups after a webhook use 1s then 2s with no jitter, so three attempts fit
inside the webhook processing deadline.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryConfig:
    initial_delay: float = 1.0     # before the second attempt
    max_delay: float = 30.0
    backoff_base: float = 2.0
    jitter_factor: float = 0.0     # fraction of the delay, 0 disables
    max_attempts: int = 3          # including the first one

    def __post_init__(self) -> None:
        problems = [
            message
            for failed, message in (
                (self.initial_delay < 0, "initial_delay must not be negative"),
                (self.max_delay < self.initial_delay, "max_delay must be >= initial_delay"),
                (self.backoff_base < 1, "backoff_base must be >= 1"),
                (not 0 <= self.jitter_factor <= 1, "jitter_factor must be between 0 and 1"),
                (self.max_attempts < 1, "max_attempts must be >= 1"),
            )
            if failed
        ]
        if problems:
            raise ValueError("; ".join(problems))


def calculate_delay_with_jitter(attempt: int, config: RetryConfig | None = None) -> float:
    """
    Delay after the (attempt + 1)-th failure:
    min(initial_delay * backoff_base ** attempt, max_delay), spread by jitter.

        >>> [calculate_delay_with_jitter(i) for i in range(3)]
        [1.0, 2.0, 4.0]
    """
    config = config or RetryConfig()
    delay = min(config.initial_delay * config.backoff_base ** attempt, config.max_delay)
    if config.jitter_factor:
        spread = delay * config.jitter_factor
        delay = max(0.0, delay + random.uniform(-spread, spread))
    return delay


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    retry_on: tuple[type[BaseException], ...],
    config: RetryConfig | None = None,
    sleep: Sleep = asyncio.sleep,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
) -> T:
    """
    Await operation() until it succeeds. Exceptions outside retry_on propagate
    at once; the last retryable exception is re-raised unchanged.
    """
    config = config or RetryConfig()
    attempt = 0
    while True:
        try:
            return await operation()
        except retry_on as exc:
            attempt += 1
            if attempt >= config.max_attempts:
                raise
            delay = calculate_delay_with_jitter(attempt - 1, config)
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            await sleep(delay)
