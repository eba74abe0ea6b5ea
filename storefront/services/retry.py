"""
Retry policy shared by catalog sync storage writes and Stripe calls.

A policy is (max attempts, backoff function, retryable-error predicate).
Non-retryable errors propagate immediately; the last error propagates once
attempts are exhausted.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

import httpx
import stripe
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Backoff = Callable[[int], float]


def fixed_delay(seconds: float) -> Backoff:
    return lambda attempt: seconds


def is_transient_storage_error(exc: BaseException) -> bool:
    """Connection/timeout-class failures of the database or its network path."""
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (TimeoutError, ConnectionError, httpx.TransportError))


def is_transient_stripe_error(exc: BaseException) -> bool:
    return isinstance(exc, (stripe.RateLimitError, stripe.APIConnectionError))


def _always(exc: BaseException) -> bool:
    return True


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    backoff: Backoff = field(default_factory=lambda: fixed_delay(1.0))
    retryable: Callable[[BaseException], bool] = _always

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "operation",
    ) -> T:
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as exc:
                if attempt >= self.max_attempts or not self.retryable(exc):
                    raise
                delay = self.backoff(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s – retrying in %.1fs",
                    description, attempt, self.max_attempts, exc, delay,
                )
                if delay > 0:
                    await asyncio.sleep(delay)
                attempt += 1
