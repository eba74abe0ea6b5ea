"""
Unit tests for the retry policy.
"""
from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
import stripe
from sqlalchemy.exc import IntegrityError, OperationalError

from storefront.services.retry import (
    RetryPolicy,
    fixed_delay,
    is_transient_storage_error,
    is_transient_stripe_error,
)


def _flaky(failures, result="ok"):
    calls = {"n": 0}

    async def operation():
        calls["n"] += 1
        if failures:
            raise failures.pop(0)
        return result

    return operation, calls


@pytest.mark.asyncio
async def test_succeeds_after_transient_failures():
    operation, calls = _flaky([ConnectionError("reset"), TimeoutError("slow")])
    policy = RetryPolicy(max_attempts=3, backoff=fixed_delay(0), retryable=is_transient_storage_error)

    assert await policy.run(operation, "write") == "ok"
    assert calls["n"] == 3


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    operation, calls = _flaky([ConnectionError("a"), ConnectionError("b"), ConnectionError("c")])
    policy = RetryPolicy(max_attempts=3, backoff=fixed_delay(0), retryable=is_transient_storage_error)

    with pytest.raises(ConnectionError, match="c"):
        await policy.run(operation, "write")
    assert calls["n"] == 3


@pytest.mark.asyncio
async def test_non_retryable_error_propagates_immediately():
    operation, calls = _flaky([ValueError("bad data")])
    policy = RetryPolicy(max_attempts=5, backoff=fixed_delay(0), retryable=is_transient_storage_error)

    with pytest.raises(ValueError):
        await policy.run(operation)
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_sleeps_backoff_between_attempts():
    operation, _ = _flaky([ConnectionError("a"), ConnectionError("b")])
    policy = RetryPolicy(max_attempts=3, backoff=fixed_delay(2.5))

    with patch("storefront.services.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        await policy.run(operation)

    assert [c.args[0] for c in sleep.await_args_list] == [2.5, 2.5]


def test_storage_error_classification():
    assert is_transient_storage_error(OperationalError("SELECT 1", {}, Exception("gone")))
    assert is_transient_storage_error(ConnectionResetError())
    assert not is_transient_storage_error(IntegrityError("INSERT", {}, Exception("dup")))
    assert not is_transient_storage_error(ValueError())


def test_stripe_error_classification():
    assert is_transient_stripe_error(stripe.RateLimitError("slow down"))
    assert is_transient_stripe_error(stripe.APIConnectionError("no route"))
    assert not is_transient_stripe_error(stripe.InvalidRequestError("bad", param="name"))
