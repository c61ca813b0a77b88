"""Tests for retry with backoff."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from searchweaver.core.retry import RetryPolicy, default_should_retry, with_retry


class _Sleeps:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def test_with_retry_calls_at_most_max_retries_plus_one() -> None:
    """It should invoke the operation max_retries + 1 times and re-raise the last error."""

    sleeps = _Sleeps()
    calls = 0

    async def op() -> str:
        nonlocal calls
        calls += 1
        raise RuntimeError(f"503 service unavailable #{calls}")

    policy = RetryPolicy(max_retries=3, base_delay_s=1.0, max_delay_s=10.0, jitter=0.0, sleep=sleeps)
    with pytest.raises(RuntimeError, match="#4"):
        asyncio.run(with_retry(op, policy))

    assert calls == 4
    assert sleeps.delays == [1.0, 2.0, 4.0]


def test_with_retry_does_not_retry_rejected_errors() -> None:
    """It should raise a non-retryable error immediately."""

    sleeps = _Sleeps()
    calls = 0

    async def op() -> str:
        nonlocal calls
        calls += 1
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        asyncio.run(with_retry(op, RetryPolicy(max_retries=5, sleep=sleeps)))
    assert calls == 1
    assert sleeps.delays == []


def test_with_retry_returns_after_transient_failure() -> None:
    """It should return the first successful result and report each retry."""

    sleeps = _Sleeps()
    seen: list[int] = []
    outcomes = [httpx.ConnectError("boom"), "ok"]

    async def op() -> str:
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    result = asyncio.run(
        with_retry(op, RetryPolicy(jitter=0.0, sleep=sleeps), on_retry=lambda n, _e, _d: seen.append(n))
    )
    assert result == "ok"
    assert seen == [1]


def test_delay_is_capped() -> None:
    """It should cap the exponential delay at max_delay_s."""

    policy = RetryPolicy(base_delay_s=1.0, max_delay_s=5.0, jitter=0.0)
    assert policy.delay_for(0) == 1.0
    assert policy.delay_for(10) == 5.0


def test_default_should_retry_classification() -> None:
    """It should treat rate limits and 5xx as transient and 4xx as permanent."""

    request = httpx.Request("GET", "https://example.com")
    too_many = httpx.HTTPStatusError("x", request=request, response=httpx.Response(429, request=request))
    not_found = httpx.HTTPStatusError("x", request=request, response=httpx.Response(404, request=request))

    assert default_should_retry(too_many)
    assert not default_should_retry(not_found)
    assert default_should_retry(RuntimeError("request timed out"))
    assert not default_should_retry(KeyError("missing"))


def test_with_retry_prefers_server_retry_hint() -> None:
    """It should sleep for the delay the retry_after hook returns instead of the backoff."""

    sleeps = _Sleeps()
    calls = 0

    async def op() -> str:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("429 rate limit")
        if calls == 2:
            raise RuntimeError("503 service unavailable")
        return "ok"

    def hint(exc: BaseException) -> float | None:
        return 7.0 if "429" in str(exc) else None

    policy = RetryPolicy(max_retries=3, base_delay_s=1.0, jitter=0.0, retry_after=hint, sleep=sleeps)
    assert asyncio.run(with_retry(op, policy)) == "ok"
    assert sleeps.delays == [7.0, 2.0]
