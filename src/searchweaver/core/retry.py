"""Retry with exponential backoff and jitter."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

import httpx
import openai

from searchweaver.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_TRANSIENT_MARKERS = (
    "429",
    "rate limit",
    "500",
    "502",
    "503",
    "504",
    "timeout",
    "timed out",
    "econnreset",
    "econnrefused",
    "network",
    "fetch failed",
)


def default_should_retry(exc: BaseException) -> bool:
    """Retry network errors, rate limits, 5xx responses and timeouts."""

    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError, asyncio.TimeoutError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    if isinstance(
        exc,
        (openai.APITimeoutError, openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError),
    ):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters.

    The delay before retry ``n`` (0-based) is ``min(base * 2**n, max)`` plus up to
    ``jitter`` of that value at random. When ``retry_after`` returns a delay for the failed
    attempt (a server-supplied hint), that delay is used instead.
    """

    max_retries: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 10.0
    jitter: float = 0.2
    should_retry: Callable[[BaseException], bool] = default_should_retry
    retry_after: Callable[[BaseException], float | None] | None = None
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)

    def delay_for(self, attempt: int) -> float:
        capped = min(self.base_delay_s * (2**attempt), self.max_delay_s)
        return capped + capped * self.jitter * random.random()


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
) -> T:
    """Run ``operation`` and retry it while ``policy.should_retry`` accepts the error.

    The operation is invoked at most ``max_retries + 1`` times. The last error is re-raised once
    retries are exhausted or the predicate rejects it.
    """

    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= policy.max_retries or not policy.should_retry(e):
                raise
            hinted = policy.retry_after(e) if policy.retry_after is not None else None
            delay = hinted if hinted is not None else policy.delay_for(attempt)
            if on_retry is not None:
                on_retry(attempt + 1, e, delay)
            logger.warning(
                "Retrying after error",
                extra={
                    "attempt": attempt + 1,
                    "max_retries": policy.max_retries,
                    "delay_s": round(delay, 3),
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            await policy.sleep(delay)
            attempt += 1
