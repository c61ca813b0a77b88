"""Fault-tolerance primitives for async operations."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from searchweaver.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"


class CircuitBreakerOpenError(RuntimeError):
    """Raised when circuit breaker is open."""


@dataclass(frozen=True)
class CircuitBreakerStats:
    state: str
    failures: int
    successes: int
    last_failure_time: float | None
    total_requests: int
    total_failures: int
    total_successes: int


class CircuitBreaker:
    """Circuit breaker pattern for fault tolerance.

    The circuit opens after ``failure_threshold`` consecutive failures and fast-fails every call
    until ``reset_timeout`` seconds have passed. It then half-opens and needs
    ``success_threshold`` consecutive successes to close again; a failure while half-open reopens
    it immediately.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        success_threshold: int = 2,
        *,
        name: str = "default",
        expected_exception: type[BaseException] = Exception,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize circuit breaker.

        Args:
            failure_threshold: Number of consecutive failures before opening circuit.
            reset_timeout: Seconds to wait before attempting recovery.
            success_threshold: Consecutive half-open successes needed to close.
            name: Name used in logs.
            expected_exception: Exception type counted as a failure.
            clock: Monotonic time source.
        """
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.success_threshold = success_threshold
        self.name = name
        self.expected_exception = expected_exception
        self._clock = clock

        self.state = CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: float | None = None
        self.total_requests = 0
        self.total_failures = 0
        self.total_successes = 0
        self._lock = asyncio.Lock()

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Call a coroutine function with circuit breaker protection.

        Raises:
            CircuitBreakerOpenError: If circuit is open.
        """
        async with self._lock:
            self.total_requests += 1
            if not self._allow():
                remaining = self.reset_timeout - (self._clock() - (self.last_failure_time or 0.0))
                raise CircuitBreakerOpenError(
                    f"Circuit breaker '{self.name}' is open. Retry after {max(remaining, 0.0):.1f}s"
                )

        try:
            result = await func(*args, **kwargs)
        except self.expected_exception:
            async with self._lock:
                self._record_failure()
            raise

        async with self._lock:
            self._record_success()
        return result

    def _allow(self) -> bool:
        if self.state == CLOSED or self.state == HALF_OPEN:
            return True
        if self.last_failure_time is not None:
            elapsed = self._clock() - self.last_failure_time
            if elapsed >= self.reset_timeout:
                self._transition(HALF_OPEN)
                return True
        return False

    def _record_success(self) -> None:
        self.total_successes += 1
        if self.state == HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._transition(CLOSED)
        elif self.state == CLOSED:
            self.failure_count = 0

    def _record_failure(self) -> None:
        self.total_failures += 1
        self.failure_count += 1
        self.last_failure_time = self._clock()
        if self.state == HALF_OPEN:
            self._transition(OPEN)
        elif self.state == CLOSED and self.failure_count >= self.failure_threshold:
            self._transition(OPEN)

    def _transition(self, new_state: str) -> None:
        if self.state == new_state:
            return
        old_state = self.state
        self.state = new_state
        if new_state == CLOSED:
            self.failure_count = 0
            self.success_count = 0
        elif new_state == HALF_OPEN:
            self.success_count = 0

        log = logger.warning if new_state == OPEN else logger.info
        log(
            "Circuit breaker state change",
            extra={
                "breaker": self.name,
                "from_state": old_state,
                "to_state": new_state,
                "failure_count": self.failure_count,
                "threshold": self.failure_threshold,
            },
        )

    def stats(self) -> CircuitBreakerStats:
        return CircuitBreakerStats(
            state=self.state,
            failures=self.failure_count,
            successes=self.success_count,
            last_failure_time=self.last_failure_time,
            total_requests=self.total_requests,
            total_failures=self.total_failures,
            total_successes=self.total_successes,
        )

    def reset(self) -> None:
        """Force the circuit closed and forget recent failures."""
        self._transition(CLOSED)
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = None

    def trip(self) -> None:
        """Force the circuit open."""
        self.last_failure_time = self._clock()
        self._transition(OPEN)


_breakers: dict[str, CircuitBreaker] = {}


def get_circuit_breaker(name: str, **kwargs: Any) -> CircuitBreaker:
    """Return the process-wide breaker registered under ``name``, creating it on first use."""

    breaker = _breakers.get(name)
    if breaker is None:
        breaker = CircuitBreaker(name=name, **kwargs)
        _breakers[name] = breaker
    return breaker
