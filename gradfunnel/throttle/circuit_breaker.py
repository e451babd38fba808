from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
import logging
import threading
import time
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitOpenError(Exception):
    """Raised without running the operation while a source's circuit is open."""

    def __init__(self, source: str, retry_after_seconds: float) -> None:
        super().__init__(f"circuit open for source={source}; retry in {retry_after_seconds:.1f}s")
        self.source = source
        self.retry_after_seconds = retry_after_seconds


class CircuitBreaker:
    def __init__(
        self,
        source: str,
        *,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self.failure_threshold = max(1, failure_threshold)
        self.cooldown_seconds = max(0.0, cooldown_seconds)
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_at: float | None = None
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._advance()
            return self._state

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._failures

    def remaining_cooldown(self) -> float:
        with self._lock:
            self._advance()
            if self._state is not CircuitState.OPEN or self._last_failure_at is None:
                return 0.0
            return max(0.0, self.cooldown_seconds - (self._clock() - self._last_failure_at))

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        with self._lock:
            self._advance()
            if self._state is CircuitState.OPEN:
                remaining = self.cooldown_seconds
                if self._last_failure_at is not None:
                    remaining = max(0.0, remaining - (self._clock() - self._last_failure_at))
                raise CircuitOpenError(self.source, remaining)

        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    async def wait_for_cooldown(self) -> None:
        remaining = self.remaining_cooldown()
        if remaining > 0:
            logger.info("waiting out circuit cooldown source=%s seconds=%.1f", self.source, remaining)
        # The event loop may wake a sleeper slightly before the deadline.
        while remaining > 0:
            await asyncio.sleep(remaining)
            remaining = self.remaining_cooldown()

    def record_success(self) -> None:
        with self._lock:
            if self._state is not CircuitState.CLOSED:
                logger.info("circuit closed source=%s", self.source)
            self._failures = 0
            self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure_at = self._clock()
            if self._state is CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
                if self._state is not CircuitState.OPEN:
                    logger.warning(
                        "circuit opened source=%s consecutive_failures=%s cooldown_seconds=%.0f",
                        self.source,
                        self._failures,
                        self.cooldown_seconds,
                    )
                self._state = CircuitState.OPEN

    def _advance(self) -> None:
        if self._state is not CircuitState.OPEN or self._last_failure_at is None:
            return
        if self._clock() - self._last_failure_at >= self.cooldown_seconds:
            self._state = CircuitState.HALF_OPEN


class CircuitBreakerRegistry:
    """Owns one breaker per source, created on first use."""

    def __init__(
        self,
        *,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, source: str) -> CircuitBreaker:
        key = source.lower()
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(
                    key,
                    failure_threshold=self.failure_threshold,
                    cooldown_seconds=self.cooldown_seconds,
                    clock=self._clock,
                )
                self._breakers[key] = breaker
            return breaker

    def states(self) -> dict[str, str]:
        with self._lock:
            breakers = list(self._breakers.items())
        return {source: breaker.state.value for source, breaker in breakers}
