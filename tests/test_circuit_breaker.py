from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from gradfunnel.throttle.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitOpenError,
    CircuitState,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class Operation:
    def __init__(self, *, fail: bool) -> None:
        self.fail = fail
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.fail:
            raise ConnectionError("upstream down")
        return "ok"


def _trip(breaker: CircuitBreaker, times: int) -> None:
    failing = Operation(fail=True)
    for _ in range(times):
        with pytest.raises(ConnectionError):
            asyncio.run(breaker.execute(failing))


def test_opens_after_threshold_and_fails_fast() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("acme", failure_threshold=3, cooldown_seconds=60, clock=clock)

    _trip(breaker, 2)
    assert breaker.state is CircuitState.CLOSED
    _trip(breaker, 1)
    assert breaker.state is CircuitState.OPEN

    guarded = Operation(fail=False)
    with pytest.raises(CircuitOpenError) as exc_info:
        asyncio.run(breaker.execute(guarded))
    assert guarded.calls == 0
    assert exc_info.value.source == "acme"
    assert exc_info.value.retry_after_seconds == pytest.approx(60.0)


def test_half_open_after_cooldown_and_success_closes() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("acme", failure_threshold=2, cooldown_seconds=60, clock=clock)
    _trip(breaker, 2)

    clock.now = 30.0
    assert breaker.state is CircuitState.OPEN
    assert breaker.remaining_cooldown() == pytest.approx(30.0)

    clock.now = 60.0
    assert breaker.state is CircuitState.HALF_OPEN

    probe = Operation(fail=False)
    assert asyncio.run(breaker.execute(probe)) == "ok"
    assert probe.calls == 1
    assert breaker.state is CircuitState.CLOSED
    assert breaker.consecutive_failures == 0


def test_failure_while_half_open_reopens() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("acme", failure_threshold=2, cooldown_seconds=60, clock=clock)
    _trip(breaker, 2)
    clock.now = 61.0
    assert breaker.state is CircuitState.HALF_OPEN

    _trip(breaker, 1)
    assert breaker.state is CircuitState.OPEN
    assert breaker.remaining_cooldown() == pytest.approx(60.0)


def test_success_resets_failure_count() -> None:
    breaker = CircuitBreaker("acme", failure_threshold=2, clock=FakeClock())
    _trip(breaker, 1)
    asyncio.run(breaker.execute(Operation(fail=False)))
    _trip(breaker, 1)
    assert breaker.state is CircuitState.CLOSED


def test_registry_keeps_one_breaker_per_source() -> None:
    registry = CircuitBreakerRegistry(failure_threshold=1, clock=FakeClock())
    first = registry.get("Greenhouse")
    assert registry.get("greenhouse") is first

    _trip(first, 1)
    assert registry.states() == {"greenhouse": "OPEN"}
    assert registry.get("lever").state is CircuitState.CLOSED


def test_wait_for_cooldown_leaves_breaker_half_open() -> None:
    breaker = CircuitBreaker("acme", failure_threshold=1, cooldown_seconds=0.05)
    _trip(breaker, 1)
    assert breaker.state is CircuitState.OPEN

    asyncio.run(breaker.wait_for_cooldown())

    assert breaker.state is CircuitState.HALF_OPEN
    assert breaker.remaining_cooldown() == 0.0


def test_failures_from_several_threads_are_all_counted() -> None:
    breaker = CircuitBreaker("acme", failure_threshold=1000, clock=FakeClock())

    def worker(_: int) -> None:
        for _ in range(25):
            breaker.record_failure()

    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(worker, range(4)))

    assert breaker.consecutive_failures == 100
    assert breaker.state is CircuitState.CLOSED
