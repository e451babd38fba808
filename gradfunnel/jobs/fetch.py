from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
import logging
from typing import Any, Protocol

import httpx

from gradfunnel.schemas.records import CandidateRecord
from gradfunnel.throttle.blocking import response_looks_blocked
from gradfunnel.throttle.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from gradfunnel.throttle.rate_controller import RateController

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class SourceBlockedError(Exception):
    """Raised when a response looks like a block or challenge page."""

    def __init__(self, source: str, url: str, status_code: int) -> None:
        super().__init__(f"blocked by source={source} status={status_code} url={url}")
        self.source = source
        self.url = url
        self.status_code = status_code


class SourceFetcher(Protocol):
    """A source-specific producer of candidate records.

    Implementations own their page parsing and must issue every request
    through the supplied ``FetchContext``.
    """

    name: str

    def fetch(self, context: "FetchContext") -> AsyncIterator[CandidateRecord]: ...


class FetchContext:
    """Paced, breaker-guarded HTTP access for one source.

    Each ``get`` checks the pause ceilings, sleeps for the controller's delay,
    then runs the request inside the source's circuit breaker. Responses that
    look blocked escalate the throttle level and count as breaker failures;
    5xx responses and transport errors count as failures too. Failed requests
    are retried after a fresh delay until one succeeds or the breaker opens,
    so the only error a fetcher sees from upstream trouble is
    ``CircuitOpenError``. Other statuses are returned as-is.
    """

    def __init__(
        self,
        source: str,
        *,
        rate_controller: RateController,
        breaker: CircuitBreaker,
        client: httpx.AsyncClient,
        pause_sleep_seconds: float = 15.0,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.source = source
        self.rate_controller = rate_controller
        self.breaker = breaker
        self.client = client
        self.pause_sleep_seconds = pause_sleep_seconds
        self._sleep = sleep

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        async def attempt() -> httpx.Response:
            response = await self.client.get(url, **kwargs)
            blocked = response_looks_blocked(response)
            self.rate_controller.report_outcome(self.source, blocked)
            if blocked:
                raise SourceBlockedError(self.source, url, response.status_code)
            if response.status_code >= 500:
                response.raise_for_status()
            return response

        while True:
            if self.rate_controller.should_pause(self.source):
                logger.info("pausing source=%s seconds=%.1f", self.source, self.pause_sleep_seconds)
                await self._sleep(self.pause_sleep_seconds)

            await self._sleep(self.rate_controller.delay(self.source))

            try:
                return await self.breaker.execute(attempt)
            except (SourceBlockedError, httpx.HTTPStatusError, httpx.TransportError) as exc:
                if self.breaker.state is not CircuitState.CLOSED:
                    raise CircuitOpenError(self.source, self.breaker.remaining_cooldown()) from exc
                logger.warning(
                    "retrying source=%s consecutive_failures=%s error=%s",
                    self.source,
                    self.breaker.consecutive_failures,
                    exc,
                )

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        response = await self.get(url, **kwargs)
        response.raise_for_status()
        return response.json()
