from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import uuid

import httpx
from opentelemetry import trace

from gradfunnel.core.config import Settings
from gradfunnel.core.telemetry import log_context
from gradfunnel.ingest.funnel import FunnelPolicy, FunnelReport, FunnelTelemetry
from gradfunnel.ingest.pipeline import IngestionPipeline
from gradfunnel.jobs.fetch import FetchContext, SourceFetcher
from gradfunnel.schemas.records import CandidateRecord, Posting
from gradfunnel.services.upsert import UpsertCoordinator
from gradfunnel.throttle.circuit_breaker import CircuitBreakerRegistry, CircuitOpenError
from gradfunnel.throttle.rate_controller import RateController

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(slots=True)
class RunSummary:
    run_id: str
    started_at: datetime
    finished_at: datetime | None = None
    reports: dict[str, FunnelReport] = field(default_factory=dict)
    alarms: dict[str, list[str]] = field(default_factory=dict)

    @property
    def inserted(self) -> int:
        return sum(report.inserted for report in self.reports.values())

    @property
    def updated(self) -> int:
        return sum(report.updated for report in self.reports.values())

    @property
    def error_count(self) -> int:
        return sum(len(report.errors) for report in self.reports.values())


class _RunDeadline(Exception):
    pass


class IngestionRunner:
    """Drives every configured source through the pipeline for one run.

    Sources run concurrently up to ``max_concurrent_sources``. Postings are
    written in batches as they are produced; a batch already handed to the
    store is allowed to finish when the run deadline passes or the run is
    cancelled, and whatever is still buffered is flushed before the source's
    funnel is closed.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        rate_controller: RateController,
        breakers: CircuitBreakerRegistry,
        coordinator: UpsertCoordinator,
        funnel_policies: Mapping[str, FunnelPolicy] | None = None,
        client: httpx.AsyncClient | None = None,
        run_id: str | None = None,
    ) -> None:
        self.settings = settings
        self.rate_controller = rate_controller
        self.breakers = breakers
        self.coordinator = coordinator
        self.funnel_policies = dict(funnel_policies or {})
        self.run_id = run_id or uuid.uuid4().hex
        self._client = client

    async def run(self, fetchers: Sequence[SourceFetcher]) -> RunSummary:
        self.rate_controller.require(
            fetcher.name for fetcher in fetchers if getattr(fetcher, "requires_rate_policy", True)
        )

        summary = RunSummary(run_id=self.run_id, started_at=datetime.now(timezone.utc))
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.run_timeout_seconds
        semaphore = asyncio.Semaphore(max(1, self.settings.max_concurrent_sources))

        async def run_one(fetcher: SourceFetcher, client: httpx.AsyncClient) -> None:
            async with semaphore:
                with log_context(source=fetcher.name):
                    funnel = FunnelTelemetry(fetcher.name, self.funnel_policies.get(fetcher.name.lower()))
                    try:
                        await self._run_source(fetcher, funnel, client, deadline)
                    finally:
                        summary.alarms[fetcher.name] = funnel.log(fetcher.name)
                        summary.reports[fetcher.name] = funnel.close()

        with log_context(run_id=self.run_id):
            logger.info("ingestion run started run_id=%s sources=%s", self.run_id, len(fetchers))
            async with self._http_client() as client:
                await asyncio.gather(*(run_one(fetcher, client) for fetcher in fetchers))
            summary.finished_at = datetime.now(timezone.utc)
            logger.info(
                "ingestion run finished run_id=%s inserted=%s updated=%s errors=%s",
                self.run_id,
                summary.inserted,
                summary.updated,
                summary.error_count,
            )
        return summary

    async def _run_source(
        self,
        fetcher: SourceFetcher,
        funnel: FunnelTelemetry,
        client: httpx.AsyncClient,
        deadline: float,
    ) -> None:
        context = FetchContext(
            fetcher.name,
            rate_controller=self.rate_controller,
            breaker=self.breakers.get(fetcher.name),
            client=client,
            pause_sleep_seconds=self.settings.pause_sleep_seconds,
        )
        pipeline = IngestionPipeline(run_id=self.run_id, description_limit=self.settings.description_max_length)
        batch_size = max(1, self.settings.upsert_batch_size)
        pending: list[Posting] = []
        in_flight: set[asyncio.Future[None]] = set()
        records = fetcher.fetch(context)

        with tracer.start_as_current_span("ingest.source_run") as span:
            span.set_attribute("ingest.source", fetcher.name)
            span.set_attribute("ingest.run_id", self.run_id)
            try:
                while True:
                    try:
                        record = await self._next_record(records, deadline)
                    except StopAsyncIteration:
                        break
                    except _RunDeadline:
                        logger.warning("run deadline reached source=%s; stopping fetch", fetcher.name)
                        funnel.record_error("run timeout: fetching stopped early")
                        break
                    except CircuitOpenError as exc:
                        logger.warning("skipping rest of source=%s: %s", fetcher.name, exc)
                        funnel.record_error(f"circuit open: {exc}")
                        break
                    except Exception as exc:
                        logger.exception("fetch failed source=%s", fetcher.name)
                        funnel.record_error(f"fetch failed: {type(exc).__name__}: {exc}")
                        break

                    result = pipeline.process(record, funnel)
                    if result.posting is None:
                        continue
                    pending.append(result.posting)
                    if len(pending) >= batch_size:
                        batch, pending = pending, []
                        await self._shielded_flush(batch, funnel, in_flight)
            finally:
                if pending:
                    batch, pending = pending, []
                    in_flight.add(asyncio.ensure_future(self._flush(batch, funnel)))
                if in_flight:
                    await asyncio.shield(asyncio.gather(*in_flight))
                await _close_iterator(records, fetcher.name)
                report = funnel.snapshot()
                span.set_attribute("ingest.raw", report.raw)
                span.set_attribute("ingest.eligible", report.eligible)
                span.set_attribute("ingest.inserted", report.inserted)
                span.set_attribute("ingest.updated", report.updated)
                span.set_attribute("ingest.errors", len(report.errors))

    async def _next_record(self, records: AsyncIterator[CandidateRecord], deadline: float) -> CandidateRecord:
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise _RunDeadline()
        try:
            return await asyncio.wait_for(_anext(records), timeout=remaining)
        except asyncio.TimeoutError as exc:
            raise _RunDeadline() from exc

    async def _shielded_flush(
        self,
        batch: list[Posting],
        funnel: FunnelTelemetry,
        in_flight: set[asyncio.Future[None]],
    ) -> None:
        task = asyncio.ensure_future(self._flush(batch, funnel))
        in_flight.add(task)
        task.add_done_callback(in_flight.discard)
        await asyncio.shield(task)

    async def _flush(self, batch: list[Posting], funnel: FunnelTelemetry) -> None:
        with tracer.start_as_current_span("ingest.upsert_batch") as span:
            span.set_attribute("ingest.source", funnel.source)
            span.set_attribute("ingest.batch_size", len(batch))
            result = await self.coordinator.upsert(batch)
            span.set_attribute("ingest.inserted", result.inserted)
            span.set_attribute("ingest.updated", result.updated)
        funnel.record_upsert(result.inserted, result.updated)
        for error in result.errors:
            funnel.record_error(error)

    def _http_client(self) -> httpx.AsyncClient | _BorrowedClient:
        if self._client is not None:
            return _BorrowedClient(self._client)
        return httpx.AsyncClient(
            timeout=self.settings.http_timeout_seconds,
            headers={"User-Agent": self.settings.http_user_agent},
            follow_redirects=True,
        )


class _BorrowedClient:
    """Async context wrapper that leaves a caller-owned client open."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def __aenter__(self) -> httpx.AsyncClient:
        return self.client

    async def __aexit__(self, *exc_info: object) -> None:
        return None


async def _anext(records: AsyncIterator[CandidateRecord]) -> CandidateRecord:
    return await records.__anext__()


async def _close_iterator(records: AsyncIterator[CandidateRecord], source: str) -> None:
    aclose = getattr(records, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception:
        logger.exception("failed to close fetcher source=%s", source)
