from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
import logging
import uuid

from opentelemetry import trace

from gradfunnel.core.config import Settings, get_settings
from gradfunnel.core.telemetry import configure_logging, log_context, setup_tracing, shutdown_tracing
from gradfunnel.ingest.funnel import load_funnel_policies
from gradfunnel.jobs.fetch import SourceFetcher
from gradfunnel.jobs.replay import JsonlReplaySource
from gradfunnel.jobs.runner import IngestionRunner, RunSummary
from gradfunnel.services.repository import PostgresPostingStore
from gradfunnel.services.store import InMemoryStore, PostingStore
from gradfunnel.services.upsert import UpsertCoordinator
from gradfunnel.throttle.circuit_breaker import CircuitBreakerRegistry
from gradfunnel.throttle.policies import load_rate_policies
from gradfunnel.throttle.rate_controller import RateController

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def build_store(settings: Settings, *, dry_run: bool = False) -> PostingStore:
    if dry_run or not settings.database_url:
        logger.info("using in-memory store dry_run=%s", dry_run)
        return InMemoryStore()
    return PostgresPostingStore(
        settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )


async def run_ingestion(
    fetchers: Sequence[SourceFetcher],
    settings: Settings | None = None,
    store: PostingStore | None = None,
    *,
    ensure_schema: bool = False,
) -> RunSummary:
    settings = settings or get_settings()
    configure_logging(settings)
    run_id = uuid.uuid4().hex
    sources = [fetcher.name for fetcher in fetchers]
    tracing_runtime = setup_tracing(settings, run_id=run_id, sources=sources)

    rate_controller = RateController(
        load_rate_policies(settings.rate_policies_json),
        default_min_delay_ms=settings.default_min_delay_ms,
    )
    breakers = CircuitBreakerRegistry(
        failure_threshold=settings.circuit_failure_threshold,
        cooldown_seconds=settings.circuit_cooldown_seconds,
    )
    store = store or build_store(settings)

    try:
        with log_context(run_id=run_id), tracer.start_as_current_span("ingest.run") as span:
            span.set_attribute("ingest.run_id", run_id)
            span.set_attribute("ingest.sources", sources)
            if ensure_schema and isinstance(store, PostgresPostingStore):
                await store.ensure_schema()
            runner = IngestionRunner(
                settings,
                rate_controller=rate_controller,
                breakers=breakers,
                coordinator=UpsertCoordinator(store, max_concurrency=settings.max_concurrent_writes),
                funnel_policies=load_funnel_policies(settings.funnel_policies_json),
                run_id=run_id,
            )
            summary = await runner.run(fetchers)
            span.set_attribute("ingest.inserted", summary.inserted)
            span.set_attribute("ingest.updated", summary.updated)
            span.set_attribute("ingest.errors", summary.error_count)
            for source, alarms in summary.alarms.items():
                if alarms:
                    logger.warning("source=%s raised %s alarm(s)", source, len(alarms))
            logger.info("circuit states: %s", breakers.states())
            return summary
    finally:
        await store.close()
        shutdown_tracing(tracing_runtime)


def parse_replay_arg(value: str) -> JsonlReplaySource:
    name, sep, path = value.partition("=")
    if not sep or not name.strip() or not path.strip():
        raise argparse.ArgumentTypeError(f"expected SOURCE=PATH, got {value!r}")
    return JsonlReplaySource(name, path.strip())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gradfunnel", description="Run one early-career ingestion pass.")
    parser.add_argument(
        "--replay",
        metavar="SOURCE=PATH",
        action="append",
        type=parse_replay_arg,
        default=[],
        help="replay captured candidate records (JSON lines) as SOURCE; repeatable",
    )
    parser.add_argument("--dry-run", action="store_true", help="write to an in-memory store only")
    parser.add_argument("--ensure-schema", action="store_true", help="create the jobs table if it is missing")
    parser.add_argument("--run-timeout", type=float, default=None, help="override the run deadline in seconds")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if not args.replay:
        build_parser().error("at least one --replay SOURCE=PATH is required")

    settings = get_settings()
    if args.run_timeout is not None:
        settings = settings.model_copy(update={"run_timeout_seconds": args.run_timeout})

    summary = asyncio.run(
        run_ingestion(
            args.replay,
            settings=settings,
            store=build_store(settings, dry_run=args.dry_run),
            ensure_schema=args.ensure_schema,
        )
    )
    return 0 if summary.error_count == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
