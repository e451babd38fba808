from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
import logging
import os

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from gradfunnel.core.config import Settings

logger = logging.getLogger(__name__)

PLAIN_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
RUN_LOG_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s run_id=%(run_id)s source=%(source)s "
    "trace_id=%(trace_id)s %(message)s"
)

RUN_ID_ATTRIBUTE = "gradfunnel.run_id"
SOURCES_ATTRIBUTE = "gradfunnel.sources"
OTLP_ENDPOINT_ENV = ("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", "OTEL_EXPORTER_OTLP_ENDPOINT")

_current_run_id: ContextVar[str] = ContextVar("gradfunnel_run_id", default="-")
_current_source: ContextVar[str] = ContextVar("gradfunnel_source", default="-")
_fetch_instrumentor = HTTPXClientInstrumentor()


@contextmanager
def log_context(*, run_id: str | None = None, source: str | None = None) -> Iterator[None]:
    """Tag every log line emitted inside the block with the run and/or source.

    Tasks started inside the block inherit the tags, so the runner binds the
    run once and each per-source task binds its own source name.
    """
    resets = []
    if run_id is not None:
        resets.append((_current_run_id, _current_run_id.set(run_id)))
    if source is not None:
        resets.append((_current_source, _current_source.set(source)))
    try:
        yield
    finally:
        for var, token in reversed(resets):
            var.reset(token)


class RunContextFilter(logging.Filter):
    """Adds ``run_id``, ``source`` and ``trace_id`` to each record it sees."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = _current_run_id.get()
        record.source = _current_source.get()
        span_context = trace.get_current_span().get_span_context()
        record.trace_id = format(span_context.trace_id, "032x") if span_context.is_valid else "-"
        return True


def configure_logging(settings: Settings) -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    handler = logging.StreamHandler()
    if settings.log_run_context:
        handler.addFilter(RunContextFilter())
        handler.setFormatter(logging.Formatter(RUN_LOG_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(PLAIN_LOG_FORMAT))
    logging.basicConfig(level=settings.log_level.upper(), handlers=[handler])


@dataclass(slots=True)
class TracingRuntime:
    provider: TracerProvider | None = None

    @property
    def enabled(self) -> bool:
        return self.provider is not None


def build_tracer_provider(settings: Settings, *, run_id: str, sources: Iterable[str] = ()) -> TracerProvider:
    resource = Resource.create(
        {
            SERVICE_NAME: settings.otel_service_name,
            DEPLOYMENT_ENVIRONMENT: settings.environment,
            RUN_ID_ATTRIBUTE: run_id,
            SOURCES_ATTRIBUTE: sorted({source.lower() for source in sources}),
        }
    )
    provider = TracerProvider(resource=resource, sampler=TraceIdRatioBased(settings.otel_trace_sample_ratio))
    if settings.otel_exporter_otlp_endpoint:
        exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            headers=otlp_headers(settings.otel_exporter_otlp_headers) or None,
        )
    elif any(name in os.environ for name in OTLP_ENDPOINT_ENV):
        # The exporter reads endpoint and headers from the OTEL_* variables itself.
        exporter = OTLPSpanExporter()
    else:
        logger.info("no OTLP endpoint configured; spans for run_id=%s are not exported", run_id)
        return provider
    provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def setup_tracing(settings: Settings, *, run_id: str, sources: Iterable[str] = ()) -> TracingRuntime:
    """Install a run-scoped tracer provider and trace outbound fetches.

    Source-run and upsert-batch spans from the runner, and every request a
    fetcher makes, are exported under one resource carrying the run id.
    """
    if not settings.otel_enabled:
        return TracingRuntime()
    provider = build_tracer_provider(settings, run_id=run_id, sources=sources)
    trace.set_tracer_provider(provider)
    _fetch_instrumentor.instrument()
    logger.info("tracing enabled run_id=%s service=%s", run_id, settings.otel_service_name)
    return TracingRuntime(provider=provider)


def shutdown_tracing(runtime: TracingRuntime) -> None:
    if runtime.provider is None:
        return
    _fetch_instrumentor.uninstrument()
    runtime.provider.force_flush()
    runtime.provider.shutdown()


def otlp_headers(raw: str | None) -> dict[str, str]:
    """Parse ``GF_OTEL_EXPORTER_OTLP_HEADERS`` (``key=value,key2=value2``)."""
    pairs = (item.partition("=") for item in (raw or "").split(","))
    return {key.strip(): value.strip() for key, sep, value in pairs if sep and key.strip()}
