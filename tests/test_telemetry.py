from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from gradfunnel.core.config import Settings
from gradfunnel.core.telemetry import (
    RUN_ID_ATTRIBUTE,
    SOURCES_ATTRIBUTE,
    RunContextFilter,
    build_tracer_provider,
    log_context,
    otlp_headers,
    setup_tracing,
    shutdown_tracing,
)
from gradfunnel.jobs.replay import JsonlReplaySource
from gradfunnel.main import run_ingestion
from gradfunnel.services.store import InMemoryStore


class CollectingHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []
        self.addFilter(RunContextFilter())

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


def test_otlp_headers() -> None:
    assert otlp_headers("Authorization=Bearer abc, x-team = ingest,broken,=skip") == {
        "Authorization": "Bearer abc",
        "x-team": "ingest",
    }
    assert otlp_headers(None) == {}


def test_tracing_disabled_is_a_no_op() -> None:
    runtime = setup_tracing(Settings(otel_enabled=False), run_id="run-1", sources=["lever"])
    assert runtime.enabled is False
    assert runtime.provider is None
    shutdown_tracing(runtime)


def test_tracer_provider_resource_carries_run_and_sources(monkeypatch) -> None:
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", raising=False)
    settings = Settings(otel_enabled=True, environment="staging")

    provider = build_tracer_provider(settings, run_id="run-42", sources=["Lever", "greenhouse", "lever"])
    try:
        attributes = provider.resource.attributes
        assert attributes[RUN_ID_ATTRIBUTE] == "run-42"
        assert tuple(attributes[SOURCES_ATTRIBUTE]) == ("greenhouse", "lever")
        assert attributes["service.name"] == "gradfunnel-ingest"
        assert attributes["deployment.environment"] == "staging"
    finally:
        provider.shutdown()


def test_log_context_tags_records_and_resets() -> None:
    context_filter = RunContextFilter()
    record = logging.LogRecord("gradfunnel.jobs.runner", logging.INFO, __file__, 1, "hello", None, None)

    with log_context(run_id="run-7"):
        with log_context(source="lever"):
            context_filter.filter(record)
            assert (record.run_id, record.source) == ("run-7", "lever")
        context_filter.filter(record)
        assert (record.run_id, record.source) == ("run-7", "-")

    context_filter.filter(record)
    assert (record.run_id, record.source, record.trace_id) == ("-", "-", "-")


def test_run_ingestion_tags_logs_and_rows_with_one_run_id(tmp_path: Path) -> None:
    capture = tmp_path / "lever.jsonl"
    capture.write_text(
        json.dumps({"title": "Graduate Trainee", "company": "Acme", "location": "Lisbon, Portugal"}) + "\n",
        encoding="utf-8",
    )
    store = InMemoryStore()
    handler = CollectingHandler()
    package_logger = logging.getLogger("gradfunnel")
    previous_level = package_logger.level
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.INFO)
    try:
        summary = asyncio.run(
            run_ingestion([JsonlReplaySource("lever", capture)], settings=Settings(otel_enabled=False), store=store)
        )
    finally:
        package_logger.removeHandler(handler)
        package_logger.setLevel(previous_level)

    (row,) = store.postings.values()
    assert row["scraper_run_id"] == summary.run_id
    assert handler.records
    assert {record.run_id for record in handler.records} == {summary.run_id}
    funnel_lines = [record for record in handler.records if "FUNNEL" in record.getMessage()]
    assert [record.source for record in funnel_lines] == ["lever"]


def test_settings_read_prefixed_environment(monkeypatch) -> None:
    monkeypatch.setenv("GF_UPSERT_BATCH_SIZE", "25")
    monkeypatch.setenv("GF_RATE_POLICIES_JSON", '{"acme": {}}')
    monkeypatch.setenv("GF_LOG_RUN_CONTEXT", "false")
    settings = Settings()
    assert settings.upsert_batch_size == 25
    assert settings.rate_policies_json == '{"acme": {}}'
    assert settings.log_run_context is False
