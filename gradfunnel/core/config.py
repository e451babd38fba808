from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 5
    run_timeout_seconds: float = 1800.0
    max_concurrent_sources: int = 4
    max_concurrent_writes: int = 8
    upsert_batch_size: int = 100
    description_max_length: int = 2000
    circuit_failure_threshold: int = 5
    circuit_cooldown_seconds: float = 60.0
    default_min_delay_ms: int = 2000
    pause_sleep_seconds: float = 15.0
    http_timeout_seconds: float = 15.0
    http_user_agent: str = "gradfunnel-ingest/1.0 (+early-career job index)"
    rate_policies_json: str | None = None
    funnel_policies_json: str | None = None
    log_level: str = "INFO"
    log_run_context: bool = True
    otel_enabled: bool = False
    otel_service_name: str = "gradfunnel-ingest"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0

    model_config = SettingsConfigDict(env_prefix="GF_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
