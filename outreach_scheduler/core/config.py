from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "outreach-scheduler"
    environment: str = "dev"
    api_key: str | None = None
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    store_timeout_seconds: float = 10.0
    orchestrator_base_url: str = "http://localhost:3000"
    orchestrator_api_key: str | None = None
    dispatch_timeout_seconds: float = 10.0
    sweep_job_types: list[str] = ["syncEmailsWorkflow"]
    sweep_interval_seconds: float = 300.0
    stuck_cleanup_interval_seconds: float = 3600.0
    stuck_cleanup_batch_size: int = 100
    max_backoff_seconds: float = 60.0
    dry_run: bool = False
    max_retries: int = 3
    retry_delay_minutes: float = 15.0
    min_hours_between_runs: float = 3.0
    running_stale_hours: float = 2.0
    max_sites_to_schedule: int | None = None
    hours_threshold: float = 48.0
    page_size: int = 30
    max_pages: int = 10
    min_leads_required: int = 1
    task_batch_size: int = 100
    protected_task_stage: str = "awareness"
    stale_after_hours_fast_sync: float = 6.0
    stale_after_hours_daily: float = 24.0
    stale_after_hours_maintenance: float = 48.0
    otel_enabled: bool = True
    otel_service_name: str = "outreach-scheduler"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="OUTREACH_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
