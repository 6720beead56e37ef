from __future__ import annotations

import asyncio

import pytest

from outreach_scheduler.core.config import Settings
from outreach_scheduler.core.errors import InvalidInputError, StoreUnavailableError
from outreach_scheduler.core.results import ResultAccumulator
from outreach_scheduler.core.telemetry import _build_exporter, setup_telemetry
from outreach_scheduler.services.repository import PostgresRepository
from outreach_scheduler.services.store import call_store


def test_exporter_is_skipped_without_an_endpoint(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", raising=False)
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
    assert _build_exporter(Settings(otel_exporter_otlp_endpoint=None), "outreach-scheduler-worker") is None


def test_disabled_telemetry_is_a_no_op() -> None:
    runtime = setup_telemetry(Settings(otel_enabled=False))
    assert not runtime.enabled
    assert runtime.provider is None


def test_settings_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OUTREACH_PAGE_SIZE", "50")
    monkeypatch.setenv("OUTREACH_DRY_RUN", "true")
    settings = Settings()
    assert settings.page_size == 50
    assert settings.dry_run is True
    assert settings.max_retries == 3


def test_result_accumulator_separates_warnings_from_errors() -> None:
    first: ResultAccumulator[str] = ResultAccumulator()
    first.add("site-1")
    first.warn("guard_blocked", "already running", site_id="site-2", job_type="syncEmailsWorkflow")
    second: ResultAccumulator[str] = ResultAccumulator()
    second.fail("store_unavailable", "timeout")

    assert first.ok
    first.merge(second)
    assert not first.ok
    summary = first.summary()
    assert summary["items"] == 1
    assert summary["warnings"][0]["site_id"] == "site-2"
    assert summary["errors"][0]["code"] == "store_unavailable"


def test_call_store_passes_input_errors_through() -> None:
    async def bad_input() -> None:
        raise InvalidInputError("site_id is required")

    with pytest.raises(InvalidInputError):
        asyncio.run(call_store("get_job_status", bad_input(), timeout_seconds=1))


def test_repository_without_database_url_is_unavailable() -> None:
    repository = PostgresRepository(database_url=None, min_pool_size=1, max_pool_size=2)
    with pytest.raises(StoreUnavailableError, match="OUTREACH_DATABASE_URL"):
        asyncio.run(repository.list_sites())


def test_repository_maps_cron_status_rows() -> None:
    record = PostgresRepository._job_status_from_row(
        {
            "id": "1",
            "site_id": "site-1",
            "activity_name": "syncEmailsWorkflow",
            "status": "running",
            "last_run": "2026-03-01T10:00:00Z",
            "next_run": None,
            "retry_count": None,
            "error_message": None,
            "workflow_id": "wf-1",
            "created_at": None,
            "updated_at": None,
        }
    )
    assert record.job_type == "syncEmailsWorkflow"
    assert record.status == "RUNNING"
    assert record.retry_count == 0
    assert record.last_run is not None and record.last_run.tzinfo is not None
