from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from opentelemetry import trace

from outreach_scheduler.core.config import Settings, get_settings
from outreach_scheduler.core.errors import DispatchError, StoreUnavailableError
from outreach_scheduler.core.results import ResultAccumulator
from outreach_scheduler.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from outreach_scheduler.jobs.routing import EscalationContext, Route, route
from outreach_scheduler.jobs.scheduling import (
    SchedulingDecisionEngine,
    prerequisite_for,
    scheduling_options,
    scheduling_statistics,
)
from outreach_scheduler.jobs.stuck_guard import StuckJobGuard, stale_after_hours_for
from outreach_scheduler.services.records import JobStatus, JobStatusRecord
from outreach_scheduler.services.repository import get_repository
from outreach_scheduler.services.store import OutreachStore, call_store
from outreach_scheduler.services.workflow_client import WorkflowClient, workflow_id_for

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(slots=True, frozen=True)
class Dispatched:
    site_id: str
    job_type: str
    route: Route
    workflow_id: str
    reason: str
    dry_run: bool = False


async def run_sweep(
    store: OutreachStore,
    client: WorkflowClient,
    settings: Settings,
    job_type: str,
    *,
    now: datetime | None = None,
) -> ResultAccumulator[Dispatched]:
    """Plan, guard, route and dispatch one job type across every site."""
    current = now or datetime.now(timezone.utc)
    options = scheduling_options(settings)
    outcome: ResultAccumulator[Dispatched] = ResultAccumulator()
    timeout = settings.store_timeout_seconds

    with tracer.start_as_current_span("worker.sweep") as span:
        span.set_attribute("job.type", job_type)
        try:
            sites = await call_store("list_sites", store.list_sites(), timeout_seconds=timeout)
            statuses = await call_store(
                "list_job_statuses",
                store.list_job_statuses(job_type, [site.id for site in sites]),
                timeout_seconds=timeout,
            )
        except StoreUnavailableError as exc:
            outcome.fail("store_unavailable", str(exc), job_type=job_type)
            return outcome

        engine = SchedulingDecisionEngine(prerequisite_for(job_type))
        planned = engine.plan_sites(sites, statuses, options, now=current)
        logger.info("sweep plan job_type=%s stats=%s", job_type, scheduling_statistics(planned))

        guard = StuckJobGuard(store, store_timeout_seconds=timeout)
        stale_after = stale_after_hours_for(
            job_type,
            fast_sync=settings.stale_after_hours_fast_sync,
            daily=settings.stale_after_hours_daily,
            maintenance=settings.stale_after_hours_maintenance,
        )
        for entry in planned:
            if not entry.should_schedule:
                continue
            site_id = entry.site.id
            verdict = await guard.evaluate(job_type, site_id, stale_after, now=current, reset=not options.dry_run)
            if not verdict.can_proceed:
                outcome.warn("guard_blocked", verdict.reason, site_id=site_id, job_type=job_type)
                continue

            last = entry.last_status
            retrying = last is not None and last.status == JobStatus.FAILED.value
            lane = route(
                job_type,
                context=EscalationContext(
                    is_retry=retrying,
                    hours_stuck=verdict.hours_stuck if verdict.was_stuck else None,
                ),
            )
            workflow_id = workflow_id_for(job_type, site_id, current.strftime("%Y%m%d%H%M%S"))
            if options.dry_run:
                outcome.add(Dispatched(site_id, job_type, lane, workflow_id, entry.decision.reason, dry_run=True))
                continue

            try:
                await client.start_workflow(job_type, site_id, lane, workflow_id=workflow_id)
            except DispatchError as exc:
                outcome.warn("dispatch_failed", str(exc), site_id=site_id, job_type=job_type)
                continue

            record = JobStatusRecord(
                site_id=site_id,
                job_type=job_type,
                status=JobStatus.SCHEDULED.value,
                last_run=last.last_run if last is not None else None,
                next_run=current + timedelta(hours=options.min_hours_between_runs),
                retry_count=(last.retry_count + 1) if retrying and last is not None else 0,
                workflow_id=workflow_id,
                created_at=current,
                updated_at=current,
            )
            try:
                await call_store("upsert_job_status", store.upsert_job_status(record), timeout_seconds=timeout)
            except StoreUnavailableError as exc:
                # The workflow already started; the next sweep's guard covers the missing record.
                outcome.warn("status_write_failed", str(exc), site_id=site_id, job_type=job_type)
            outcome.add(Dispatched(site_id, job_type, lane, workflow_id, entry.decision.reason))

        span.set_attribute("sweep.dispatched", len(outcome.items))
        span.set_attribute("sweep.warnings", len(outcome.warnings))
    return outcome


async def run_worker() -> None:
    settings = get_settings()
    configure_logging()
    telemetry_runtime = setup_telemetry(settings, service_suffix="worker")
    store = get_repository()
    client = WorkflowClient(
        base_url=settings.orchestrator_base_url,
        api_key=settings.orchestrator_api_key,
        timeout_seconds=settings.dispatch_timeout_seconds,
    )
    guard = StuckJobGuard(store, store_timeout_seconds=settings.store_timeout_seconds)

    backoff = settings.sweep_interval_seconds
    last_cleanup_at = 0.0

    try:
        while True:
            try:
                with tracer.start_as_current_span("worker.cycle"):
                    now = time.monotonic()
                    if now - last_cleanup_at >= settings.stuck_cleanup_interval_seconds:
                        cleaned = await guard.clean_stuck_records(
                            settings.stale_after_hours_daily,
                            limit=settings.stuck_cleanup_batch_size,
                        )
                        if not cleaned.ok:
                            logger.warning("stuck cleanup incomplete: %s", cleaned.summary())
                        last_cleanup_at = now

                    for job_type in settings.sweep_job_types:
                        outcome = await run_sweep(store, client, settings, job_type)
                        logger.info("sweep done job_type=%s summary=%s", job_type, outcome.summary())

                    backoff = settings.sweep_interval_seconds
                    await asyncio.sleep(settings.sweep_interval_seconds)
            except Exception as exc:  # pragma: no cover - loop robustness
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (2.0 + jitter), settings.max_backoff_seconds)
                logger.exception("worker iteration failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = sleep_for
    finally:
        await store.close()
        shutdown_telemetry(telemetry_runtime)


if __name__ == "__main__":
    asyncio.run(run_worker())
