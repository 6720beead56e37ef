from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from opentelemetry import trace

from outreach_scheduler.core.errors import InvalidInputError, StoreUnavailableError
from outreach_scheduler.core.results import ResultAccumulator
from outreach_scheduler.services.records import JobStatus, JobStatusRecord, hours_between
from outreach_scheduler.services.store import JobStatusStore, call_store

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

FAST_SYNC_JOB_TYPES = frozenset({"syncEmailsWorkflow", "syncEmailsScheduleWorkflow"})
MAINTENANCE_JOB_TYPES = frozenset({"dailyOperationsWorkflow", "scheduleActivitiesWorkflow", "cronWorkflow"})


@dataclass(slots=True, frozen=True)
class GuardVerdict:
    can_proceed: bool
    was_stuck: bool
    reason: str
    hours_stuck: float | None = None
    previous_status: str | None = None
    cleaned: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "can_proceed": self.can_proceed,
            "was_stuck": self.was_stuck,
            "reason": self.reason,
            "hours_stuck": round(self.hours_stuck, 3) if self.hours_stuck is not None else None,
            "previous_status": self.previous_status,
            "cleaned": self.cleaned,
        }


def stale_after_hours_for(
    job_type: str,
    *,
    fast_sync: float = 6.0,
    daily: float = 24.0,
    maintenance: float = 48.0,
) -> float:
    if job_type in FAST_SYNC_JOB_TYPES:
        return fast_sync
    if job_type in MAINTENANCE_JOB_TYPES:
        return maintenance
    return daily


def running_since(record: JobStatusRecord) -> datetime | None:
    return record.last_run or record.updated_at or record.created_at


def is_stuck(record: JobStatusRecord, stale_after_hours: float, now: datetime | None = None) -> bool:
    now = now or datetime.now(timezone.utc)
    started = running_since(record)
    if record.status != JobStatus.RUNNING.value or started is None:
        return False
    return hours_between(started, now) > stale_after_hours


class StuckJobGuard:
    """Mutual-exclusion check on the last recorded run of (site, job type).

    A RUNNING record older than the staleness threshold is presumed abandoned and
    forced to FAILED so the next run can start. When the store cannot be reached
    the guard lets the run proceed; duplicate execution is tolerated downstream.
    """

    def __init__(self, store: JobStatusStore, *, store_timeout_seconds: float | None = None) -> None:
        self.store = store
        self.store_timeout_seconds = store_timeout_seconds

    async def evaluate(
        self,
        job_type: str,
        site_id: str,
        stale_after_hours: float,
        *,
        now: datetime | None = None,
        reset: bool = True,
    ) -> GuardVerdict:
        """Check (site, job type) for a live run; with ``reset=False`` a stuck record is reported, not rewritten."""
        if not isinstance(job_type, str) or not job_type.strip():
            raise InvalidInputError("job_type is required to check for stuck runs")
        if not isinstance(site_id, str) or not site_id.strip():
            raise InvalidInputError("site_id is required to check for stuck runs")
        if stale_after_hours <= 0:
            raise InvalidInputError("stale_after_hours must be positive")
        current = now or datetime.now(timezone.utc)

        with tracer.start_as_current_span("stuck_guard.evaluate") as span:
            span.set_attribute("site.id", site_id)
            span.set_attribute("job.type", job_type)
            try:
                record = await call_store(
                    "get_job_status",
                    self.store.get_job_status(site_id, job_type),
                    timeout_seconds=self.store_timeout_seconds,
                )
            except StoreUnavailableError as exc:
                logger.warning(
                    "job status unavailable for job_type=%s site_id=%s; proceeding without validation: %s",
                    job_type,
                    site_id,
                    exc,
                )
                return GuardVerdict(True, False, f"Store unavailable - proceeding without validation ({exc})")

            if record is None:
                return GuardVerdict(True, False, "No previous run recorded - first execution")

            if record.status != JobStatus.RUNNING.value:
                return GuardVerdict(
                    True,
                    False,
                    f"Current status is {record.status or 'unknown'} - not running",
                    previous_status=record.status,
                )

            started = running_since(record)
            if started is None:
                if not reset:
                    return _stuck_unchanged(record, None, "no start time recorded")
                return await self._reset(record, None, stale_after_hours, current, "no start time recorded")

            hours_stuck = hours_between(started, current)
            span.set_attribute("job.hours_running", hours_stuck)
            if hours_stuck <= stale_after_hours:
                return GuardVerdict(
                    False,
                    False,
                    f"Already running for {hours_stuck:.1f}h - within {stale_after_hours:g}h threshold",
                    hours_stuck=hours_stuck,
                    previous_status=record.status,
                )
            if not reset:
                return _stuck_unchanged(record, hours_stuck, f"{hours_stuck:.1f}h > {stale_after_hours:g}h threshold")
            return await self._reset(record, hours_stuck, stale_after_hours, current, f"{hours_stuck:.1f}h")

    async def clean_stuck_records(
        self,
        older_than_hours: float,
        *,
        now: datetime | None = None,
        limit: int = 100,
    ) -> ResultAccumulator[JobStatusRecord]:
        """Reset every RUNNING record untouched for longer than ``older_than_hours``."""
        current = now or datetime.now(timezone.utc)
        outcome: ResultAccumulator[JobStatusRecord] = ResultAccumulator()
        try:
            records = await call_store(
                "list_running_job_statuses",
                self.store.list_running_job_statuses(current - timedelta(hours=older_than_hours), max(1, limit)),
                timeout_seconds=self.store_timeout_seconds,
            )
        except StoreUnavailableError as exc:
            outcome.fail("store_unavailable", str(exc))
            return outcome

        for record in records:
            started = running_since(record)
            hours_stuck = hours_between(started, current) if started is not None else None
            message = _reset_message(hours_stuck, "preventive cleanup")
            try:
                await call_store(
                    "upsert_job_status",
                    self.store.upsert_job_status(_failed(record, message, current)),
                    timeout_seconds=self.store_timeout_seconds,
                )
            except StoreUnavailableError as exc:
                outcome.warn("reset_failed", str(exc), site_id=record.site_id, job_type=record.job_type)
                continue
            outcome.add(record)
        if outcome.items or outcome.warnings:
            logger.info("stuck cleanup reset=%s failed=%s", len(outcome.items), len(outcome.warnings))
        return outcome

    async def _reset(
        self,
        record: JobStatusRecord,
        hours_stuck: float | None,
        stale_after_hours: float,
        now: datetime,
        label: str,
    ) -> GuardVerdict:
        message = _reset_message(hours_stuck, f"exceeded {stale_after_hours:g}h threshold")
        try:
            await call_store(
                "upsert_job_status",
                self.store.upsert_job_status(_failed(record, message, now)),
                timeout_seconds=self.store_timeout_seconds,
            )
        except StoreUnavailableError as exc:
            logger.warning(
                "could not reset stuck job_type=%s site_id=%s; proceeding anyway: %s",
                record.job_type,
                record.site_id,
                exc,
            )
            return GuardVerdict(
                True,
                True,
                f"Stuck RUNNING record ({label}) could not be reset - proceeding ({exc})",
                hours_stuck=hours_stuck,
                previous_status=record.status,
            )

        logger.info(
            "cleaned stuck record job_type=%s site_id=%s hours_stuck=%s threshold=%s",
            record.job_type,
            record.site_id,
            f"{hours_stuck:.1f}" if hours_stuck is not None else "unknown",
            stale_after_hours,
        )
        return GuardVerdict(
            True,
            True,
            f"Cleaned stuck RUNNING record ({label} > {stale_after_hours:g}h threshold)",
            hours_stuck=hours_stuck,
            previous_status=record.status,
            cleaned=True,
        )


def _stuck_unchanged(record: JobStatusRecord, hours_stuck: float | None, label: str) -> GuardVerdict:
    return GuardVerdict(
        True,
        True,
        f"Stuck RUNNING record ({label}) left unchanged - reset skipped",
        hours_stuck=hours_stuck,
        previous_status=record.status,
    )


def _reset_message(hours_stuck: float | None, detail: str) -> str:
    duration = f"{hours_stuck:.1f}h" if hours_stuck is not None else "an unknown time"
    return f"Auto-reset from stuck RUNNING state after {duration} - {detail}"


def _failed(record: JobStatusRecord, message: str, now: datetime) -> JobStatusRecord:
    return record.transitioned(JobStatus.FAILED, error_message=message, updated_at=now)
