"""Per-site decision table for recurring jobs.

``decide`` answers "should this job be scheduled for this site now?" from the
site's prerequisite (a usable delivery channel) and the last recorded job
status. It is a pure function of its inputs: ``now`` is passed in, nothing is
read from the store and nothing is written.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from outreach_scheduler.core.config import Settings
from outreach_scheduler.core.errors import InvalidInputError
from outreach_scheduler.jobs.stuck_guard import FAST_SYNC_JOB_TYPES
from outreach_scheduler.schemas.channels import PrerequisiteCheck, validate_email_channel
from outreach_scheduler.services.records import (
    JobStatus,
    JobStatusRecord,
    Site,
    hours_between,
)

Prerequisite = Callable[[Site], PrerequisiteCheck]

NO_STATUS = "NO_STATUS"


@dataclass(slots=True, frozen=True)
class SchedulingOptions:
    force_schedule_all: bool = False
    max_retries: int = 3
    retry_delay_minutes: float = 15.0
    min_hours_between_runs: float = 3.0
    running_stale_hours: float = 2.0
    max_sites_to_schedule: int | None = None
    dry_run: bool = False

    def validate(self) -> None:
        errors: list[str] = []
        if self.max_sites_to_schedule is not None and self.max_sites_to_schedule < 0:
            errors.append("max_sites_to_schedule must be a positive number")
        if self.min_hours_between_runs < 0:
            errors.append("min_hours_between_runs must be a positive number")
        if self.max_retries < 0:
            errors.append("max_retries must be a positive number")
        if self.retry_delay_minutes < 0:
            errors.append("retry_delay_minutes must be a positive number")
        if self.running_stale_hours < 0:
            errors.append("running_stale_hours must be a positive number")
        if errors:
            raise InvalidInputError("; ".join(errors))


@dataclass(slots=True, frozen=True)
class SchedulingDecision:
    should_schedule: bool
    reason: str
    has_valid_prerequisite: bool

    def as_dict(self) -> dict[str, Any]:
        return {
            "should_schedule": self.should_schedule,
            "reason": self.reason,
            "has_valid_prerequisite": self.has_valid_prerequisite,
        }


@dataclass(slots=True)
class PlannedSite:
    site: Site
    last_status: JobStatusRecord | None
    decision: SchedulingDecision

    @property
    def should_schedule(self) -> bool:
        return self.decision.should_schedule


def email_channel_prerequisite(site: Site) -> PrerequisiteCheck:
    """Email-driven jobs need a complete, enabled email channel."""
    return validate_email_channel(site.channels.email)


def any_channel_prerequisite(site: Site) -> PrerequisiteCheck:
    """Outreach jobs need at least one enabled email or WhatsApp channel."""
    channels = site.channels
    if channels.has_any_channel:
        enabled = [
            name
            for name, available in (("email", channels.has_email_channel), ("whatsapp", channels.has_whatsapp_channel))
            if available
        ]
        return PrerequisiteCheck(True, f"Channels available: {', '.join(enabled)}")
    return PrerequisiteCheck(
        False,
        "No communication channels (email or WhatsApp) are configured and enabled",
        tuple(channels.issues),
    )


def prerequisite_for(job_type: str) -> Prerequisite:
    """Email-sync jobs need a usable email channel; every other job needs any enabled channel."""
    if job_type in FAST_SYNC_JOB_TYPES:
        return email_channel_prerequisite
    return any_channel_prerequisite


def scheduling_options(settings: Settings) -> SchedulingOptions:
    return SchedulingOptions(
        max_retries=settings.max_retries,
        retry_delay_minutes=settings.retry_delay_minutes,
        min_hours_between_runs=settings.min_hours_between_runs,
        running_stale_hours=settings.running_stale_hours,
        max_sites_to_schedule=settings.max_sites_to_schedule,
        dry_run=settings.dry_run,
    )


class SchedulingDecisionEngine:
    def __init__(self, prerequisite: Prerequisite = email_channel_prerequisite) -> None:
        self.prerequisite = prerequisite

    def decide(
        self,
        site: Site,
        last_status: JobStatusRecord | None,
        options: SchedulingOptions | None = None,
        *,
        now: datetime | None = None,
    ) -> SchedulingDecision:
        if not isinstance(site.id, str) or not site.id.strip():
            raise InvalidInputError("site.id is required to make a scheduling decision")
        options = options or SchedulingOptions()
        current = now or datetime.now(timezone.utc)

        check = self.prerequisite(site)
        if options.force_schedule_all and check.is_valid:
            return SchedulingDecision(True, "Force schedule all enabled - scheduling regardless of status", True)
        if not check.is_valid:
            return SchedulingDecision(False, f"Prerequisite invalid: {check.reason}", False)

        should_schedule, reason = _decide_from_status(last_status, options, current)
        return SchedulingDecision(should_schedule, reason, True)

    def plan_sites(
        self,
        sites: Iterable[Site],
        statuses: Iterable[JobStatusRecord],
        options: SchedulingOptions | None = None,
        *,
        now: datetime | None = None,
    ) -> list[PlannedSite]:
        options = options or SchedulingOptions()
        options.validate()
        current = now or datetime.now(timezone.utc)
        by_site = {record.site_id: record for record in statuses}

        planned: list[PlannedSite] = []
        for site in sites:
            record = by_site.get(site.id)
            planned.append(
                PlannedSite(site=site, last_status=record, decision=self.decide(site, record, options, now=current))
            )

        limit = options.max_sites_to_schedule
        if limit:
            selected = sorted((entry for entry in planned if entry.should_schedule), key=_plan_priority)
            for entry in selected[limit:]:
                entry.decision = SchedulingDecision(
                    False,
                    f"Skipped due to max sites limit ({limit})",
                    entry.decision.has_valid_prerequisite,
                )
        return planned


def scheduling_statistics(planned: Iterable[PlannedSite]) -> dict[str, Any]:
    entries = list(planned)
    by_status = Counter(entry.last_status.status if entry.last_status else NO_STATUS for entry in entries)
    return {
        "total_sites": len(entries),
        "sites_with_valid_prerequisite": sum(1 for entry in entries if entry.decision.has_valid_prerequisite),
        "sites_needing_schedule": sum(1 for entry in entries if entry.should_schedule),
        "sites_by_status": dict(by_status),
    }


def _plan_priority(entry: PlannedSite) -> tuple[int, float]:
    record = entry.last_status
    failed_first = 0 if record is not None and record.status == JobStatus.FAILED.value else 1
    last_run = record.last_run.timestamp() if record is not None and record.last_run else 0.0
    return (failed_first, last_run)


def _decide_from_status(
    record: JobStatusRecord | None,
    options: SchedulingOptions,
    now: datetime,
) -> tuple[bool, str]:
    if record is None:
        return True, "No previous run found - needs initial scheduling"

    status = record.status
    if status == JobStatus.FAILED.value:
        return _decide_failed(record, options, now)
    if status == JobStatus.COMPLETED.value:
        return _decide_completed(record, options, now)
    if status == JobStatus.RUNNING.value:
        return _decide_running(record, options, now)
    if status == JobStatus.SCHEDULED.value:
        return _decide_scheduled(record, options, now)
    return True, f"Status: {status or 'unknown'} - needs attention"


def _decide_failed(record: JobStatusRecord, options: SchedulingOptions, now: datetime) -> tuple[bool, str]:
    retries = f"retry {record.retry_count}/{options.max_retries}"
    if record.retry_count >= options.max_retries:
        return True, (
            f"Previous run failed with {record.retry_count} retries (max: {options.max_retries}) "
            "- exceeded retries, force reschedule"
        )

    if record.last_run is None:
        return True, f"Failed run with no recorded start time ({retries}) - ready for retry"

    minutes_since = hours_between(record.last_run, now) * 60.0
    hours_since = minutes_since / 60.0
    if minutes_since >= options.retry_delay_minutes:
        return True, f"Failed run {hours_since:.1f}h ago ({retries}) - ready for retry"
    minutes_left = options.retry_delay_minutes - minutes_since
    return False, f"Failed run {hours_since:.1f}h ago ({retries}) - waiting {minutes_left:.0f}min before retry"


def _decide_completed(record: JobStatusRecord, options: SchedulingOptions, now: datetime) -> tuple[bool, str]:
    # min_hours_between_runs is reported, not enforced: run cadence belongs to the caller's scheduler.
    if record.last_run is None:
        return True, "Last run completed at an unknown time - scheduling next run"
    hours_since = hours_between(record.last_run, now)
    return True, (
        f"Last run completed {hours_since:.1f}h ago (min: {options.min_hours_between_runs:g}h) "
        "- scheduling next run"
    )


def _decide_running(record: JobStatusRecord, options: SchedulingOptions, now: datetime) -> tuple[bool, str]:
    started = record.last_run or record.updated_at
    if started is None:
        return True, "Marked running with no start time - scheduling, exclusion left to the stuck-job guard"
    hours_running = hours_between(started, now)
    if hours_running > options.running_stale_hours:
        return True, (
            f"Running for {hours_running:.1f}h (over {options.running_stale_hours:g}h) "
            "- likely stuck, scheduling"
        )
    return True, f"Running for {hours_running:.1f}h - scheduling, exclusion left to the stuck-job guard"


def _decide_scheduled(record: JobStatusRecord, options: SchedulingOptions, now: datetime) -> tuple[bool, str]:
    if record.next_run is None:
        return True, "Scheduled but no run time set - rescheduling"

    hours_until = hours_between(now, record.next_run)
    if hours_until <= 0:
        return True, f"Scheduled run was {abs(hours_until):.1f}h ago but didn't execute (missed) - rescheduling"
    if hours_until > options.min_hours_between_runs * 2:
        return True, f"Next scheduled run is {hours_until:.1f}h away (too distant) - rescheduling for sooner"
    if record.last_run is None and record.created_at is not None:
        hours_since_created = hours_between(record.created_at, now)
        if hours_since_created >= options.min_hours_between_runs:
            return True, f"Scheduled {hours_since_created:.1f}h ago but never executed - rescheduling"
    return False, f"Scheduled to run in {hours_until:.1f}h - waiting"
