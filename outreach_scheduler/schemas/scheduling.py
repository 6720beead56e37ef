from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from outreach_scheduler.jobs.scheduling import SchedulingOptions
from outreach_scheduler.schemas.channels import normalize_channels
from outreach_scheduler.services.records import JobStatusRecord, Site


class SiteIn(BaseModel):
    id: str
    name: str = ""
    channels: Any = None

    def to_site(self) -> Site:
        return Site(id=self.id, name=self.name, channels=normalize_channels(self.channels))


class JobStatusIn(BaseModel):
    status: str
    job_type: str = ""
    last_run: datetime | None = None
    next_run: datetime | None = None
    retry_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_record(self, site_id: str) -> JobStatusRecord:
        return JobStatusRecord(
            site_id=site_id,
            job_type=self.job_type,
            status=self.status,
            last_run=self.last_run,
            next_run=self.next_run,
            retry_count=self.retry_count,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class SchedulingOptionsIn(BaseModel):
    force_schedule_all: bool = False
    max_retries: int | None = None
    retry_delay_minutes: float | None = None
    min_hours_between_runs: float | None = None
    running_stale_hours: float | None = None
    max_sites_to_schedule: int | None = None
    dry_run: bool = False

    def to_options(self, defaults: SchedulingOptions) -> SchedulingOptions:
        overrides = self.model_dump(exclude_none=True)
        return SchedulingOptions(**{**_options_dict(defaults), **overrides})


class DecideRequest(BaseModel):
    site: SiteIn
    job_type: str | None = None
    last_status: JobStatusIn | None = None
    options: SchedulingOptionsIn = Field(default_factory=SchedulingOptionsIn)


class DecisionOut(BaseModel):
    should_schedule: bool
    reason: str
    has_valid_prerequisite: bool


class PlanRequest(BaseModel):
    job_type: str
    options: SchedulingOptionsIn = Field(default_factory=SchedulingOptionsIn)


class PlannedSiteOut(BaseModel):
    site_id: str
    last_status: str | None = None
    decision: DecisionOut


class PlanOut(BaseModel):
    job_type: str
    sites: list[PlannedSiteOut]
    statistics: dict[str, Any]


def _options_dict(options: SchedulingOptions) -> dict[str, Any]:
    return {
        "force_schedule_all": options.force_schedule_all,
        "max_retries": options.max_retries,
        "retry_delay_minutes": options.retry_delay_minutes,
        "min_hours_between_runs": options.min_hours_between_runs,
        "running_stale_hours": options.running_stale_hours,
        "max_sites_to_schedule": options.max_sites_to_schedule,
        "dry_run": options.dry_run,
    }
