from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from outreach_scheduler.schemas.channels import NormalizedChannels, normalize_channels


class JobStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


CANDIDATE_STATUS_NEW = "new"
TASK_STATUS_PENDING = "pending"


@dataclass(slots=True)
class Site:
    id: str
    name: str = ""
    channels: NormalizedChannels = field(default_factory=NormalizedChannels)

    def __post_init__(self) -> None:
        # Raw settings rows (list or keyed object) are accepted and normalized here.
        if not isinstance(self.channels, NormalizedChannels):
            self.channels = normalize_channels(self.channels)


@dataclass(slots=True)
class JobStatusRecord:
    site_id: str
    job_type: str
    status: str
    last_run: datetime | None = None
    next_run: datetime | None = None
    retry_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    error_message: str | None = None
    workflow_id: str | None = None
    id: str | None = None

    def __post_init__(self) -> None:
        self.status = normalize_status(self.status)
        self.last_run = parse_timestamp(self.last_run)
        self.next_run = parse_timestamp(self.next_run)
        self.created_at = parse_timestamp(self.created_at)
        self.updated_at = parse_timestamp(self.updated_at)
        self.retry_count = max(0, int(self.retry_count or 0))

    @property
    def key(self) -> tuple[str, str]:
        return (self.site_id, self.job_type)

    def transitioned(self, status: JobStatus | str, **changes: Any) -> JobStatusRecord:
        value = status.value if isinstance(status, JobStatus) else status
        return replace(self, status=value, **changes)


@dataclass(slots=True)
class Candidate:
    id: str
    site_id: str
    created_at: datetime
    status: str = CANDIDATE_STATUS_NEW
    company_id: str | None = None
    company_name: str | None = None
    assignee_id: str | None = None
    name: str | None = None
    email: str | None = None
    phone: str | None = None

    def __post_init__(self) -> None:
        created_at = parse_timestamp(self.created_at)
        if created_at is None:
            raise ValueError(f"candidate {self.id} has no valid created_at")
        self.created_at = created_at

    @property
    def company_key(self) -> str | None:
        """Grouping key: company id, else normalized company name, else none."""
        company_id = as_text(self.company_id)
        if company_id:
            return f"id:{company_id}"
        company_name = as_text(self.company_name)
        if company_name:
            return f"name:{company_name.casefold()}"
        return None

    @property
    def is_assigned(self) -> bool:
        return as_text(self.assignee_id) is not None


@dataclass(slots=True, frozen=True)
class TaskRef:
    lead_id: str
    status: str
    stage: str | None = None


def normalize_status(value: Any) -> str:
    if isinstance(value, JobStatus):
        return value.value
    if isinstance(value, str):
        return value.strip().upper()
    return ""


def as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return str(value)


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def hours_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / 3600.0
