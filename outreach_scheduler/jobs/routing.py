from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any

from outreach_scheduler.core.errors import InvalidInputError

logger = logging.getLogger(__name__)


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"
    BACKGROUND = "background"


@dataclass(slots=True, frozen=True)
class LaneBudget:
    queue: str
    default_timeout: timedelta
    max_concurrency: int


LANE_BUDGETS: dict[Priority, LaneBudget] = {
    Priority.CRITICAL: LaneBudget("critical-priority", timedelta(minutes=2), 50),
    Priority.HIGH: LaneBudget("high-priority", timedelta(minutes=5), 30),
    Priority.NORMAL: LaneBudget("default", timedelta(minutes=15), 15),
    Priority.LOW: LaneBudget("low-priority", timedelta(minutes=30), 8),
    Priority.BACKGROUND: LaneBudget("background-priority", timedelta(minutes=60), 5),
}

JOB_TYPE_LANES: dict[str, Priority] = {
    "customerSupportMessageWorkflow": Priority.HIGH,
    "emailCustomerSupportMessageWorkflow": Priority.HIGH,
    "leadAttentionWorkflow": Priority.HIGH,
    "sendEmailFromAgentWorkflow": Priority.HIGH,
    "sendWhatsappFromAgentWorkflow": Priority.HIGH,
    "dailyStandUpWorkflow": Priority.NORMAL,
    "leadGenerationWorkflow": Priority.NORMAL,
    "dailyProspectionWorkflow": Priority.NORMAL,
    "buildCampaignsWorkflow": Priority.LOW,
    "buildContentWorkflow": Priority.LOW,
    "analyzeSiteWorkflow": Priority.LOW,
    "dailyOperationsWorkflow": Priority.BACKGROUND,
    "scheduleActivitiesWorkflow": Priority.BACKGROUND,
    "syncEmailsScheduleWorkflow": Priority.BACKGROUND,
}

HOURS_STUCK_CRITICAL = 24.0
HOURS_STUCK_HIGH = 6.0


@dataclass(slots=True, frozen=True)
class EscalationContext:
    business_impact: str | None = None
    customer_facing: bool = False
    is_retry: bool = False
    hours_stuck: float | None = None


@dataclass(slots=True, frozen=True)
class Route:
    job_type: str
    lane: Priority
    queue: str
    default_timeout: timedelta
    max_concurrency: int
    source: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "job_type": self.job_type,
            "lane": self.lane.value,
            "queue": self.queue,
            "default_timeout_seconds": int(self.default_timeout.total_seconds()),
            "max_concurrency": self.max_concurrency,
            "source": self.source,
        }


def parse_priority(value: Priority | str | None) -> Priority | None:
    if value is None or isinstance(value, Priority):
        return value
    try:
        return Priority(value.strip().lower())
    except ValueError:
        return None


def registry_lane(job_type: str) -> Priority:
    """Registered lane for a job type; anything unregistered runs on the normal lane."""
    return JOB_TYPE_LANES.get(job_type, Priority.NORMAL)


def escalate(job_type: str, context: EscalationContext) -> tuple[Priority, str]:
    impact = (context.business_impact or "").strip().lower()
    if impact == "high":
        return Priority.CRITICAL, "business_impact"
    if context.customer_facing:
        if context.is_retry:
            return Priority.CRITICAL, "customer_facing_retry"
        return Priority.HIGH, "customer_facing"
    if context.is_retry:
        return Priority.HIGH, "retry"
    if context.hours_stuck is not None:
        if context.hours_stuck > HOURS_STUCK_CRITICAL:
            return Priority.CRITICAL, "hours_stuck"
        if context.hours_stuck > HOURS_STUCK_HIGH:
            return Priority.HIGH, "hours_stuck"
    return registry_lane(job_type), _registry_source(job_type)


def route(
    job_type: str,
    priority: Priority | str | None = None,
    *,
    context: EscalationContext | None = None,
) -> Route:
    if not isinstance(job_type, str) or not job_type.strip():
        raise InvalidInputError("job_type is required to route a job")
    job_type = job_type.strip()

    lane = parse_priority(priority)
    source = "explicit"
    if lane is None:
        if priority is not None:
            logger.warning("ignoring unrecognized priority=%r for job_type=%s", priority, job_type)
        if context is not None:
            lane, source = escalate(job_type, context)
        else:
            lane = registry_lane(job_type)
            source = _registry_source(job_type)

    budget = LANE_BUDGETS[lane]
    return Route(
        job_type=job_type,
        lane=lane,
        queue=budget.queue,
        default_timeout=budget.default_timeout,
        max_concurrency=budget.max_concurrency,
        source=source,
    )


def _registry_source(job_type: str) -> str:
    return "registry" if job_type in JOB_TYPE_LANES else "default"
