from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field

from outreach_scheduler.core.errors import (
    InvalidInputError,
    PartialBatchFailureError,
    StoreUnavailableError,
)
from outreach_scheduler.services.records import TASK_STATUS_PENDING, Candidate, TaskRef
from outreach_scheduler.services.store import CandidateStore, call_store

logger = logging.getLogger(__name__)

DEFAULT_PROTECTED_STAGE = "awareness"
MAX_TASK_BATCH_SIZE = 100


@dataclass(slots=True)
class EligibilityReport:
    eligible: list[Candidate] = field(default_factory=list)
    excluded_by_task: list[str] = field(default_factory=list)
    excluded_companies: list[str] = field(default_factory=list)
    excluded_by_company: list[str] = field(default_factory=list)
    excluded_individuals: list[str] = field(default_factory=list)
    pending_task_leads: int = 0

    @property
    def excluded_count(self) -> int:
        return len(self.excluded_by_task) + len(self.excluded_by_company) + len(self.excluded_individuals)


class EligibilityFilter:
    def __init__(
        self,
        store: CandidateStore,
        *,
        protected_stage: str = DEFAULT_PROTECTED_STAGE,
        batch_size: int = MAX_TASK_BATCH_SIZE,
        store_timeout_seconds: float | None = None,
    ) -> None:
        self.store = store
        self.protected_stage = protected_stage
        self.batch_size = max(1, min(batch_size, MAX_TASK_BATCH_SIZE))
        self.store_timeout_seconds = store_timeout_seconds

    async def filter(self, candidates: Sequence[Candidate], site_id: str) -> list[Candidate]:
        report = await self.evaluate(candidates, site_id)
        return report.eligible

    async def evaluate(self, candidates: Sequence[Candidate], site_id: str) -> EligibilityReport:
        if not isinstance(site_id, str) or not site_id.strip():
            raise InvalidInputError("site_id is required to filter candidates")

        report = EligibilityReport()
        if not candidates:
            return report

        active_leads, pending_leads = await self._leads_with_active_tasks(site_id, [c.id for c in candidates])
        report.pending_task_leads = len(pending_leads - active_leads)

        remaining: list[Candidate] = []
        for candidate in candidates:
            if candidate.id in active_leads:
                report.excluded_by_task.append(candidate.id)
            else:
                remaining.append(candidate)

        blocked_companies = _companies_with_assignee(remaining)
        report.excluded_companies = sorted(blocked_companies)
        for candidate in remaining:
            key = candidate.company_key
            if key is None:
                if candidate.is_assigned:
                    report.excluded_individuals.append(candidate.id)
                    continue
            elif key in blocked_companies:
                report.excluded_by_company.append(candidate.id)
                continue
            report.eligible.append(candidate)

        logger.info(
            "eligibility site_id=%s candidates=%s task_excluded=%s companies_excluded=%s "
            "individuals_excluded=%s pending_task_leads=%s eligible=%s",
            site_id,
            len(candidates),
            len(report.excluded_by_task),
            len(report.excluded_companies),
            len(report.excluded_individuals),
            report.pending_task_leads,
            len(report.eligible),
        )
        return report

    async def _leads_with_active_tasks(self, site_id: str, lead_ids: list[str]) -> tuple[set[str], set[str]]:
        batches = [lead_ids[i : i + self.batch_size] for i in range(0, len(lead_ids), self.batch_size)]
        results = await asyncio.gather(
            *(
                call_store(
                    "fetch_tasks_by_lead_ids",
                    self.store.fetch_tasks_by_lead_ids(site_id, self.protected_stage, batch),
                    timeout_seconds=self.store_timeout_seconds,
                )
                for batch in batches
            ),
            return_exceptions=True,
        )

        failures = [result for result in results if isinstance(result, BaseException)]
        if failures:
            for failure in failures:
                if not isinstance(failure, Exception):
                    raise failure
            if len(failures) == len(batches):
                raise StoreUnavailableError(f"task lookup failed for site {site_id}: {failures[0]}") from failures[0]
            raise PartialBatchFailureError(
                f"task lookup failed for {len(failures)} of {len(batches)} batches for site {site_id}",
                failed_batches=len(failures),
                total_batches=len(batches),
            ) from failures[0]

        active: set[str] = set()
        pending: set[str] = set()
        for tasks in results:
            for task in tasks:  # type: ignore[union-attr]
                if _is_pending(task):
                    pending.add(task.lead_id)
                else:
                    active.add(task.lead_id)
        return active, pending


def _is_pending(task: TaskRef) -> bool:
    return (task.status or "").strip().lower() == TASK_STATUS_PENDING


def _companies_with_assignee(candidates: Sequence[Candidate]) -> set[str]:
    members: dict[str, list[Candidate]] = defaultdict(list)
    for candidate in candidates:
        key = candidate.company_key
        if key is not None:
            members[key].append(candidate)
    return {key for key, group in members.items() if any(member.is_assigned for member in group)}
