from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Iterable
from dataclasses import replace
from datetime import datetime, timezone
from typing import Protocol, TypeVar
from uuid import uuid4

from outreach_scheduler.core.errors import InvalidInputError, StoreUnavailableError
from outreach_scheduler.services.records import (
    Candidate,
    JobStatus,
    JobStatusRecord,
    Site,
    TaskRef,
)

T = TypeVar("T")


class CandidateStore(Protocol):
    async def count_candidates(self, site_id: str, status: str, created_before: datetime) -> int: ...

    async def fetch_candidates_page(
        self,
        site_id: str,
        status: str,
        created_before: datetime,
        offset: int,
        limit: int,
    ) -> list[Candidate]: ...

    async def fetch_tasks_by_lead_ids(self, site_id: str, stage: str, lead_ids: list[str]) -> list[TaskRef]: ...


class JobStatusStore(Protocol):
    async def get_job_status(self, site_id: str, job_type: str) -> JobStatusRecord | None: ...

    async def upsert_job_status(self, record: JobStatusRecord) -> None: ...

    async def list_running_job_statuses(self, updated_before: datetime, limit: int) -> list[JobStatusRecord]: ...


class OutreachStore(CandidateStore, JobStatusStore, Protocol):
    async def list_sites(self) -> list[Site]: ...

    async def list_job_statuses(self, job_type: str, site_ids: list[str]) -> list[JobStatusRecord]: ...


async def call_store(operation: str, awaitable: Awaitable[T], *, timeout_seconds: float | None) -> T:
    """Await a store call under the caller's timeout; failures surface as StoreUnavailableError."""
    try:
        if timeout_seconds is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except (StoreUnavailableError, InvalidInputError):
        raise
    except asyncio.TimeoutError as exc:
        raise StoreUnavailableError(f"{operation} timed out after {timeout_seconds}s") from exc
    except Exception as exc:
        raise StoreUnavailableError(f"{operation} failed: {exc}") from exc


class InMemoryStore:
    """Process-local store for tests and local dry runs."""

    def __init__(
        self,
        *,
        sites: Iterable[Site] = (),
        candidates: Iterable[Candidate] = (),
        tasks: Iterable[TaskRef] = (),
        job_statuses: Iterable[JobStatusRecord] = (),
    ) -> None:
        self.sites: dict[str, Site] = {site.id: site for site in sites}
        self.candidates: list[Candidate] = list(candidates)
        self.tasks: list[TaskRef] = list(tasks)
        self.task_sites: dict[str, str] = {candidate.id: candidate.site_id for candidate in self.candidates}
        self.job_statuses: dict[tuple[str, str], JobStatusRecord] = {}
        for record in job_statuses:
            self.job_statuses[record.key] = record
        self.calls: list[str] = []

    async def count_candidates(self, site_id: str, status: str, created_before: datetime) -> int:
        self.calls.append("count_candidates")
        return len(self._matching(site_id, status, created_before))

    async def fetch_candidates_page(
        self,
        site_id: str,
        status: str,
        created_before: datetime,
        offset: int,
        limit: int,
    ) -> list[Candidate]:
        self.calls.append("fetch_candidates_page")
        rows = sorted(self._matching(site_id, status, created_before), key=lambda row: (row.created_at, row.id))
        return rows[offset : offset + limit]

    async def fetch_tasks_by_lead_ids(self, site_id: str, stage: str, lead_ids: list[str]) -> list[TaskRef]:
        self.calls.append("fetch_tasks_by_lead_ids")
        wanted = set(lead_ids)
        return [
            task
            for task in self.tasks
            if task.lead_id in wanted
            and task.stage == stage
            and self.task_sites.get(task.lead_id, site_id) == site_id
        ]

    async def get_job_status(self, site_id: str, job_type: str) -> JobStatusRecord | None:
        self.calls.append("get_job_status")
        record = self.job_statuses.get((site_id, job_type))
        return replace(record) if record is not None else None

    async def upsert_job_status(self, record: JobStatusRecord) -> None:
        self.calls.append("upsert_job_status")
        now = datetime.now(timezone.utc)
        existing = self.job_statuses.get(record.key)
        self.job_statuses[record.key] = replace(
            record,
            id=record.id or (existing.id if existing else None) or str(uuid4()),
            created_at=record.created_at or (existing.created_at if existing else None) or now,
            updated_at=record.updated_at or now,
        )

    async def list_running_job_statuses(self, updated_before: datetime, limit: int) -> list[JobStatusRecord]:
        self.calls.append("list_running_job_statuses")
        rows = [
            replace(record)
            for record in self.job_statuses.values()
            if record.status == JobStatus.RUNNING.value
            and (record.updated_at or record.last_run or record.created_at or updated_before) < updated_before
        ]
        return rows[:limit]

    async def list_sites(self) -> list[Site]:
        self.calls.append("list_sites")
        return list(self.sites.values())

    async def list_job_statuses(self, job_type: str, site_ids: list[str]) -> list[JobStatusRecord]:
        self.calls.append("list_job_statuses")
        wanted = set(site_ids)
        return [
            replace(record)
            for record in self.job_statuses.values()
            if record.job_type == job_type and record.site_id in wanted
        ]

    def _matching(self, site_id: str, status: str, created_before: datetime) -> list[Candidate]:
        return [
            row
            for row in self.candidates
            if row.site_id == site_id and row.status == status and row.created_at < created_before
        ]
