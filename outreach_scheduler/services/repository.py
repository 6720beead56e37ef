from __future__ import annotations

import json
from datetime import datetime
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]

from outreach_scheduler.core.config import get_settings
from outreach_scheduler.core.errors import StoreUnavailableError
from outreach_scheduler.schemas.channels import normalize_channels
from outreach_scheduler.services.records import (
    Candidate,
    JobStatusRecord,
    Site,
    TaskRef,
    as_text,
)

CANDIDATE_COLUMNS = """
  l.id::text as id,
  l.site_id::text as site_id,
  l.status,
  l.created_at,
  l.company_id::text as company_id,
  coalesce(c.name, l.company->>'name') as company_name,
  l.assignee_id::text as assignee_id,
  l.name,
  l.email,
  l.phone
"""

JOB_STATUS_COLUMNS = """
  id::text as id,
  site_id::text as site_id,
  activity_name,
  status,
  last_run,
  next_run,
  retry_count,
  error_message,
  workflow_id,
  created_at,
  updated_at
"""


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def list_sites(self) -> list[Site]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select s.id::text as id, s.name, st.channels
            from sites s
            left join settings st on st.site_id = s.id
            order by s.created_at asc, s.id asc
            """
        )
        return [
            Site(id=row["id"], name=row["name"] or "", channels=normalize_channels(self._decode_json(row["channels"])))
            for row in rows
        ]

    async def count_candidates(self, site_id: str, status: str, created_before: datetime) -> int:
        pool = await self._get_pool()
        value = await pool.fetchval(
            """
            select count(*)
            from leads l
            where l.site_id = $1::uuid
              and l.status = $2
              and l.created_at < $3
            """,
            site_id,
            status,
            created_before,
        )
        return int(value or 0)

    async def fetch_candidates_page(
        self,
        site_id: str,
        status: str,
        created_before: datetime,
        offset: int,
        limit: int,
    ) -> list[Candidate]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {CANDIDATE_COLUMNS}
            from leads l
            left join companies c on c.id = l.company_id
            where l.site_id = $1::uuid
              and l.status = $2
              and l.created_at < $3
            order by l.created_at asc, l.id asc
            offset $4
            limit $5
            """,
            site_id,
            status,
            created_before,
            max(0, offset),
            max(1, limit),
        )
        return [self._candidate_from_row(row) for row in rows]

    async def fetch_tasks_by_lead_ids(self, site_id: str, stage: str, lead_ids: list[str]) -> list[TaskRef]:
        if not lead_ids:
            return []
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select lead_id::text as lead_id, status, stage
            from tasks
            where site_id = $1::uuid
              and stage = $2
              and lead_id = any($3::uuid[])
            """,
            site_id,
            stage,
            lead_ids,
        )
        return [TaskRef(lead_id=row["lead_id"], status=row["status"] or "", stage=row["stage"]) for row in rows]

    async def get_job_status(self, site_id: str, job_type: str) -> JobStatusRecord | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"""
            select {JOB_STATUS_COLUMNS}
            from cron_status
            where site_id = $1::uuid
              and activity_name = $2
            order by updated_at desc nulls last
            limit 1
            """,
            site_id,
            job_type,
        )
        return self._job_status_from_row(row) if row is not None else None

    async def list_job_statuses(self, job_type: str, site_ids: list[str]) -> list[JobStatusRecord]:
        if not site_ids:
            return []
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select distinct on (site_id) {JOB_STATUS_COLUMNS}
            from cron_status
            where activity_name = $1
              and site_id = any($2::uuid[])
            order by site_id, updated_at desc nulls last
            """,
            job_type,
            site_ids,
        )
        return [self._job_status_from_row(row) for row in rows]

    async def list_running_job_statuses(self, updated_before: datetime, limit: int) -> list[JobStatusRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {JOB_STATUS_COLUMNS}
            from cron_status
            where status = 'RUNNING'
              and coalesce(updated_at, last_run, created_at) < $1
            order by coalesce(updated_at, last_run, created_at) asc
            limit $2
            """,
            updated_before,
            max(1, limit),
        )
        return [self._job_status_from_row(row) for row in rows]

    async def upsert_job_status(self, record: JobStatusRecord) -> None:
        pool = await self._get_pool()
        await pool.execute(
            """
            insert into cron_status (
              site_id, activity_name, status, last_run, next_run,
              retry_count, error_message, workflow_id, updated_at, created_at
            )
            values ($1::uuid, $2, $3, $4, $5, $6, $7, $8, coalesce($9, now()), coalesce($10, now()))
            on conflict (site_id, activity_name) do update
            set
              status = excluded.status,
              last_run = excluded.last_run,
              next_run = excluded.next_run,
              retry_count = excluded.retry_count,
              error_message = excluded.error_message,
              workflow_id = coalesce(excluded.workflow_id, cron_status.workflow_id),
              updated_at = excluded.updated_at,
              created_at = coalesce($10, cron_status.created_at)
            """,
            record.site_id,
            record.job_type,
            record.status,
            record.last_run,
            record.next_run,
            record.retry_count,
            record.error_message,
            record.workflow_id,
            record.updated_at,
            record.created_at,
        )

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise StoreUnavailableError("OUTREACH_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise StoreUnavailableError("database unavailable") from exc

    @staticmethod
    def _candidate_from_row(row: asyncpg.Record) -> Candidate:
        return Candidate(
            id=row["id"],
            site_id=row["site_id"],
            created_at=row["created_at"],
            status=row["status"],
            company_id=row["company_id"],
            company_name=as_text(row["company_name"]),
            assignee_id=row["assignee_id"],
            name=row["name"],
            email=row["email"],
            phone=row["phone"],
        )

    @staticmethod
    def _job_status_from_row(row: asyncpg.Record) -> JobStatusRecord:
        return JobStatusRecord(
            id=row["id"],
            site_id=row["site_id"],
            job_type=row["activity_name"],
            status=row["status"],
            last_run=row["last_run"],
            next_run=row["next_run"],
            retry_count=row["retry_count"] or 0,
            error_message=row["error_message"],
            workflow_id=row["workflow_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _decode_json(value: Any) -> Any:
        if isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return None
        return value


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
