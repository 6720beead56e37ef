#!/usr/bin/env python3
"""Emit deterministic SQL that resets stuck RUNNING job statuses to FAILED."""

from __future__ import annotations

import argparse


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, older_than_hours: float, job_type: str | None, site_id: str | None) -> str:
    filters = [
        "status = 'RUNNING'",
        f"coalesce(updated_at, last_run, created_at) < now() - interval '{older_than_hours:g} hours'",
    ]
    if job_type:
        filters.append(f"activity_name = {_quote_sql(job_type)}")
    if site_id:
        filters.append(f"site_id = {_quote_sql(site_id)}::uuid")
    where = "\n  and ".join(filters)
    message = _quote_sql(f"Manual reset from stuck RUNNING state - exceeded {older_than_hours:g}h threshold")

    return f"""-- Stuck job status reset SQL
-- Run in a privileged Postgres session; review the select before the update.

select site_id, activity_name, status, last_run, updated_at
from cron_status
where {where};

update cron_status
set status = 'FAILED',
    error_message = {message},
    updated_at = now()
where {where};
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to reset stuck RUNNING job statuses.")
    parser.add_argument(
        "--older-than-hours",
        type=float,
        default=24.0,
        help="Reset RUNNING rows not updated for longer than this many hours",
    )
    parser.add_argument("--job-type", help="Limit the reset to one workflow type (activity_name)")
    parser.add_argument("--site-id", help="Limit the reset to one site (UUID)")
    args = parser.parse_args()
    if args.older_than_hours <= 0:
        parser.error("--older-than-hours must be positive")

    print(render_sql(older_than_hours=args.older_than_hours, job_type=args.job_type, site_id=args.site_id))


if __name__ == "__main__":
    main()
