from fastapi import APIRouter, Depends

from outreach_scheduler.core.config import Settings, get_settings
from outreach_scheduler.core.errors import InvalidInputError
from outreach_scheduler.core.security import http_error, require_api_key
from outreach_scheduler.jobs.stuck_guard import StuckJobGuard, stale_after_hours_for
from outreach_scheduler.schemas.routing import GuardOut, GuardRequest
from outreach_scheduler.services.repository import get_repository

router = APIRouter(dependencies=[Depends(require_api_key)])


@router.post("/{job_type}/sites/{site_id}/guard", response_model=GuardOut)
async def guard_job(
    job_type: str,
    site_id: str,
    payload: GuardRequest | None = None,
    settings: Settings = Depends(get_settings),
    store=Depends(get_repository),
) -> GuardOut:
    stale_after = payload.stale_after_hours if payload is not None else None
    if stale_after is None:
        stale_after = stale_after_hours_for(
            job_type,
            fast_sync=settings.stale_after_hours_fast_sync,
            daily=settings.stale_after_hours_daily,
            maintenance=settings.stale_after_hours_maintenance,
        )
    guard = StuckJobGuard(store, store_timeout_seconds=settings.store_timeout_seconds)
    try:
        verdict = await guard.evaluate(job_type, site_id, stale_after)
    except InvalidInputError as exc:
        raise http_error(exc) from exc
    return GuardOut(**verdict.as_dict())
