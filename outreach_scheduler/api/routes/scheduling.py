from fastapi import APIRouter, Depends

from outreach_scheduler.core.config import Settings, get_settings
from outreach_scheduler.core.errors import InvalidInputError, StoreUnavailableError
from outreach_scheduler.core.security import http_error, require_api_key
from outreach_scheduler.jobs.scheduling import (
    SchedulingDecisionEngine,
    prerequisite_for,
    scheduling_options,
    scheduling_statistics,
)
from outreach_scheduler.schemas.scheduling import DecideRequest, DecisionOut, PlannedSiteOut, PlanOut, PlanRequest
from outreach_scheduler.services.repository import get_repository
from outreach_scheduler.services.store import call_store

router = APIRouter(dependencies=[Depends(require_api_key)])


@router.post("/decide", response_model=DecisionOut)
async def decide(payload: DecideRequest, settings: Settings = Depends(get_settings)) -> DecisionOut:
    site = payload.site.to_site()
    last_status = payload.last_status.to_record(site.id) if payload.last_status is not None else None
    job_type = payload.job_type or (last_status.job_type if last_status is not None else "")
    engine = SchedulingDecisionEngine(prerequisite_for(job_type))
    try:
        options = payload.options.to_options(scheduling_options(settings))
        options.validate()
        decision = engine.decide(site, last_status, options)
    except InvalidInputError as exc:
        raise http_error(exc) from exc
    return DecisionOut(**decision.as_dict())


@router.post("/plan", response_model=PlanOut)
async def plan(
    payload: PlanRequest,
    settings: Settings = Depends(get_settings),
    store=Depends(get_repository),
) -> PlanOut:
    if not payload.job_type.strip():
        raise http_error(InvalidInputError("job_type is required to plan a sweep"))
    engine = SchedulingDecisionEngine(prerequisite_for(payload.job_type))
    try:
        options = payload.options.to_options(scheduling_options(settings))
        sites = await call_store("list_sites", store.list_sites(), timeout_seconds=settings.store_timeout_seconds)
        statuses = await call_store(
            "list_job_statuses",
            store.list_job_statuses(payload.job_type, [site.id for site in sites]),
            timeout_seconds=settings.store_timeout_seconds,
        )
        planned = engine.plan_sites(sites, statuses, options)
    except (InvalidInputError, StoreUnavailableError) as exc:
        raise http_error(exc) from exc

    return PlanOut(
        job_type=payload.job_type,
        sites=[
            PlannedSiteOut(
                site_id=entry.site.id,
                last_status=entry.last_status.status if entry.last_status is not None else None,
                decision=DecisionOut(**entry.decision.as_dict()),
            )
            for entry in planned
        ],
        statistics=scheduling_statistics(planned),
    )
