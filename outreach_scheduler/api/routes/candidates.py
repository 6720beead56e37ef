from fastapi import APIRouter, Depends

from outreach_scheduler.core.config import Settings, get_settings
from outreach_scheduler.core.errors import InvalidInputError, StoreUnavailableError
from outreach_scheduler.core.security import http_error, require_api_key
from outreach_scheduler.jobs.candidates import CandidatePaginator
from outreach_scheduler.jobs.eligibility import EligibilityFilter
from outreach_scheduler.schemas.candidates import CandidateOut, CandidateSearchOut, CandidateSearchRequest
from outreach_scheduler.services.repository import get_repository

router = APIRouter(dependencies=[Depends(require_api_key)])


@router.post("/search", response_model=CandidateSearchOut)
async def search_candidates(
    payload: CandidateSearchRequest,
    settings: Settings = Depends(get_settings),
    store=Depends(get_repository),
) -> CandidateSearchOut:
    eligibility = EligibilityFilter(
        store,
        protected_stage=settings.protected_task_stage,
        batch_size=settings.task_batch_size,
        store_timeout_seconds=settings.store_timeout_seconds,
    )
    paginator = CandidatePaginator(store, eligibility, store_timeout_seconds=settings.store_timeout_seconds)
    try:
        result = await paginator.search(
            payload.site_id,
            payload.hours_threshold if payload.hours_threshold is not None else settings.hours_threshold,
            payload.page_size or settings.page_size,
            payload.max_pages or settings.max_pages,
            payload.min_leads_required or settings.min_leads_required,
        )
    except (InvalidInputError, StoreUnavailableError) as exc:
        raise http_error(exc) from exc

    return CandidateSearchOut(
        leads=[
            CandidateOut(
                id=lead.id,
                name=lead.name,
                email=lead.email,
                phone=lead.phone,
                company_id=lead.company_id,
                company_name=lead.company_name,
                created_at=lead.created_at,
            )
            for lead in result.leads
        ],
        pages_searched=result.pages_searched,
        total_candidates=result.total_candidates,
        stop_reason=result.stop_reason.value,
        has_more=result.has_more,
        created_before=result.created_before,
    )
