from fastapi import APIRouter, Depends

from outreach_scheduler.core.errors import InvalidInputError
from outreach_scheduler.core.security import http_error, require_api_key
from outreach_scheduler.jobs.routing import route
from outreach_scheduler.schemas.routing import RouteOut

router = APIRouter(dependencies=[Depends(require_api_key)])


@router.get("/{job_type}", response_model=RouteOut)
async def resolve_route(job_type: str, priority: str | None = None) -> RouteOut:
    try:
        resolved = route(job_type, priority)
    except InvalidInputError as exc:
        raise http_error(exc) from exc
    return RouteOut(**resolved.as_dict())
