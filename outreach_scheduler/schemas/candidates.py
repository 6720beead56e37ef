from datetime import datetime

from pydantic import BaseModel, Field


class CandidateSearchRequest(BaseModel):
    site_id: str
    hours_threshold: float | None = None
    page_size: int | None = Field(default=None, ge=1)
    max_pages: int | None = Field(default=None, ge=1)
    min_leads_required: int | None = Field(default=None, ge=1)


class CandidateOut(BaseModel):
    id: str
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    company_id: str | None = None
    company_name: str | None = None
    created_at: datetime


class CandidateSearchOut(BaseModel):
    leads: list[CandidateOut]
    pages_searched: int
    total_candidates: int
    stop_reason: str
    has_more: bool
    created_before: datetime
