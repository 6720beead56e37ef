"""Page through a site's new candidates until enough eligible ones are found.

Pages are fetched strictly in order (the stop condition depends on the running
eligible count) and every page is checked against a fresh authoritative count,
so ``has_more`` never depends on how many rows a page happened to return.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

from opentelemetry import trace

from outreach_scheduler.core.cancel import CancellationToken
from outreach_scheduler.core.errors import InvalidInputError
from outreach_scheduler.jobs.eligibility import EligibilityFilter
from outreach_scheduler.services.records import CANDIDATE_STATUS_NEW, Candidate
from outreach_scheduler.services.store import CandidateStore, call_store

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class StopReason(str, Enum):
    FOUND_LEADS = "found_leads"
    MAX_PAGES_REACHED = "max_pages_reached"
    NO_MORE_PAGES = "no_more_pages"


@dataclass(slots=True, frozen=True)
class PageSummary:
    page: int
    offset: int
    fetched: int
    eligible: int
    has_more: bool


@dataclass(slots=True)
class CandidateSearchResult:
    leads: list[Candidate]
    pages_searched: int
    total_candidates: int
    stop_reason: StopReason
    has_more: bool
    created_before: datetime
    pages: list[PageSummary] = field(default_factory=list)


class CandidatePaginator:
    def __init__(
        self,
        store: CandidateStore,
        eligibility: EligibilityFilter | None = None,
        *,
        store_timeout_seconds: float | None = None,
    ) -> None:
        self.store = store
        self.store_timeout_seconds = store_timeout_seconds
        self.eligibility = eligibility or EligibilityFilter(store, store_timeout_seconds=store_timeout_seconds)

    async def search(
        self,
        site_id: str,
        hours_threshold: float,
        page_size: int,
        max_pages: int,
        min_leads_required: int,
        *,
        now: datetime | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> CandidateSearchResult:
        _validate_search(site_id, hours_threshold, page_size, max_pages, min_leads_required)
        current = now or datetime.now(timezone.utc)
        created_before = current - timedelta(hours=hours_threshold)

        leads: list[Candidate] = []
        pages: list[PageSummary] = []
        page = 0
        with tracer.start_as_current_span("candidates.search") as span:
            span.set_attribute("site.id", site_id)
            while True:
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled(
                        f"candidate search for site {site_id} cancelled after {page} page(s)"
                    )

                offset = page * page_size
                total = await call_store(
                    "count_candidates",
                    self.store.count_candidates(site_id, CANDIDATE_STATUS_NEW, created_before),
                    timeout_seconds=self.store_timeout_seconds,
                )
                rows = await call_store(
                    "fetch_candidates_page",
                    self.store.fetch_candidates_page(site_id, CANDIDATE_STATUS_NEW, created_before, offset, page_size),
                    timeout_seconds=self.store_timeout_seconds,
                )
                rows = rows[:page_size]
                eligible = await self.eligibility.filter(rows, site_id)
                leads.extend(eligible)

                has_more = offset + page_size < total
                pages.append(
                    PageSummary(page=page, offset=offset, fetched=len(rows), eligible=len(eligible), has_more=has_more)
                )
                logger.info(
                    "candidate page site_id=%s page=%s offset=%s fetched=%s eligible=%s total=%s has_more=%s",
                    site_id,
                    page,
                    offset,
                    len(rows),
                    len(eligible),
                    total,
                    has_more,
                )

                stop_reason = _stop_reason(
                    found=len(leads),
                    min_leads_required=min_leads_required,
                    next_page=page + 1,
                    max_pages=max_pages,
                    has_more=has_more,
                )
                if stop_reason is not None:
                    span.set_attribute("candidates.pages_searched", len(pages))
                    span.set_attribute("candidates.stop_reason", stop_reason.value)
                    logger.info(
                        "candidate search done site_id=%s leads=%s pages=%s stop_reason=%s",
                        site_id,
                        len(leads),
                        len(pages),
                        stop_reason.value,
                    )
                    return CandidateSearchResult(
                        leads=leads,
                        pages_searched=len(pages),
                        total_candidates=total,
                        stop_reason=stop_reason,
                        has_more=has_more,
                        created_before=created_before,
                        pages=pages,
                    )
                page += 1


def _stop_reason(
    *,
    found: int,
    min_leads_required: int,
    next_page: int,
    max_pages: int,
    has_more: bool,
) -> StopReason | None:
    if found >= min_leads_required:
        return StopReason.FOUND_LEADS
    if not has_more:
        return StopReason.NO_MORE_PAGES
    if next_page >= max_pages:
        return StopReason.MAX_PAGES_REACHED
    return None


def _validate_search(
    site_id: str,
    hours_threshold: float,
    page_size: int,
    max_pages: int,
    min_leads_required: int,
) -> None:
    problems: list[str] = []
    if not isinstance(site_id, str) or not site_id.strip():
        problems.append("site_id is required")
    if hours_threshold < 0:
        problems.append("hours_threshold must not be negative")
    if page_size < 1:
        problems.append("page_size must be at least 1")
    if max_pages < 1:
        problems.append("max_pages must be at least 1")
    if min_leads_required < 1:
        problems.append("min_leads_required must be at least 1")
    if problems:
        raise InvalidInputError("; ".join(problems))
