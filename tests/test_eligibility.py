from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from outreach_scheduler.core.errors import InvalidInputError, PartialBatchFailureError, StoreUnavailableError
from outreach_scheduler.jobs.eligibility import EligibilityFilter
from outreach_scheduler.services.records import Candidate, TaskRef
from outreach_scheduler.services.store import InMemoryStore

CREATED = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _candidate(lead_id: str, offset: int = 0, **fields) -> Candidate:
    return Candidate(id=lead_id, site_id="site-1", created_at=CREATED + timedelta(minutes=offset), **fields)


class FailingTaskStore(InMemoryStore):
    def __init__(self, *, failing_leads: set[str], **kwargs) -> None:
        super().__init__(**kwargs)
        self.failing_leads = failing_leads

    async def fetch_tasks_by_lead_ids(self, site_id: str, stage: str, lead_ids: list[str]) -> list[TaskRef]:
        if self.failing_leads.intersection(lead_ids):
            raise RuntimeError("connection reset")
        return await super().fetch_tasks_by_lead_ids(site_id, stage, lead_ids)


def test_eligibility_applies_task_and_company_rules_in_order() -> None:
    candidates = [
        _candidate("c1", 1, company_id="A", assignee_id="agent-7"),
        _candidate("c2", 2, company_id="A"),
        _candidate("c3", 3, company_id="B"),
        _candidate("c4", 4, assignee_id="agent-9"),
        _candidate("c5", 5),
        _candidate("c6", 6),
        _candidate("c7", 7),
        _candidate("c8", 8, company_name="Acme "),
        _candidate("c9", 9, company_name="acme", assignee_id="agent-1"),
    ]
    store = InMemoryStore(
        candidates=candidates,
        tasks=[
            TaskRef(lead_id="c6", status="in_progress", stage="awareness"),
            TaskRef(lead_id="c7", status="pending", stage="awareness"),
            TaskRef(lead_id="c5", status="in_progress", stage="consideration"),
        ],
    )

    report = asyncio.run(EligibilityFilter(store).evaluate(candidates, "site-1"))

    assert [lead.id for lead in report.eligible] == ["c3", "c5", "c7"]
    assert report.excluded_by_task == ["c6"]
    assert report.excluded_companies == ["id:A", "name:acme"]
    assert report.excluded_by_company == ["c1", "c2", "c8", "c9"]
    assert report.excluded_individuals == ["c4"]
    assert report.pending_task_leads == 1
    assert report.excluded_count == 6


def test_company_exclusion_is_all_or_nothing() -> None:
    candidates = [_candidate(f"a{i}", i, company_id="shared") for i in range(5)]
    candidates.append(_candidate("a9", 9, company_id="shared", assignee_id="agent-1"))
    store = InMemoryStore(candidates=candidates)

    eligible = asyncio.run(EligibilityFilter(store).filter(candidates, "site-1"))

    assert eligible == []


def test_task_lookups_are_batched() -> None:
    candidates = [_candidate(f"c{i}", i) for i in range(250)]
    store = InMemoryStore(candidates=candidates)

    eligible = asyncio.run(EligibilityFilter(store, batch_size=100).filter(candidates, "site-1"))

    assert len(eligible) == 250
    assert store.calls.count("fetch_tasks_by_lead_ids") == 3


def test_batch_size_is_capped() -> None:
    assert EligibilityFilter(InMemoryStore(), batch_size=500).batch_size == 100


def test_partial_batch_failure_fails_the_whole_call() -> None:
    candidates = [_candidate(f"c{i}", i) for i in range(250)]
    store = FailingTaskStore(candidates=candidates, failing_leads={"c150"})

    with pytest.raises(PartialBatchFailureError) as excinfo:
        asyncio.run(EligibilityFilter(store).filter(candidates, "site-1"))

    assert excinfo.value.failed_batches == 1
    assert excinfo.value.total_batches == 3


def test_all_batches_failing_is_store_unavailable() -> None:
    candidates = [_candidate("c1"), _candidate("c2", 1)]
    store = FailingTaskStore(candidates=candidates, failing_leads={"c1"})

    with pytest.raises(StoreUnavailableError) as excinfo:
        asyncio.run(EligibilityFilter(store).filter(candidates, "site-1"))

    assert not isinstance(excinfo.value, PartialBatchFailureError)


def test_empty_input_skips_store() -> None:
    store = InMemoryStore()
    assert asyncio.run(EligibilityFilter(store).filter([], "site-1")) == []
    assert store.calls == []


def test_site_id_is_required() -> None:
    with pytest.raises(InvalidInputError):
        asyncio.run(EligibilityFilter(InMemoryStore()).filter([_candidate("c1")], ""))
