from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from outreach_scheduler.core.config import Settings
from outreach_scheduler.core.errors import InvalidInputError
from outreach_scheduler.jobs.scheduling import (
    SchedulingDecisionEngine,
    SchedulingOptions,
    any_channel_prerequisite,
    prerequisite_for,
    scheduling_options,
    scheduling_statistics,
)
from outreach_scheduler.services.records import JobStatusRecord, Site

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
EMAIL_SETTINGS = [
    {
        "type": "email",
        "enabled": True,
        "email": "ops@example.com",
        "password": "secret",
        "incomingServer": "imap.example.com",
        "outgoingServer": "smtp.example.com",
    }
]


def _site(site_id: str = "site-1", channels=None) -> Site:
    return Site(id=site_id, name=site_id, channels=EMAIL_SETTINGS if channels is None else channels)


def _status(status: str, site_id: str = "site-1", **fields) -> JobStatusRecord:
    return JobStatusRecord(site_id=site_id, job_type="syncEmailsWorkflow", status=status, **fields)


def _decide(record: JobStatusRecord | None, options: SchedulingOptions | None = None, site: Site | None = None):
    return SchedulingDecisionEngine().decide(site or _site(), record, options, now=NOW)


def test_site_without_history_needs_initial_scheduling() -> None:
    decision = _decide(None)
    assert decision.should_schedule
    assert decision.has_valid_prerequisite
    assert "needs initial scheduling" in decision.reason


def test_failed_run_past_retry_delay_is_ready_for_retry() -> None:
    record = _status("FAILED", retry_count=2, last_run=NOW - timedelta(minutes=20))
    decision = _decide(record, SchedulingOptions(max_retries=3, retry_delay_minutes=15))
    assert decision.should_schedule
    assert "ready for retry" in decision.reason
    assert "retry 2/3" in decision.reason


def test_failed_run_inside_retry_delay_waits() -> None:
    record = _status("FAILED", retry_count=1, last_run=NOW - timedelta(minutes=5))
    decision = _decide(record)
    assert not decision.should_schedule
    assert "waiting 10min before retry" in decision.reason


def test_failed_run_out_of_retries_is_force_rescheduled() -> None:
    record = _status("FAILED", retry_count=3, last_run=NOW - timedelta(minutes=1))
    decision = _decide(record)
    assert decision.should_schedule
    assert "exceeded retries, force reschedule" in decision.reason


def test_scheduled_run_too_far_away_is_rescheduled() -> None:
    record = _status("SCHEDULED", next_run=NOW + timedelta(hours=10), last_run=NOW - timedelta(hours=1))
    decision = _decide(record, SchedulingOptions(min_hours_between_runs=3))
    assert decision.should_schedule
    assert "too distant" in decision.reason


def test_missed_scheduled_run_is_rescheduled() -> None:
    decision = _decide(_status("SCHEDULED", next_run=NOW - timedelta(hours=2)))
    assert decision.should_schedule
    assert "(missed)" in decision.reason


def test_scheduled_run_that_never_executed_is_rescheduled() -> None:
    record = _status("SCHEDULED", next_run=NOW + timedelta(hours=1), created_at=NOW - timedelta(hours=5))
    decision = _decide(record)
    assert decision.should_schedule
    assert "never executed" in decision.reason


def test_upcoming_scheduled_run_waits() -> None:
    record = _status("SCHEDULED", next_run=NOW + timedelta(hours=1), last_run=NOW - timedelta(hours=3))
    decision = _decide(record)
    assert not decision.should_schedule
    assert decision.reason == "Scheduled to run in 1.0h - waiting"


def test_long_running_job_is_likely_stuck() -> None:
    decision = _decide(_status("RUNNING", last_run=NOW - timedelta(hours=3)))
    assert decision.should_schedule
    assert "likely stuck" in decision.reason


def test_completed_run_is_always_scheduled() -> None:
    decision = _decide(_status("COMPLETED", last_run=NOW - timedelta(minutes=10)))
    assert decision.should_schedule
    assert "completed 0.2h ago" in decision.reason


def test_unknown_status_needs_attention() -> None:
    decision = _decide(_status("paused"))
    assert decision.should_schedule
    assert decision.reason == "Status: PAUSED - needs attention"


def test_invalid_prerequisite_blocks_scheduling() -> None:
    site = _site(channels=[{**EMAIL_SETTINGS[0], "enabled": False}])
    decision = _decide(None, site=site)
    assert not decision.should_schedule
    assert not decision.has_valid_prerequisite
    assert decision.reason == "Prerequisite invalid: Email sync is disabled"


def test_force_schedule_all_still_requires_prerequisite() -> None:
    options = SchedulingOptions(force_schedule_all=True)
    waiting = _status("FAILED", retry_count=1, last_run=NOW - timedelta(minutes=1))
    assert _decide(waiting, options).should_schedule
    assert not _decide(waiting, options, site=_site(channels=[])).should_schedule


def test_any_channel_prerequisite_accepts_whatsapp() -> None:
    site = _site(channels={"whatsapp": {"enabled": True, "phoneNumber": "+1555"}})
    decision = SchedulingDecisionEngine(any_channel_prerequisite).decide(site, None, now=NOW)
    assert decision.should_schedule
    assert not SchedulingDecisionEngine().decide(site, None, now=NOW).should_schedule


def test_decide_is_pure() -> None:
    record = _status("SCHEDULED", next_run=NOW + timedelta(hours=1), created_at=NOW - timedelta(hours=1))
    snapshot = replace(record)
    first = _decide(record)
    second = _decide(record)
    assert first == second
    assert record == snapshot


def test_decide_requires_site_id() -> None:
    with pytest.raises(InvalidInputError):
        _decide(None, site=_site(site_id=""))


def test_plan_sites_prefers_failed_then_oldest_within_limit() -> None:
    sites = [_site("site-a"), _site("site-b"), _site("site-c"), _site("site-d", channels=[])]
    statuses = [
        _status("COMPLETED", site_id="site-a", last_run=NOW - timedelta(hours=5)),
        _status("COMPLETED", site_id="site-b", last_run=NOW - timedelta(hours=20)),
        _status("FAILED", site_id="site-c", retry_count=1, last_run=NOW - timedelta(hours=1)),
    ]
    planned = SchedulingDecisionEngine().plan_sites(
        sites, statuses, SchedulingOptions(max_sites_to_schedule=2), now=NOW
    )

    by_site = {entry.site.id: entry for entry in planned}
    assert [entry.site.id for entry in planned] == ["site-a", "site-b", "site-c", "site-d"]
    assert by_site["site-c"].should_schedule
    assert by_site["site-b"].should_schedule
    assert by_site["site-a"].decision.reason == "Skipped due to max sites limit (2)"
    assert not by_site["site-d"].decision.has_valid_prerequisite

    stats = scheduling_statistics(planned)
    assert stats == {
        "total_sites": 4,
        "sites_with_valid_prerequisite": 3,
        "sites_needing_schedule": 2,
        "sites_by_status": {"COMPLETED": 2, "FAILED": 1, "NO_STATUS": 1},
    }


def test_plan_sites_rejects_negative_options() -> None:
    with pytest.raises(InvalidInputError, match="max_retries"):
        SchedulingDecisionEngine().plan_sites([], [], SchedulingOptions(max_retries=-1), now=NOW)


def test_prerequisite_depends_on_job_family() -> None:
    whatsapp_only = _site(channels={"whatsapp": {"enabled": True}})
    assert not prerequisite_for("syncEmailsWorkflow")(whatsapp_only).is_valid
    assert prerequisite_for("dailyProspectionWorkflow")(whatsapp_only).is_valid


def test_scheduling_options_follow_settings() -> None:
    options = scheduling_options(Settings(min_hours_between_runs=5, max_sites_to_schedule=2, dry_run=True))
    assert options.min_hours_between_runs == 5
    assert options.max_sites_to_schedule == 2
    assert options.dry_run
