from __future__ import annotations

import subprocess
import sys
from pathlib import Path


SCRIPT_PATH = Path(__file__).resolve().parents[1] / "scripts" / "reset_stuck_job_statuses.py"


def _run_script(*args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, str(SCRIPT_PATH), *args],
        check=False,
        capture_output=True,
        text=True,
    )


def test_reset_script_emits_sql_with_default_threshold() -> None:
    completed = _run_script()
    assert completed.returncode == 0
    output = completed.stdout

    assert "update cron_status" in output
    assert "set status = 'FAILED'" in output
    assert "interval '24 hours'" in output
    assert "activity_name =" not in output


def test_reset_script_scopes_to_job_type_and_site() -> None:
    site_id = "00000000-0000-0000-0000-000000000042"
    output = _run_script("--older-than-hours", "6", "--job-type", "syncEmailsWorkflow", "--site-id", site_id).stdout

    assert "interval '6 hours'" in output
    assert "and activity_name = 'syncEmailsWorkflow'" in output
    assert f"and site_id = '{site_id}'::uuid" in output
    assert "exceeded 6h threshold" in output


def test_reset_script_quotes_values() -> None:
    output = _run_script("--job-type", "o'brien").stdout
    assert "activity_name = 'o''brien'" in output


def test_reset_script_rejects_non_positive_threshold() -> None:
    completed = _run_script("--older-than-hours", "0")
    assert completed.returncode == 2
    assert "must be positive" in completed.stderr
