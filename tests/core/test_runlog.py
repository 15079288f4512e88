from __future__ import annotations

import pytest

from loraprov_core.provisioning.plan import build_plan
from loraprov_core.provisioning.runlog import (
    read_run_log,
    records_for,
    run_log_uri,
    write_run_log,
)
from loraprov_core.provisioning.types import (
    OUTCOME_CREATED,
    OUTCOME_FAILED,
    ProvisioningSummary,
    RegistrationOutcome,
)


@pytest.mark.core
def test_run_log_write_and_read(tmp_path, devices, registry_config):
    plan = build_plan(devices, registry_config)
    summary = ProvisioningSummary(
        results=(
            RegistrationOutcome(
                local_id="d1",
                status=OUTCOME_CREATED,
                remote_id="sensor-aabbccddeeff0011",
                duration_ms=12,
            ),
            RegistrationOutcome(
                local_id="d2",
                status=OUTCOME_FAILED,
                remote_id="sensor-aabbccddeeff0022",
                reason="rate-limited (HTTP 429)",
                error_code="RATE_LIMITED",
                http_status=429,
                retryable=True,
            ),
        )
    )
    uri = write_run_log(
        base_uri=tmp_path.as_posix(),
        run_id="run-1",
        plan=plan,
        records=records_for("run-1", plan, summary),
        session_id="session-1",
    )
    assert uri == run_log_uri(tmp_path.as_posix(), "run-1")
    assert uri.endswith("audit/provisioning/run-1.jsonl")

    header, records = read_run_log(uri)
    assert header["run_id"] == "run-1"
    assert header["frequency_plan"] == "EU_863_870_TTN"
    assert header["batched"] is False
    assert [record.status for record in records] == [OUTCOME_CREATED, OUTCOME_FAILED]
    assert records[1].http_status == 429
    assert records[1].retryable is True
