from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from loraprov_core.config import Config
from loraprov_core.errors import (
    PlanNotConfirmedError,
    RegistrationError,
    WizardTransitionError,
)
from loraprov_core.logging import JsonFormatter
from loraprov_core.provisioning import wizard
from loraprov_core.provisioning.collaborators import CredentialTestResult
from loraprov_core.provisioning.session import ProvisioningSession, SessionOptions
from loraprov_core.provisioning.types import (
    OUTCOME_ALREADY_EXISTS,
    OUTCOME_CREATED,
    OUTCOME_FAILED,
    STATUS_NOT_REGISTERED,
    STATUS_REGISTERED,
)

_OPTIONS = SessionOptions(timeout_s=0, device_delay_s=0)


@pytest.mark.core
def test_full_workflow(devices, registry_config, make_registry, make_tester, tmp_path):
    registry = make_registry()
    session = ProvisioningSession(
        devices,
        registry_config,
        registry=registry,
        tester=make_tester(),
        options=SessionOptions(
            timeout_s=0, device_delay_s=0, run_log_base_uri=tmp_path.as_posix()
        ),
        session_id="session-1",
    )

    assert session.validate().ok
    session.advance()
    state = session.state
    assert state.current_step == wizard.STEP_DISCOVER
    assert dict(state.statuses) == {
        "d1": STATUS_NOT_REGISTERED,
        "d2": STATUS_NOT_REGISTERED,
    }
    assert state.selection == frozenset({"d1", "d2"})

    session.advance()
    plan = session.confirm()
    assert plan.target_ids == ("d1", "d2")
    assert plan.frequency_plan == "EU_863_870_TTN"

    session.advance()
    summary = session.state.summary
    assert [item.status for item in summary.results] == [OUTCOME_CREATED] * 2
    assert registry.registered == {
        "sensor-aabbccddeeff0011",
        "sensor-aabbccddeeff0022",
    }

    final = session.advance()
    assert final.is_complete

    assert len(session.run_log_uris) == 1
    lines = Path(session.run_log_uris[0]).read_text(encoding="utf-8").splitlines()
    header = json.loads(lines[0])
    assert header["session_id"] == "session-1"
    assert [json.loads(line)["remote_id"] for line in lines[1:]] == [
        "sensor-aabbccddeeff0011",
        "sensor-aabbccddeeff0022",
    ]


@pytest.mark.core
def test_rediscovery_after_registration(
    devices, registry_config, make_registry, make_tester
):
    registry = make_registry()
    session = ProvisioningSession(
        devices,
        registry_config,
        registry=registry,
        tester=make_tester(),
        options=_OPTIONS,
    )
    session.validate()
    session.advance()
    session.advance()
    session.confirm()
    session.advance()

    session.back(wizard.STEP_DISCOVER)
    state = session.state
    assert state.summary is None
    assert state.plan is None
    assert set(state.statuses.values()) == {STATUS_REGISTERED}
    assert state.selection == frozenset()
    with pytest.raises(WizardTransitionError):
        session.advance()


@pytest.mark.core
def test_failed_validation_stays_on_validate(
    devices, registry_config, make_registry, make_tester
):
    tester = make_tester(CredentialTestResult(ok=False, http_status=401))
    session = ProvisioningSession(
        devices,
        registry_config,
        registry=make_registry(),
        tester=tester,
        options=_OPTIONS,
    )
    report = session.validate()
    assert not report.ok
    with pytest.raises(WizardTransitionError):
        session.advance()
    assert session.state.current_step == wizard.STEP_VALIDATE

    tester.result = CredentialTestResult(ok=True, http_status=200)
    assert session.validate().ok
    session.advance()
    assert session.state.current_step == wizard.STEP_DISCOVER


@pytest.mark.core
def test_execute_requires_confirmed_plan(
    devices, registry_config, make_registry, make_tester
):
    session = ProvisioningSession(
        devices,
        registry_config,
        registry=make_registry(),
        tester=make_tester(),
        options=_OPTIONS,
    )
    with pytest.raises(WizardTransitionError):
        session.execute()

    session.validate()
    session.advance()
    session.advance()
    with pytest.raises(WizardTransitionError):
        session.advance()
    with pytest.raises(PlanNotConfirmedError):
        session.state.gate.release()


@pytest.mark.core
def test_retry_failed_registers_only_failures(
    devices, registry_config, make_registry, make_tester
):
    registry = make_registry(
        failures={
            "sensor-aabbccddeeff0022": RegistrationError(
                "service unavailable", http_status=503
            )
        }
    )
    session = ProvisioningSession(
        devices,
        registry_config,
        registry=registry,
        tester=make_tester(),
        options=_OPTIONS,
    )
    session.validate()
    session.advance()
    session.advance()
    session.confirm()
    session.advance()
    first = session.state.summary
    assert first.outcome_for("d2").status == OUTCOME_FAILED
    assert first.outcome_for("d2").retryable is True

    registry.failures.clear()
    assert session.retry_failed(retryable_only=True) == frozenset({"d2"})
    plan = session.confirm()
    assert plan.target_ids == ("d2",)
    session.advance()

    summary = session.state.summary
    assert summary.created == 2
    assert summary.failed == 0
    assert registry.register_calls == [
        "sensor-aabbccddeeff0011",
        "sensor-aabbccddeeff0022",
        "sensor-aabbccddeeff0022",
    ]




def _failing_d2_session(devices, registry_config, make_registry, make_tester):
    registry = make_registry(
        failures={
            "sensor-aabbccddeeff0022": RegistrationError(
                "internal error", http_status=500
            )
        }
    )
    session = ProvisioningSession(
        devices,
        registry_config,
        registry=registry,
        tester=make_tester(),
        options=_OPTIONS,
    )
    session.validate()
    session.advance()
    session.advance()
    session.confirm()
    session.advance()
    assert session.state.summary.outcome_for("d2").status == OUTCOME_FAILED
    registry.failures.clear()
    return session, registry


@pytest.mark.core
def test_retry_with_reselected_success_keeps_one_outcome_per_entity(
    devices, registry_config, make_registry, make_tester
):
    session, _ = _failing_d2_session(
        devices, registry_config, make_registry, make_tester
    )
    session.retry_failed()
    session.toggle("d1")
    session.confirm()
    session.advance()

    summary = session.state.summary
    assert [(item.local_id, item.status) for item in summary.results] == [
        ("d1", OUTCOME_ALREADY_EXISTS),
        ("d2", OUTCOME_CREATED),
    ]
    assert summary.total == 2


@pytest.mark.core
def test_retry_then_back_to_discover_reports_only_the_new_run(
    devices, registry_config, make_registry, make_tester
):
    session, _ = _failing_d2_session(
        devices, registry_config, make_registry, make_tester
    )
    session.retry_failed()
    session.back(wizard.STEP_DISCOVER)
    assert session.state.selection == frozenset({"d2"})
    session.advance()
    plan = session.confirm()
    session.advance()

    summary = session.state.summary
    assert plan.target_ids == ("d2",)
    assert [item.local_id for item in summary.results] == ["d2"]
    assert summary.total == 1
    assert summary.created == 1


@pytest.mark.core
def test_session_runs_with_json_logging(
    devices, registry_config, make_registry, make_tester, caplog
):
    caplog.set_level(logging.INFO)
    session = ProvisioningSession(
        devices,
        registry_config,
        registry=make_registry(),
        tester=make_tester(),
        options=_OPTIONS,
    )
    session.validate()
    session.advance()
    session.advance()
    session.confirm()
    session.advance()
    assert session.state.summary.created == 2
    formatter = JsonFormatter()
    for record in caplog.records:
        json.loads(formatter.format(record))
    messages = {record.getMessage() for record in caplog.records}
    assert "Registration run completed" in messages
@pytest.mark.core
def test_session_options_from_config(monkeypatch):
    monkeypatch.setenv("LORAPROV_DISCOVERY_WORKERS", "2")
    monkeypatch.setenv("LORAPROV_REQUEST_TIMEOUT_S", "3.5")
    options = SessionOptions.from_config(Config.from_env(), write_run_log=False)
    assert options.discovery_workers == 2
    assert options.timeout_s == 3.5
    assert options.device_delay_s == 0
    assert options.run_log_base_uri is None
    assert options.execution_options().timeout_s == 3.5
