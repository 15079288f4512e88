from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Callable, Iterable

from loraprov_core.config import Config
from loraprov_core.errors import WizardTransitionError
from loraprov_core.inventory.types import (
    KIND_DEVICE,
    KIND_GATEWAY,
    Entity,
    RegistryConfig,
)
from loraprov_core.logging import get_logger
from loraprov_core.provisioning import wizard
from loraprov_core.provisioning.collaborators import CredentialTester, RegistryClient
from loraprov_core.provisioning.discovery import reconcile
from loraprov_core.provisioning.executor import ExecutionOptions, execute
from loraprov_core.provisioning.runlog import records_for, write_run_log
from loraprov_core.provisioning.types import (
    DiscoveryResult,
    ProvisioningSummary,
    RegistrationPlan,
    ValidationReport,
)
from loraprov_core.provisioning.validator import validate_connection

logger = get_logger(__name__)


@dataclass(frozen=True)
class SessionOptions:
    discovery_workers: int = 4
    timeout_s: float = 10.0
    device_delay_s: float = 0.5
    batch_workers: int = 8
    run_log_base_uri: str | None = None

    @classmethod
    def from_config(
        cls, config: Config, *, write_run_log: bool = True
    ) -> "SessionOptions":
        return cls(
            discovery_workers=config.discovery_workers,
            timeout_s=config.request_timeout_s,
            device_delay_s=config.device_delay_s,
            batch_workers=config.gateway_batch_workers,
            run_log_base_uri=config.state_uri if write_run_log else None,
        )

    def execution_options(self) -> ExecutionOptions:
        return ExecutionOptions(
            timeout_s=self.timeout_s,
            device_delay_s=self.device_delay_s,
            batch_workers=self.batch_workers,
        )


class ProvisioningSession:
    """Drive one provisioning workflow against real collaborators.

    Entering the discover or execute step runs that step's work once.
    Re-entering validate or discover through ``back`` re-runs its checks.
    """

    def __init__(
        self,
        entities: Iterable[Entity],
        config: RegistryConfig,
        *,
        registry: RegistryClient,
        tester: CredentialTester,
        kind: str = KIND_DEVICE,
        options: SessionOptions | None = None,
        session_id: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if kind not in (KIND_DEVICE, KIND_GATEWAY):
            raise ValueError(f"Unsupported entity kind: {kind}")
        self.config = config
        self.registry = registry
        self.tester = tester
        self.options = options or SessionOptions()
        self.session_id = session_id or uuid.uuid4().hex
        self.run_log_uris: list[str] = []
        self._sleep = sleep
        self._state = wizard.start(entities, kind=kind)

    @property
    def state(self) -> wizard.WizardState:
        return self._state

    def validate(self) -> ValidationReport:
        report = validate_connection(self.config, self.tester)
        self._state = wizard.apply_validation(self._state, report)
        self._log_step_status()
        return report

    def discover(self) -> DiscoveryResult:
        self._state = wizard.mark_checking(self._state)
        result = reconcile(
            self._state.entities,
            self.config,
            self.registry,
            max_workers=self.options.discovery_workers,
            timeout_s=self.options.timeout_s,
        )
        self._state = wizard.apply_discovery(self._state, result)
        self._log_step_status(selected_count=len(self._state.selection))
        return result

    def toggle(self, local_id: str) -> frozenset[str]:
        self._state = wizard.toggle_selection(self._state, local_id)
        return self._state.selection

    def select_unregistered(self) -> frozenset[str]:
        self._state = wizard.select_unregistered(self._state)
        return self._state.selection

    def select_none(self) -> frozenset[str]:
        self._state = wizard.select_none(self._state)
        return self._state.selection

    def confirm(self) -> RegistrationPlan:
        self._state = wizard.confirm_plan(self._state, self.config)
        plan = self._state.gate.release()
        logger.info(
            "Registration plan confirmed",
            extra={
                "session_id": self.session_id,
                "step": self._state.current_step,
                "kind": plan.kind,
                "target_count": len(plan.target_ids),
                "frequency_plan": plan.frequency_plan,
                "batched": plan.batched,
            },
        )
        return plan

    def revoke(self) -> None:
        self._state = wizard.revoke_confirmation(self._state)
        self._log_step_status()

    def execute(self) -> ProvisioningSummary:
        if self._state.current_step != wizard.STEP_EXECUTE:
            raise WizardTransitionError(
                f"Expected step {wizard.STEP_EXECUTE}, "
                f"wizard is at {self._state.current_step}"
            )
        plan = self._state.gate.release()
        run_summary = execute(
            plan,
            self._state.entities,
            self.config,
            self.registry,
            self.options.execution_options(),
            sleep=self._sleep,
        )
        self._state = wizard.apply_execution(self._state, run_summary)
        if self.options.run_log_base_uri:
            run_id = uuid.uuid4().hex
            uri = write_run_log(
                base_uri=self.options.run_log_base_uri,
                run_id=run_id,
                plan=plan,
                records=records_for(run_id, plan, run_summary),
                session_id=self.session_id,
            )
            self.run_log_uris.append(uri)
            logger.info(
                "Run log written",
                extra={"session_id": self.session_id, "run_id": run_id},
            )
        self._log_step_status()
        summary = self._state.summary
        assert summary is not None
        return summary

    def advance(self) -> wizard.WizardState:
        from_step = self._state.current_step
        self._state = wizard.advance(self._state)
        self._log_transition(from_step)
        if self._state.current_step == wizard.STEP_DISCOVER:
            self.discover()
        elif self._state.current_step == wizard.STEP_EXECUTE:
            self.execute()
        return self._state

    def back(self, step: str) -> wizard.WizardState:
        from_step = self._state.current_step
        self._state = wizard.go_back(self._state, step)
        self._log_transition(from_step)
        if self._state.current_step == wizard.STEP_VALIDATE:
            self.validate()
        elif self._state.current_step == wizard.STEP_DISCOVER:
            self.discover()
        return self._state

    def retry_failed(self, *, retryable_only: bool = False) -> frozenset[str]:
        from_step = self._state.current_step
        self._state = wizard.retry_failed(self._state, retryable_only=retryable_only)
        self._log_transition(from_step)
        return self._state.selection

    def _log_transition(self, from_step: str) -> None:
        logger.info(
            "Wizard step changed",
            extra={
                "session_id": self.session_id,
                "from_step": from_step,
                "to_step": self._state.current_step,
            },
        )

    def _log_step_status(self, **fields: object) -> None:
        step = self._state.current_step
        logger.info(
            "Wizard step updated",
            extra={
                "session_id": self.session_id,
                "step": step,
                "step_status": self._state.step_status(step),
                **fields,
            },
        )
