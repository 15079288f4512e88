"""Provisioning wizard state and its pure transitions.

Every transition takes a ``WizardState`` and returns a new one; nothing here
talks to the registry. ``loraprov_core.provisioning.session`` drives these
transitions with real collaborators.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Iterable, Mapping

from loraprov_core.errors import WizardTransitionError
from loraprov_core.inventory.types import KIND_DEVICE, Entity, RegistryConfig
from loraprov_core.provisioning import selection as selection_model
from loraprov_core.provisioning.discovery import checking_statuses
from loraprov_core.provisioning.plan import ConfirmationGate, build_plan
from loraprov_core.provisioning.types import (
    DiscoveryResult,
    ProvisioningSummary,
    RegistrationOutcome,
    RegistrationPlan,
    ValidationReport,
)

STEP_VALIDATE = "validate"
STEP_DISCOVER = "discover"
STEP_STRATEGY = "strategy"
STEP_EXECUTE = "execute"
STEP_COMPLETE = "complete"
STEPS: tuple[str, ...] = (
    STEP_VALIDATE,
    STEP_DISCOVER,
    STEP_STRATEGY,
    STEP_EXECUTE,
    STEP_COMPLETE,
)

STEP_PENDING = "pending"
STEP_ACTIVE = "active"
STEP_PASSED = "passed"
STEP_FAILED = "failed"

_DISCOVER_INDEX = STEPS.index(STEP_DISCOVER)
_STRATEGY_INDEX = STEPS.index(STEP_STRATEGY)
_EXECUTE_INDEX = STEPS.index(STEP_EXECUTE)
_COMPLETE_INDEX = STEPS.index(STEP_COMPLETE)


def _initial_statuses() -> tuple[str, ...]:
    return (STEP_ACTIVE,) + (STEP_PENDING,) * (len(STEPS) - 1)


@dataclass(frozen=True)
class WizardState:
    entities: tuple[Entity, ...]
    kind: str = KIND_DEVICE
    current_step_index: int = 0
    step_statuses: tuple[str, ...] = field(default_factory=_initial_statuses)
    validation: ValidationReport | None = None
    statuses: Mapping[str, str] = field(default_factory=dict)
    selection: frozenset[str] = frozenset()
    gate: ConfirmationGate = field(default_factory=ConfirmationGate)
    summary: ProvisioningSummary | None = None
    retained: tuple[RegistrationOutcome, ...] = ()

    @property
    def current_step(self) -> str:
        return STEPS[self.current_step_index]

    @property
    def is_complete(self) -> bool:
        return self.current_step_index == _COMPLETE_INDEX

    @property
    def plan(self) -> RegistrationPlan | None:
        return self.gate.plan

    @property
    def entity_ids(self) -> tuple[str, ...]:
        return tuple(entity.local_id for entity in self.entities)

    def step_status(self, step: str) -> str:
        return self.step_statuses[_step_index(step)]

    def selected_entities(self) -> list[Entity]:
        return [entity for entity in self.entities if entity.local_id in self.selection]

    def can_advance(self) -> bool:
        if self.is_complete:
            return False
        if self.step_statuses[self.current_step_index] != STEP_PASSED:
            return False
        if self.current_step == STEP_DISCOVER:
            return bool(self.selection)
        return True


def start(entities: Iterable[Entity], *, kind: str = KIND_DEVICE) -> WizardState:
    items = tuple(entity for entity in entities if entity.kind == kind)
    seen: set[str] = set()
    for entity in items:
        if entity.local_id in seen:
            raise ValueError(f"Duplicate entity id: {entity.local_id}")
        seen.add(entity.local_id)
    return WizardState(entities=items, kind=kind)


def apply_validation(state: WizardState, report: ValidationReport) -> WizardState:
    _require_step(state, STEP_VALIDATE)
    status = STEP_PASSED if report.ok else STEP_FAILED
    return replace(
        state,
        validation=report,
        step_statuses=_with_status(state.step_statuses, 0, status),
    )


def mark_checking(state: WizardState) -> WizardState:
    _require_step(state, STEP_DISCOVER)
    return replace(state, statuses=checking_statuses(state.entities))


def apply_discovery(state: WizardState, result: DiscoveryResult) -> WizardState:
    _require_step(state, STEP_DISCOVER)
    statuses = {
        local_id: result.statuses[local_id]
        for local_id in state.entity_ids
        if local_id in result.statuses
    }
    return replace(
        state,
        statuses=statuses,
        selection=frozenset(result.selection) & frozenset(state.entity_ids),
        step_statuses=_with_status(state.step_statuses, _DISCOVER_INDEX, STEP_PASSED),
    )


def toggle_selection(state: WizardState, local_id: str) -> WizardState:
    _require_selectable(state)
    updated = selection_model.toggle(state.selection, local_id, state.entity_ids)
    return _with_selection(state, updated)


def select_unregistered(state: WizardState) -> WizardState:
    _require_selectable(state)
    return _with_selection(state, selection_model.select_unregistered(state.statuses))


def select_none(state: WizardState) -> WizardState:
    _require_selectable(state)
    return _with_selection(state, selection_model.select_none())


def confirm_plan(state: WizardState, config: RegistryConfig) -> WizardState:
    """Build the plan from the current selection and latch it as confirmed."""
    _require_step(state, STEP_STRATEGY)
    selected = state.selected_entities()
    if not selected:
        raise WizardTransitionError("Nothing selected to register")
    plan = build_plan(selected, config, kind=state.kind)
    return replace(
        state,
        gate=state.gate.confirm(plan),
        step_statuses=_with_status(state.step_statuses, _STRATEGY_INDEX, STEP_PASSED),
    )


def revoke_confirmation(state: WizardState) -> WizardState:
    _require_step(state, STEP_STRATEGY)
    return replace(
        state,
        gate=state.gate.revoke(),
        step_statuses=_with_status(state.step_statuses, _STRATEGY_INDEX, STEP_ACTIVE),
    )


def apply_execution(state: WizardState, summary: ProvisioningSummary) -> WizardState:
    # A run with failed items still passes the step; failures live in the summary.
    _require_step(state, STEP_EXECUTE)
    combined = {outcome.local_id: outcome for outcome in state.retained}
    combined.update((outcome.local_id, outcome) for outcome in summary.results)
    ordered = [
        combined.pop(local_id)
        for local_id in state.entity_ids
        if local_id in combined
    ]
    merged = ProvisioningSummary(results=tuple(ordered) + tuple(combined.values()))
    return replace(
        state,
        summary=merged,
        retained=(),
        step_statuses=_with_status(state.step_statuses, _EXECUTE_INDEX, STEP_PASSED),
    )


def advance(state: WizardState) -> WizardState:
    if state.is_complete:
        raise WizardTransitionError("Provisioning is complete")
    index = state.current_step_index
    if state.step_statuses[index] != STEP_PASSED:
        raise WizardTransitionError(
            f"Step {state.current_step} has not passed "
            f"(status={state.step_statuses[index]})"
        )
    if state.current_step == STEP_DISCOVER and not state.selection:
        raise WizardTransitionError("Select at least one entity to continue")
    next_index = index + 1
    next_status = STEP_PASSED if next_index == _COMPLETE_INDEX else STEP_ACTIVE
    return replace(
        state,
        current_step_index=next_index,
        step_statuses=_with_status(state.step_statuses, next_index, next_status),
    )


def go_back(state: WizardState, target: str | int) -> WizardState:
    """Return to an earlier step, discarding artifacts owned by later steps."""
    if state.is_complete:
        raise WizardTransitionError("Provisioning is complete")
    target_index = target if isinstance(target, int) else _step_index(target)
    if target_index < 0 or target_index >= state.current_step_index:
        raise WizardTransitionError(
            f"Cannot go back from {state.current_step} to step {target!r}"
        )

    statuses = list(state.step_statuses)
    statuses[target_index] = STEP_ACTIVE
    for idx in range(target_index + 1, len(statuses)):
        statuses[idx] = STEP_PENDING

    updated = replace(
        state,
        current_step_index=target_index,
        step_statuses=tuple(statuses),
    )
    if target_index <= _EXECUTE_INDEX:
        updated = replace(updated, summary=None)
    if target_index <= _STRATEGY_INDEX:
        updated = replace(updated, gate=ConfirmationGate())
    if target_index <= _DISCOVER_INDEX:
        updated = replace(updated, retained=())
    if target_index < _DISCOVER_INDEX:
        updated = replace(updated, statuses={}, selection=frozenset())
    return updated


def retry_failed(state: WizardState, *, retryable_only: bool = False) -> WizardState:
    """Select the failed targets of the last run and return to the strategy step.

    Outcomes that are not being retried are kept and merged into the next
    run's summary unless that run produces a fresh outcome for the same
    entity. Returning to discover or earlier drops them.
    """
    _require_step(state, STEP_EXECUTE)
    if state.summary is None:
        raise WizardTransitionError("No registration run to retry")
    retry_ids = selection_model.select_failed(
        state.summary, retryable_only=retryable_only
    )
    if not retry_ids:
        raise WizardTransitionError("No failed registrations to retry")
    kept = tuple(
        outcome
        for outcome in state.summary.results
        if outcome.local_id not in retry_ids
    )
    updated = go_back(state, STEP_STRATEGY)
    return replace(updated, selection=retry_ids, retained=kept)


def _require_step(state: WizardState, step: str) -> None:
    if state.current_step != step:
        raise WizardTransitionError(
            f"Expected step {step}, wizard is at {state.current_step}"
        )


def _require_selectable(state: WizardState) -> None:
    if state.current_step not in (STEP_DISCOVER, STEP_STRATEGY):
        raise WizardTransitionError(
            f"Selection cannot change during {state.current_step}"
        )


def _with_selection(state: WizardState, selection: frozenset[str]) -> WizardState:
    if state.current_step == STEP_STRATEGY:
        # Editing the selection invalidates any confirmed plan.
        return replace(
            state,
            selection=selection,
            gate=ConfirmationGate(),
            step_statuses=_with_status(
                state.step_statuses, _STRATEGY_INDEX, STEP_ACTIVE
            ),
        )
    return replace(state, selection=selection)


def _with_status(statuses: tuple[str, ...], index: int, status: str) -> tuple[str, ...]:
    updated = list(statuses)
    updated[index] = status
    return tuple(updated)


def _step_index(step: str) -> int:
    try:
        return STEPS.index(step)
    except ValueError as exc:
        raise WizardTransitionError(f"Unknown wizard step: {step}") from exc
