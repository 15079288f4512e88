from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from loraprov_core.errors import FormatError, PlanNotConfirmedError
from loraprov_core.identifiers import derive_remote_id
from loraprov_core.inventory.types import (
    KIND_DEVICE,
    KIND_GATEWAY,
    Entity,
    RegistryConfig,
)
from loraprov_core.provisioning.types import ACTIVATION_OTAA, RegistrationPlan

DEFAULT_FREQUENCY_PLAN = "EU_863_870_TTN"

FREQUENCY_PLANS: dict[str, str] = {
    "eu1": "EU_863_870_TTN",
    "nam1": "US_902_928_FSB_2",
    "au1": "AU_915_928_FSB_2",
}


def frequency_plan_for(cluster: str | None) -> str:
    # Unrecognized clusters use the default plan rather than failing.
    key = (cluster or "").strip().lower()
    return FREQUENCY_PLANS.get(key, DEFAULT_FREQUENCY_PLAN)


def build_plan(
    selected: Iterable[Entity],
    config: RegistryConfig,
    *,
    kind: str | None = None,
) -> RegistrationPlan:
    entities = list(selected)
    kinds = {entity.kind for entity in entities}
    if len(kinds) > 1:
        raise ValueError("A registration plan cannot mix devices and gateways")
    resolved_kind = kind or (kinds.pop() if kinds else KIND_DEVICE)
    if entities and entities[0].kind != resolved_kind:
        raise ValueError(
            f"Plan kind {resolved_kind} does not match selected {entities[0].kind}s"
        )

    target_ids: list[str] = []
    remote_ids: dict[str, str] = {}
    invalid_ids: list[str] = []
    for entity in entities:
        if entity.local_id in target_ids:
            continue
        target_ids.append(entity.local_id)
        try:
            remote_ids[entity.local_id] = derive_remote_id(entity)
        except FormatError:
            invalid_ids.append(entity.local_id)

    is_gateway = resolved_kind == KIND_GATEWAY
    return RegistrationPlan(
        target_ids=tuple(target_ids),
        frequency_plan=frequency_plan_for(config.cluster),
        activation_mode=None if is_gateway else ACTIVATION_OTAA,
        batched=is_gateway,
        kind=resolved_kind,
        cluster=config.cluster,
        application_id=config.application_id,
        remote_ids=remote_ids,
        invalid_ids=tuple(invalid_ids),
    )


@dataclass(frozen=True)
class ConfirmationGate:
    """Latch that releases a plan only after explicit operator confirmation."""

    plan: RegistrationPlan | None = None
    confirmed: bool = False

    def confirm(self, plan: RegistrationPlan) -> "ConfirmationGate":
        return ConfirmationGate(plan=plan, confirmed=True)

    def revoke(self) -> "ConfirmationGate":
        return ConfirmationGate()

    def release(self) -> RegistrationPlan:
        if not self.confirmed or self.plan is None:
            raise PlanNotConfirmedError("Registration plan has not been confirmed")
        return self.plan
