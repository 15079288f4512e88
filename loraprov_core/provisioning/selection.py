from __future__ import annotations

from typing import Iterable, Mapping

from loraprov_core.provisioning.types import (
    OUTCOME_FAILED,
    STATUS_NOT_REGISTERED,
    ProvisioningSummary,
)


def toggle(
    selection: frozenset[str],
    local_id: str,
    known_ids: Iterable[str],
) -> frozenset[str]:
    if local_id not in set(known_ids):
        raise KeyError(f"Unknown entity id: {local_id}")
    if local_id in selection:
        return selection - {local_id}
    return selection | {local_id}


def select_unregistered(statuses: Mapping[str, str]) -> frozenset[str]:
    return frozenset(
        local_id
        for local_id, status in statuses.items()
        if status == STATUS_NOT_REGISTERED
    )


def select_none() -> frozenset[str]:
    return frozenset()


def select_failed(
    summary: ProvisioningSummary,
    *,
    retryable_only: bool = False,
) -> frozenset[str]:
    return frozenset(
        item.local_id
        for item in summary.results
        if item.status == OUTCOME_FAILED and (item.retryable or not retryable_only)
    )
