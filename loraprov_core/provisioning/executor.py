from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping

from loraprov_core.errors import RegistrationError, RemoteTimeoutError
from loraprov_core.inventory.types import Entity, RegistryConfig
from loraprov_core.logging import get_logger
from loraprov_core.provisioning.classify import (
    error_code_for,
    failure_reason,
    is_retryable,
)
from loraprov_core.provisioning.collaborators import RegistryClient
from loraprov_core.provisioning.timeout import call_with_timeout
from loraprov_core.provisioning.types import (
    ERROR_INVALID_EUI,
    ERROR_TIMEOUT,
    ERROR_UNKNOWN,
    OUTCOME_ALREADY_EXISTS,
    OUTCOME_CREATED,
    OUTCOME_FAILED,
    ProvisioningSummary,
    RegistrationOutcome,
    RegistrationPlan,
)

logger = get_logger(__name__)

OutcomeCallback = Callable[[RegistrationOutcome], None]


@dataclass(frozen=True)
class ExecutionOptions:
    timeout_s: float = 10.0
    device_delay_s: float = 0.5
    batch_workers: int = 8


def execute(
    plan: RegistrationPlan,
    entities: Iterable[Entity] | Mapping[str, Entity],
    config: RegistryConfig,
    registry: RegistryClient,
    options: ExecutionOptions | None = None,
    *,
    on_outcome: OutcomeCallback | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ProvisioningSummary:
    """Register every plan target and return one outcome per target.

    A failing target never stops the run. Outcomes keep the order of
    ``plan.target_ids`` whether the plan is processed sequentially or batched.
    """
    resolved = options or ExecutionOptions()
    if isinstance(entities, Mapping):
        by_id = dict(entities)
    else:
        by_id = {entity.local_id: entity for entity in entities}

    started = time.monotonic()
    targets = plan.target_ids
    if plan.batched and len(targets) > 1:
        results = _run_batched(plan, by_id, config, registry, resolved, on_outcome)
    else:
        results = []
        for idx, local_id in enumerate(targets):
            outcome = _register_one(
                plan, local_id, by_id.get(local_id), config, registry, resolved
            )
            results.append(outcome)
            if on_outcome is not None:
                on_outcome(outcome)
            if idx < len(targets) - 1 and resolved.device_delay_s > 0:
                sleep(resolved.device_delay_s)

    summary = ProvisioningSummary(results=tuple(results))
    logger.info(
        "Registration run completed",
        extra={
            "kind": plan.kind,
            "batched": plan.batched,
            "target_count": summary.total,
            "created_count": summary.created,
            "already_exists_count": summary.already_exists,
            "failed_count": summary.failed,
            "duration_ms": int((time.monotonic() - started) * 1000),
        },
    )
    return summary


def _run_batched(
    plan: RegistrationPlan,
    by_id: dict[str, Entity],
    config: RegistryConfig,
    registry: RegistryClient,
    options: ExecutionOptions,
    on_outcome: OutcomeCallback | None,
) -> list[RegistrationOutcome]:
    targets = plan.target_ids
    max_workers = max(1, min(options.batch_workers, len(targets)))
    results: list[RegistrationOutcome | None] = [None] * len(targets)
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_map = {}
        for idx, local_id in enumerate(targets):
            future = executor.submit(
                _register_one,
                plan,
                local_id,
                by_id.get(local_id),
                config,
                registry,
                options,
            )
            future_map[future] = idx
        for future in as_completed(future_map):
            outcome = future.result()
            results[future_map[future]] = outcome
            if on_outcome is not None:
                on_outcome(outcome)
    return [item for item in results if item is not None]


def _register_one(
    plan: RegistrationPlan,
    local_id: str,
    entity: Entity | None,
    config: RegistryConfig,
    registry: RegistryClient,
    options: ExecutionOptions,
) -> RegistrationOutcome:
    started = time.monotonic()

    def _elapsed() -> int:
        return int((time.monotonic() - started) * 1000)

    remote_id = plan.remote_ids.get(local_id)
    if local_id in plan.invalid_ids or remote_id is None:
        return _failed(
            local_id,
            None,
            reason="Invalid EUI format: must be 16 hex characters",
            error_code=ERROR_INVALID_EUI,
            http_status=None,
            retryable=False,
            duration_ms=_elapsed(),
        )
    if entity is None:
        return _failed(
            local_id,
            remote_id,
            reason="Entity not found in inventory",
            error_code=ERROR_UNKNOWN,
            http_status=None,
            retryable=False,
            duration_ms=_elapsed(),
        )

    try:
        response = call_with_timeout(
            f"registration of {remote_id}",
            lambda: registry.register_entity(remote_id, entity, plan, config),
            options.timeout_s,
        )
    except RemoteTimeoutError:
        return _failed(
            local_id,
            remote_id,
            reason="timeout",
            error_code=ERROR_TIMEOUT,
            http_status=None,
            retryable=True,
            duration_ms=_elapsed(),
        )
    except RegistrationError as exc:
        if exc.http_status == 409:
            return _succeeded(local_id, remote_id, OUTCOME_ALREADY_EXISTS, _elapsed())
        return _failed(
            local_id,
            remote_id,
            reason=failure_reason(exc.reason, exc.http_status),
            error_code=exc.error_code or error_code_for(exc.http_status, exc.reason),
            http_status=exc.http_status,
            retryable=is_retryable(exc.http_status, exc.reason),
            duration_ms=_elapsed(),
        )
    except Exception as exc:
        http_status = getattr(exc, "http_status", None)
        message = str(exc) or type(exc).__name__
        return _failed(
            local_id,
            remote_id,
            reason=failure_reason(message, http_status),
            error_code=error_code_for(http_status, message),
            http_status=http_status,
            retryable=is_retryable(http_status, message),
            duration_ms=_elapsed(),
        )

    if response == OUTCOME_ALREADY_EXISTS:
        return _succeeded(local_id, remote_id, OUTCOME_ALREADY_EXISTS, _elapsed())
    if response == OUTCOME_CREATED:
        return _succeeded(local_id, remote_id, OUTCOME_CREATED, _elapsed())
    return _failed(
        local_id,
        remote_id,
        reason=f"unknown: unexpected registry response {response!r}",
        error_code=ERROR_UNKNOWN,
        http_status=None,
        retryable=False,
        duration_ms=_elapsed(),
    )


def _succeeded(
    local_id: str,
    remote_id: str,
    status: str,
    duration_ms: int,
) -> RegistrationOutcome:
    logger.info(
        "Entity registered" if status == OUTCOME_CREATED else "Entity already exists",
        extra={
            "entity_id": local_id,
            "remote_id": remote_id,
            "status": status,
            "duration_ms": duration_ms,
        },
    )
    return RegistrationOutcome(
        local_id=local_id,
        status=status,
        remote_id=remote_id,
        duration_ms=duration_ms,
    )


def _failed(
    local_id: str,
    remote_id: str | None,
    *,
    reason: str,
    error_code: str,
    http_status: int | None,
    retryable: bool,
    duration_ms: int,
) -> RegistrationOutcome:
    logger.warning(
        "Entity registration failed",
        extra={
            "entity_id": local_id,
            "remote_id": remote_id,
            "status": OUTCOME_FAILED,
            "error_code": error_code,
            "error_message": reason,
            "http_status": http_status,
            "duration_ms": duration_ms,
        },
    )
    return RegistrationOutcome(
        local_id=local_id,
        status=OUTCOME_FAILED,
        remote_id=remote_id,
        reason=reason,
        error_code=error_code,
        http_status=http_status,
        retryable=retryable,
        duration_ms=duration_ms,
    )
