from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Iterable

from loraprov_core.errors import FormatError, RemoteTimeoutError
from loraprov_core.identifiers import derive_remote_id
from loraprov_core.inventory.types import Entity, RegistryConfig
from loraprov_core.logging import get_logger
from loraprov_core.provisioning.collaborators import RegistryClient
from loraprov_core.provisioning.timeout import call_with_timeout
from loraprov_core.provisioning.types import (
    STATUS_CHECKING,
    STATUS_ERROR,
    STATUS_NOT_REGISTERED,
    STATUS_REGISTERED,
    DiscoveryResult,
)

logger = get_logger(__name__)


def checking_statuses(entities: Iterable[Entity]) -> dict[str, str]:
    return {entity.local_id: STATUS_CHECKING for entity in entities}


def reconcile(
    entities: Iterable[Entity],
    config: RegistryConfig,
    registry: RegistryClient,
    *,
    max_workers: int = 4,
    timeout_s: float = 0.0,
) -> DiscoveryResult:
    """Check every entity against the registry and auto-select unregistered ones.

    Each entity's status depends only on its own derivation and existence
    check, so checks run concurrently and the result is independent of
    completion order. The returned statuses and selection fully replace any
    prior discovery run.
    """
    items = list(entities)
    if not items:
        return DiscoveryResult(statuses={}, selection=frozenset())

    started = time.monotonic()
    statuses: dict[str, str] = {}
    remote_ids: dict[str, str] = {}
    pending: list[tuple[Entity, str]] = []
    for entity in items:
        try:
            remote_id = derive_remote_id(entity)
        except FormatError as exc:
            logger.warning(
                "Skipping existence check for malformed EUI",
                extra={
                    "entity_id": entity.local_id,
                    "kind": entity.kind,
                    "error_message": str(exc),
                },
            )
            statuses[entity.local_id] = STATUS_ERROR
            continue
        remote_ids[entity.local_id] = remote_id
        pending.append((entity, remote_id))

    if pending:
        workers = max(1, min(max_workers, len(pending)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_map = {
                executor.submit(
                    _check_one, entity, remote_id, config, registry, timeout_s
                ): entity.local_id
                for entity, remote_id in pending
            }
            resolved: dict[str, str] = {}
            for future in as_completed(future_map):
                resolved[future_map[future]] = future.result()
        statuses.update(resolved)

    ordered = {entity.local_id: statuses[entity.local_id] for entity in items}
    selection = frozenset(
        local_id
        for local_id, status in ordered.items()
        if status == STATUS_NOT_REGISTERED
    )
    result = DiscoveryResult(
        statuses=ordered,
        selection=selection,
        remote_ids=remote_ids,
    )
    logger.info(
        "Discovery completed",
        extra={
            "target_count": len(items),
            "registered_count": result.count(STATUS_REGISTERED),
            "not_registered_count": result.count(STATUS_NOT_REGISTERED),
            "error_count": result.count(STATUS_ERROR),
            "duration_ms": int((time.monotonic() - started) * 1000),
        },
    )
    return result


def _check_one(
    entity: Entity,
    remote_id: str,
    config: RegistryConfig,
    registry: RegistryClient,
    timeout_s: float,
) -> str:
    try:
        exists = call_with_timeout(
            f"existence check for {remote_id}",
            lambda: registry.check_existence(remote_id, entity.kind, config),
            timeout_s,
        )
    except RemoteTimeoutError as exc:
        logger.warning(
            "Existence check timed out",
            extra={
                "entity_id": entity.local_id,
                "remote_id": remote_id,
                "error_code": "TIMEOUT",
                "error_message": str(exc),
            },
        )
        return STATUS_ERROR
    except Exception as exc:
        logger.warning(
            "Existence check failed",
            extra={
                "entity_id": entity.local_id,
                "remote_id": remote_id,
                "http_status": getattr(exc, "http_status", None),
                "error_message": str(exc),
            },
        )
        return STATUS_ERROR
    return STATUS_REGISTERED if exists else STATUS_NOT_REGISTERED
