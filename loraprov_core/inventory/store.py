from __future__ import annotations

import json
from dataclasses import asdict, replace
from datetime import datetime, timezone
from typing import Iterable

import fsspec

from loraprov_core.inventory.types import (
    ENTITY_KINDS,
    KIND_DEVICE,
    OWNER_USER,
    Entity,
    RegistryConfig,
)
from loraprov_core.storage import join_uri


def inventory_uri(base_uri: str) -> str:
    return join_uri(base_uri, "control", "inventory.json")


def registry_configs_uri(base_uri: str) -> str:
    return join_uri(base_uri, "control", "registry_configs.json")


def load_entities(base_uri: str, *, kind: str | None = None) -> list[Entity]:
    payload = _read_document(inventory_uri(base_uri))
    items = payload.get("entities", []) if isinstance(payload, dict) else []
    results: list[Entity] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        entity = entity_from_dict(item)
        if kind is not None and entity.kind != kind:
            continue
        results.append(entity)
    return results


def save_entities(base_uri: str, entities: Iterable[Entity]) -> str:
    items = list(entities)
    seen: set[str] = set()
    for entity in items:
        if entity.local_id in seen:
            raise ValueError(f"Duplicate entity id: {entity.local_id}")
        seen.add(entity.local_id)
    payload = {
        "updated_at": datetime.now(timezone.utc).isoformat(),
        "entities": [asdict(entity) for entity in items],
    }
    return _write_document(inventory_uri(base_uri), payload)


def import_entities(base_uri: str, entities: Iterable[Entity]) -> list[Entity]:
    """Merge entities into the inventory, replacing any with the same id."""
    merged: dict[str, Entity] = {
        entity.local_id: entity for entity in load_entities(base_uri)
    }
    for entity in entities:
        merged[entity.local_id] = entity
    result = list(merged.values())
    save_entities(base_uri, result)
    return result


def load_registry_configs(base_uri: str) -> dict[str, RegistryConfig]:
    payload = _read_document(registry_configs_uri(base_uri))
    items = payload.get("configs", []) if isinstance(payload, dict) else []
    results: dict[str, RegistryConfig] = {}
    for item in items:
        if not isinstance(item, dict):
            continue
        config = registry_config_from_dict(item)
        if config.org_id:
            results[config.org_id] = config
    return results


def load_registry_config(base_uri: str, org_id: str) -> RegistryConfig | None:
    return load_registry_configs(base_uri).get(org_id)


def save_registry_config(base_uri: str, config: RegistryConfig) -> RegistryConfig:
    if not config.org_id:
        raise ValueError("RegistryConfig.org_id is required to store a config")
    stored = replace(config, updated_at=datetime.now(timezone.utc).isoformat())
    configs = load_registry_configs(base_uri)
    configs[stored.org_id] = stored
    payload = {
        "updated_at": stored.updated_at,
        "configs": [asdict(item) for item in configs.values()],
    }
    _write_document(registry_configs_uri(base_uri), payload)
    return stored


def entity_from_dict(payload: dict[str, object]) -> Entity:
    kind = str(payload.get("kind") or KIND_DEVICE).strip().lower()
    if kind not in ENTITY_KINDS:
        raise ValueError(f"Unknown entity kind: {kind}")
    local_id = _coerce_optional_str(payload.get("local_id") or payload.get("id"))
    if local_id is None:
        raise ValueError("Entity is missing local_id")
    eui = payload.get("hardware_eui") or payload.get("dev_eui") or payload.get("eui")
    name = payload.get("display_name") or payload.get("name") or local_id
    return Entity(
        local_id=local_id,
        hardware_eui=str(eui or ""),
        display_name=str(name),
        kind=kind,
        join_eui=_coerce_optional_str(payload.get("join_eui")),
        app_key=_coerce_optional_str(payload.get("app_key")),
        is_online=_coerce_optional_bool(payload.get("is_online")),
    )


def registry_config_from_dict(payload: dict[str, object]) -> RegistryConfig:
    return RegistryConfig(
        enabled=bool(payload.get("enabled", False)),
        cluster=_coerce_optional_str(payload.get("cluster")),
        application_id=_coerce_optional_str(payload.get("application_id")),
        credential_ref=_coerce_optional_str(payload.get("credential_ref")),
        org_id=_coerce_optional_str(payload.get("org_id")),
        gateway_owner_type=str(payload.get("gateway_owner_type") or OWNER_USER),
        gateway_owner_id=_coerce_optional_str(payload.get("gateway_owner_id")),
        gateway_credential_ref=_coerce_optional_str(
            payload.get("gateway_credential_ref")
        ),
        updated_at=_coerce_optional_str(payload.get("updated_at")),
    )


def _read_document(uri: str) -> object:
    fs, path = fsspec.core.url_to_fs(uri)
    if not fs.exists(path):
        return {}
    with fs.open(path, "rb") as handle:
        return json.loads(handle.read().decode("utf-8"))


def _write_document(uri: str, payload: dict[str, object]) -> str:
    fs, path = fsspec.core.url_to_fs(uri)
    fs.makedirs("/".join(path.split("/")[:-1]), exist_ok=True)
    with fs.open(path, "wb") as handle:
        handle.write(json.dumps(payload, ensure_ascii=True).encode("utf-8"))
    return uri


def _coerce_optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_optional_bool(value: object) -> bool | None:
    if value is None:
        return None
    return bool(value)
