from __future__ import annotations

from dataclasses import dataclass

KIND_DEVICE = "device"
KIND_GATEWAY = "gateway"
ENTITY_KINDS: tuple[str, ...] = (KIND_DEVICE, KIND_GATEWAY)

CLUSTERS: tuple[str, ...] = ("eu1", "nam1", "au1")

OWNER_USER = "user"
OWNER_ORGANIZATION = "organization"


@dataclass(frozen=True)
class Entity:
    local_id: str
    hardware_eui: str
    display_name: str
    kind: str = KIND_DEVICE
    join_eui: str | None = None
    app_key: str | None = None
    is_online: bool | None = None


@dataclass(frozen=True)
class RegistryConfig:
    enabled: bool
    cluster: str | None
    application_id: str | None
    credential_ref: str | None
    org_id: str | None = None
    gateway_owner_type: str = OWNER_USER
    gateway_owner_id: str | None = None
    gateway_credential_ref: str | None = None
    updated_at: str | None = None
