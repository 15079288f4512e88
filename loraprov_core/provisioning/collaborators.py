from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from loraprov_core.inventory.types import Entity, RegistryConfig
from loraprov_core.provisioning.types import RegistrationPlan

CATEGORY_PERMISSION_DENIED = "permission_denied"
CATEGORY_AUTH_INVALID = "auth_invalid"
CATEGORY_NOT_FOUND = "not_found"
CATEGORY_NETWORK = "network"
CATEGORY_CONFIG = "config"
CATEGORY_UNKNOWN = "unknown"


@dataclass(frozen=True)
class CredentialTestResult:
    ok: bool
    error_message: str | None = None
    http_status: int | None = None
    error_category: str | None = None
    hint: str | None = None


class CredentialTester(Protocol):
    def test_credentials(self, config: RegistryConfig) -> CredentialTestResult:
        ...


class RegistryClient(Protocol):
    def check_existence(
        self,
        remote_id: str,
        kind: str,
        config: RegistryConfig,
    ) -> bool:
        """Return whether the entity exists; raise TransportError on failure."""
        ...

    def register_entity(
        self,
        remote_id: str,
        entity: Entity,
        plan: RegistrationPlan,
        config: RegistryConfig,
    ) -> str:
        """Return "created" or "already_exists"; raise RegistrationError otherwise."""
        ...
