from __future__ import annotations

import os
import time
from typing import Any, NoReturn

import httpx

from loraprov_core.config import Config
from loraprov_core.errors import (
    ConfigError,
    CredentialError,
    FormatError,
    RegistrationError,
    RemoteTimeoutError,
    TransportError,
)
from loraprov_core.identifiers import normalize_eui
from loraprov_core.inventory.types import (
    KIND_GATEWAY,
    OWNER_ORGANIZATION,
    Entity,
    RegistryConfig,
)
from loraprov_core.logging import get_logger, mask_secret
from loraprov_core.provisioning.classify import error_code_for
from loraprov_core.provisioning.collaborators import (
    CATEGORY_AUTH_INVALID,
    CATEGORY_CONFIG,
    CATEGORY_NETWORK,
    CATEGORY_NOT_FOUND,
    CATEGORY_PERMISSION_DENIED,
    CATEGORY_UNKNOWN,
    CredentialTestResult,
)
from loraprov_core.provisioning.types import (
    ERROR_INVALID_EUI,
    ERROR_INVALID_REQUEST,
    OUTCOME_ALREADY_EXISTS,
    OUTCOME_CREATED,
    RegistrationPlan,
)

logger = get_logger(__name__)

CLUSTER_URL_TEMPLATE = "https://{cluster}.cloud.thethings.network"
CREDENTIAL_ENV_PREFIX = "env:"
DEFAULT_JOIN_EUI = "0000000000000000"
LORAWAN_VERSION = "MAC_V1_0_3"
LORAWAN_PHY_VERSION = "PHY_V1_0_3_REV_A"

REQUIRED_RIGHTS: tuple[str, ...] = (
    "RIGHT_APPLICATION_INFO",
    "RIGHT_APPLICATION_DEVICES_READ",
    "RIGHT_APPLICATION_DEVICES_WRITE",
)

_DEVICE_FIELD_MASK = [
    "ids.device_id",
    "ids.dev_eui",
    "ids.join_eui",
    "name",
    "description",
    "lorawan_version",
    "lorawan_phy_version",
    "frequency_plan_id",
    "supports_join",
]
_JOIN_SERVER_FIELD_MASK = [
    "ids.device_id",
    "ids.dev_eui",
    "ids.join_eui",
    "network_server_address",
    "application_server_address",
    "root_keys.app_key.key",
]


def resolve_credential(ref: str | None) -> str | None:
    """Resolve a credential reference to the API key it names.

    ``env:NAME`` reads the key from the environment; any other value is the
    key itself.
    """
    if not ref:
        return None
    if ref.startswith(CREDENTIAL_ENV_PREFIX):
        return os.getenv(ref[len(CREDENTIAL_ENV_PREFIX):]) or None
    return ref


class TtnRegistryClient:
    """Registry client for The Things Stack v3 HTTP API."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        http: httpx.Client | None = None,
        timeout_s: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        self._http = http or httpx.Client(timeout=timeout_s)
        self._owns_http = http is None

    @classmethod
    def from_config(cls, config: Config) -> "TtnRegistryClient":
        return cls(
            base_url=config.registry_base_url,
            timeout_s=config.request_timeout_s or 10.0,
        )

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "TtnRegistryClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def base_url_for(self, config: RegistryConfig) -> str:
        if self.base_url:
            return self.base_url
        cluster = (config.cluster or "").strip().lower()
        if not cluster:
            raise ConfigError("Registry cluster is not configured")
        return CLUSTER_URL_TEMPLATE.format(cluster=cluster)

    def test_credentials(self, config: RegistryConfig) -> CredentialTestResult:
        application_id = config.application_id or ""
        try:
            api_key = self._api_key(config, kind=None)
            base_url = self.base_url_for(config)
        except (ConfigError, CredentialError) as exc:
            return CredentialTestResult(
                ok=False,
                error_message=str(exc),
                error_category=CATEGORY_CONFIG,
                hint="Configure the registry cluster and API key first",
            )

        url = f"{base_url}/api/v3/applications/{application_id}"
        try:
            response = self._request("GET", url, api_key)
        except TransportError as exc:
            return CredentialTestResult(
                ok=False,
                error_message="Network error connecting to registry",
                error_category=CATEGORY_NETWORK,
                hint=f"Could not reach {base_url}: {exc}",
            )

        status = response.status_code
        if status == 200:
            return CredentialTestResult(ok=True, http_status=status)
        if status == 401:
            return CredentialTestResult(
                ok=False,
                error_message="Invalid or expired API key",
                http_status=status,
                error_category=CATEGORY_AUTH_INVALID,
                hint="Generate a new API key for the application",
            )
        if status == 403:
            return CredentialTestResult(
                ok=False,
                error_message="API key missing required permissions",
                http_status=status,
                error_category=CATEGORY_PERMISSION_DENIED,
                hint="The API key needs: " + ", ".join(REQUIRED_RIGHTS),
            )
        if status == 404:
            return CredentialTestResult(
                ok=False,
                error_message=(
                    f'Application "{application_id}" not found '
                    f"in {config.cluster} cluster"
                ),
                http_status=status,
                error_category=CATEGORY_NOT_FOUND,
                hint="Check the application ID and the selected cluster",
            )
        return CredentialTestResult(
            ok=False,
            error_message=f"Registry returned status {status}",
            http_status=status,
            error_category=CATEGORY_UNKNOWN,
            hint=_response_message(response),
        )

    def check_existence(
        self,
        remote_id: str,
        kind: str,
        config: RegistryConfig,
    ) -> bool:
        api_key = self._api_key(config, kind=kind)
        base_url = self.base_url_for(config)
        if kind == KIND_GATEWAY:
            url = f"{base_url}/api/v3/gateways/{remote_id}"
        else:
            url = (
                f"{base_url}/api/v3/applications/{config.application_id}"
                f"/devices/{remote_id}"
            )
        response = self._request("GET", url, api_key)
        if response.status_code == 200:
            return True
        if response.status_code == 404:
            return False
        raise TransportError(
            _response_message(response)
            or f"Existence check returned status {response.status_code}",
            http_status=response.status_code,
        )

    def register_entity(
        self,
        remote_id: str,
        entity: Entity,
        plan: RegistrationPlan,
        config: RegistryConfig,
    ) -> str:
        if plan.kind == KIND_GATEWAY:
            return self._register_gateway(remote_id, entity, plan, config)
        return self._register_device(remote_id, entity, plan, config)

    def _register_device(
        self,
        remote_id: str,
        entity: Entity,
        plan: RegistrationPlan,
        config: RegistryConfig,
    ) -> str:
        try:
            dev_eui = normalize_eui(entity.hardware_eui).upper()
            join_eui = normalize_eui(entity.join_eui or DEFAULT_JOIN_EUI).upper()
        except FormatError as exc:
            raise RegistrationError(str(exc), error_code=ERROR_INVALID_EUI) from exc

        api_key = self._api_key(config, kind=plan.kind)
        base_url = self.base_url_for(config)
        application_id = plan.application_id or config.application_id
        ids = {"device_id": remote_id, "dev_eui": dev_eui, "join_eui": join_eui}
        end_device: dict[str, Any] = {
            "ids": ids,
            "name": entity.display_name or remote_id,
            "description": f"Provisioned from inventory entry {entity.local_id}",
            "lorawan_version": LORAWAN_VERSION,
            "lorawan_phy_version": LORAWAN_PHY_VERSION,
            "frequency_plan_id": plan.frequency_plan,
            "supports_join": True,
        }
        paths = list(_DEVICE_FIELD_MASK)
        if entity.app_key:
            end_device["root_keys"] = {"app_key": {"key": entity.app_key.upper()}}
            paths.append("root_keys.app_key.key")

        url = f"{base_url}/api/v3/applications/{application_id}/devices"
        response = self._request(
            "POST",
            url,
            api_key,
            {"end_device": end_device, "field_mask": {"paths": paths}},
        )
        if response.status_code == 409:
            return OUTCOME_ALREADY_EXISTS
        if not response.is_success:
            message = _response_message(response)
            if response.status_code == 403:
                message = "API key lacks permission to register devices"
            elif response.status_code == 404:
                message = f'Application "{application_id}" not found'
            _raise_registration_error(response.status_code, message)

        if entity.app_key:
            self._register_join_server(
                base_url, application_id, remote_id, ids, entity.app_key, api_key
            )
        else:
            logger.warning(
                "Device has no AppKey; join server registration skipped",
                extra={"entity_id": entity.local_id, "remote_id": remote_id},
            )
        return OUTCOME_CREATED

    def _register_join_server(
        self,
        base_url: str,
        application_id: str | None,
        remote_id: str,
        ids: dict[str, str],
        app_key: str,
        api_key: str,
    ) -> None:
        server_address = base_url.split("://", 1)[-1]
        url = f"{base_url}/api/v3/js/applications/{application_id}/devices/{remote_id}"
        payload = {
            "end_device": {
                "ids": ids,
                "network_server_address": server_address,
                "application_server_address": server_address,
                "root_keys": {"app_key": {"key": app_key.upper()}},
            },
            "field_mask": {"paths": list(_JOIN_SERVER_FIELD_MASK)},
        }
        # The identity server record already exists; a join server failure
        # does not undo it.
        try:
            response = self._request("PUT", url, api_key, payload)
        except TransportError as exc:
            logger.warning(
                "Join server registration failed",
                extra={"remote_id": remote_id, "error_message": str(exc)},
            )
            return
        if not response.is_success:
            logger.warning(
                "Join server registration failed",
                extra={
                    "remote_id": remote_id,
                    "http_status": response.status_code,
                    "error_message": _response_message(response),
                },
            )

    def _register_gateway(
        self,
        remote_id: str,
        entity: Entity,
        plan: RegistrationPlan,
        config: RegistryConfig,
    ) -> str:
        if not config.gateway_owner_id:
            raise RegistrationError(
                "Gateway owner is not configured",
                error_code=ERROR_INVALID_REQUEST,
            )
        try:
            eui = normalize_eui(entity.hardware_eui).upper()
        except FormatError as exc:
            raise RegistrationError(str(exc), error_code=ERROR_INVALID_EUI) from exc

        api_key = self._api_key(config, kind=KIND_GATEWAY)
        base_url = self.base_url_for(config)
        if config.gateway_owner_type == OWNER_ORGANIZATION:
            owner_path = f"organizations/{config.gateway_owner_id}"
        else:
            owner_path = f"users/{config.gateway_owner_id}"
        payload = {
            "gateway": {
                "ids": {"gateway_id": remote_id, "eui": eui},
                "name": entity.display_name or remote_id,
                "description": f"Provisioned from inventory entry {entity.local_id}",
                "gateway_server_address": base_url.split("://", 1)[-1],
                "frequency_plan_id": plan.frequency_plan,
                "status_public": False,
                "location_public": False,
                "enforce_duty_cycle": True,
                "require_authenticated_connection": False,
            }
        }
        url = f"{base_url}/api/v3/{owner_path}/gateways"
        response = self._request("POST", url, api_key, payload)
        if response.status_code == 409:
            return OUTCOME_ALREADY_EXISTS
        if not response.is_success:
            message = _response_message(response)
            if response.status_code == 403:
                message = "API key lacks gateway rights for the owner"
            _raise_registration_error(response.status_code, message)
        return OUTCOME_CREATED

    def _api_key(self, config: RegistryConfig, *, kind: str | None) -> str:
        ref = config.credential_ref
        if kind == KIND_GATEWAY and config.gateway_credential_ref:
            ref = config.gateway_credential_ref
        api_key = resolve_credential(ref)
        if not api_key:
            raise CredentialError("Registry API key is not configured")
        return api_key

    def _request(
        self,
        method: str,
        url: str,
        api_key: str,
        payload: dict[str, Any] | None = None,
    ) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
        }
        started = time.monotonic()
        try:
            response = self._http.request(method, url, headers=headers, json=payload)
        except httpx.TimeoutException as exc:
            raise RemoteTimeoutError(f"Request to {url} timed out") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Network error: {exc}") from exc
        logger.debug(
            "Registry request",
            extra={
                "endpoint": f"{method} {url}",
                "http_status": response.status_code,
                "api_key": mask_secret(api_key),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return response


def _response_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text.strip()
    if isinstance(data, dict):
        message = data.get("message") or data.get("error")
        if isinstance(message, str):
            return message
    return ""


def _raise_registration_error(http_status: int, message: str) -> NoReturn:
    reason = message or f"Registry API error: {http_status}"
    raise RegistrationError(
        reason,
        http_status=http_status,
        error_code=error_code_for(http_status, reason),
    )
