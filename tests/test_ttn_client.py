from __future__ import annotations

import json
from dataclasses import replace

import httpx
import pytest

from loraprov_core.errors import (
    CredentialError,
    RegistrationError,
    RemoteTimeoutError,
    TransportError,
)
from loraprov_core.inventory.types import KIND_DEVICE, KIND_GATEWAY, OWNER_ORGANIZATION
from loraprov_core.provisioning.plan import build_plan
from loraprov_core.provisioning.types import (
    ERROR_INVALID_EUI,
    ERROR_INVALID_REQUEST,
    ERROR_PERMISSION_MISSING,
    OUTCOME_ALREADY_EXISTS,
    OUTCOME_CREATED,
)
from ttn_adapter.client import TtnRegistryClient, resolve_credential

BASE_URL = "https://eu1.cloud.thethings.network"


def _client(handler, calls):
    def _record(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return handler(request)

    http = httpx.Client(transport=httpx.MockTransport(_record))
    return TtnRegistryClient(http=http)


@pytest.mark.parametrize(
    ("status", "category"),
    [
        (401, "auth_invalid"),
        (403, "permission_denied"),
        (404, "not_found"),
        (500, "unknown"),
    ],
)
def test_credential_test_maps_status(registry_config, status, category):
    calls: list[httpx.Request] = []
    client = _client(
        lambda request: httpx.Response(status, json={"message": "nope"}), calls
    )
    result = client.test_credentials(registry_config)
    assert result.ok is False
    assert result.http_status == status
    assert result.error_category == category
    assert str(calls[0].url) == f"{BASE_URL}/api/v3/applications/app-1"
    assert calls[0].headers["Authorization"] == "Bearer NNSXS.test-key-123456"


def test_credential_test_success(registry_config):
    calls: list[httpx.Request] = []
    client = _client(lambda request: httpx.Response(200, json={}), calls)
    result = client.test_credentials(registry_config)
    assert result.ok is True
    assert result.http_status == 200


def test_credential_test_reports_network_and_config_problems(registry_config):
    def _fail(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    calls: list[httpx.Request] = []
    result = _client(_fail, calls).test_credentials(registry_config)
    assert result.error_category == "network"

    missing_key = replace(registry_config, credential_ref=None)
    result = _client(_fail, calls).test_credentials(missing_key)
    assert result.error_category == "config"
    assert len(calls) == 1


def test_resolve_credential_reads_env(monkeypatch):
    monkeypatch.setenv("TTN_API_KEY", "NNSXS.from-env")
    assert resolve_credential("env:TTN_API_KEY") == "NNSXS.from-env"
    assert resolve_credential("env:MISSING_TTN_KEY") is None
    assert resolve_credential("NNSXS.inline") == "NNSXS.inline"
    assert resolve_credential(None) is None


def test_check_existence(registry_config):
    calls: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("sensor-aabbccddeeff0011"):
            return httpx.Response(200, json={})
        if request.url.path.endswith("emu-gw-0011223344556601"):
            return httpx.Response(503, json={"message": "unavailable"})
        return httpx.Response(404, json={})

    client = _client(_handler, calls)
    assert client.check_existence(
        "sensor-aabbccddeeff0011", KIND_DEVICE, registry_config
    )
    assert not client.check_existence(
        "sensor-aabbccddeeff0022", KIND_DEVICE, registry_config
    )
    with pytest.raises(TransportError) as excinfo:
        client.check_existence(
            "emu-gw-0011223344556601", KIND_GATEWAY, registry_config
        )
    assert excinfo.value.http_status == 503
    assert calls[0].url.path == (
        "/api/v3/applications/app-1/devices/sensor-aabbccddeeff0011"
    )
    assert calls[2].url.path == "/api/v3/gateways/emu-gw-0011223344556601"


def test_check_existence_maps_timeouts(registry_config):
    def _timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client = _client(_timeout, [])
    with pytest.raises(RemoteTimeoutError):
        client.check_existence("sensor-aabbccddeeff0011", KIND_DEVICE, registry_config)


def test_register_device_posts_and_sets_join_server_keys(registry_config, devices):
    calls: list[httpx.Request] = []
    client = _client(lambda request: httpx.Response(200, json={}), calls)
    device = replace(devices[0], app_key="00112233445566778899aabbccddeeff")
    plan = build_plan([device], registry_config)

    outcome = client.register_entity(
        "sensor-aabbccddeeff0011", device, plan, registry_config
    )
    assert outcome == OUTCOME_CREATED
    assert [request.method for request in calls] == ["POST", "PUT"]

    body = json.loads(calls[0].content)
    end_device = body["end_device"]
    assert calls[0].url.path == "/api/v3/applications/app-1/devices"
    assert end_device["ids"] == {
        "device_id": "sensor-aabbccddeeff0011",
        "dev_eui": "AABBCCDDEEFF0011",
        "join_eui": "0000000000000000",
    }
    assert end_device["frequency_plan_id"] == "EU_863_870_TTN"
    assert end_device["lorawan_version"] == "MAC_V1_0_3"
    assert end_device["supports_join"] is True
    assert "root_keys.app_key.key" in body["field_mask"]["paths"]

    js_body = json.loads(calls[1].content)
    assert calls[1].url.path == (
        "/api/v3/js/applications/app-1/devices/sensor-aabbccddeeff0011"
    )
    assert js_body["end_device"]["root_keys"]["app_key"]["key"] == (
        "00112233445566778899AABBCCDDEEFF"
    )


def test_register_device_without_app_key_skips_join_server(
    registry_config, devices
):
    calls: list[httpx.Request] = []
    client = _client(lambda request: httpx.Response(201, json={}), calls)
    plan = build_plan(devices, registry_config)
    outcome = client.register_entity(
        "sensor-aabbccddeeff0011", devices[0], plan, registry_config
    )
    assert outcome == OUTCOME_CREATED
    assert [request.method for request in calls] == ["POST"]


def test_register_device_conflict_and_errors(registry_config, devices):
    plan = build_plan(devices, registry_config)
    conflict = _client(lambda request: httpx.Response(409, json={}), [])
    assert (
        conflict.register_entity(
            "sensor-aabbccddeeff0011", devices[0], plan, registry_config
        )
        == OUTCOME_ALREADY_EXISTS
    )

    forbidden = _client(lambda request: httpx.Response(403, json={}), [])
    with pytest.raises(RegistrationError) as excinfo:
        forbidden.register_entity(
            "sensor-aabbccddeeff0011", devices[0], plan, registry_config
        )
    assert excinfo.value.http_status == 403
    assert excinfo.value.error_code == ERROR_PERMISSION_MISSING

    bad_eui = replace(devices[0], hardware_eui="not-an-eui")
    with pytest.raises(RegistrationError) as excinfo:
        forbidden.register_entity("sensor-x", bad_eui, plan, registry_config)
    assert excinfo.value.error_code == ERROR_INVALID_EUI


def test_register_gateway_uses_owner_path(registry_config, gateways):
    calls: list[httpx.Request] = []
    client = _client(lambda request: httpx.Response(200, json={}), calls)
    config = replace(
        registry_config,
        gateway_owner_type=OWNER_ORGANIZATION,
        gateway_owner_id="acme",
        gateway_credential_ref="NNSXS.gateway-key-1",
    )
    plan = build_plan(gateways, config)

    outcome = client.register_entity(
        "emu-gw-0011223344556601", gateways[0], plan, config
    )
    assert outcome == OUTCOME_CREATED
    assert calls[0].url.path == "/api/v3/organizations/acme/gateways"
    assert calls[0].headers["Authorization"] == "Bearer NNSXS.gateway-key-1"
    gateway = json.loads(calls[0].content)["gateway"]
    assert gateway["ids"] == {
        "gateway_id": "emu-gw-0011223344556601",
        "eui": "0011223344556601",
    }
    assert gateway["status_public"] is False
    assert gateway["enforce_duty_cycle"] is True


def test_register_gateway_requires_owner(registry_config, gateways):
    config = replace(registry_config, gateway_owner_id=None)
    plan = build_plan(gateways, config)
    client = _client(lambda request: httpx.Response(200, json={}), [])
    with pytest.raises(RegistrationError) as excinfo:
        client.register_entity("emu-gw-0011223344556601", gateways[0], plan, config)
    assert excinfo.value.error_code == ERROR_INVALID_REQUEST


def test_missing_api_key_raises(registry_config, devices):
    config = replace(registry_config, credential_ref="env:MISSING_TTN_KEY")
    client = _client(lambda request: httpx.Response(200, json={}), [])
    with pytest.raises(CredentialError):
        client.check_existence("sensor-aabbccddeeff0011", KIND_DEVICE, config)


def test_base_url_override_is_used(registry_config):
    calls: list[httpx.Request] = []

    def _record(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    client = TtnRegistryClient(
        base_url="http://localhost:8090/",
        http=httpx.Client(transport=httpx.MockTransport(_record)),
    )
    assert client.test_credentials(registry_config).ok
    assert str(calls[0].url) == "http://localhost:8090/api/v3/applications/app-1"
