import threading

import pytest

from loraprov_core.config import get_config
from loraprov_core.inventory.types import (
    KIND_DEVICE,
    KIND_GATEWAY,
    Entity,
    RegistryConfig,
)
from loraprov_core.provisioning.collaborators import CredentialTestResult
from loraprov_core.provisioning.types import OUTCOME_ALREADY_EXISTS, OUTCOME_CREATED


@pytest.fixture(autouse=True)
def _default_env(monkeypatch: pytest.MonkeyPatch, tmp_path):
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    monkeypatch.setenv("LORAPROV_STATE_URI", (tmp_path / "state").as_posix())
    monkeypatch.setenv("LORAPROV_DEVICE_DELAY_S", "0")
    monkeypatch.delenv("LORAPROV_REGISTRY_BASE_URL", raising=False)
    get_config.cache_clear()
    yield
    get_config.cache_clear()


class FakeTester:
    def __init__(self, result: CredentialTestResult | None = None) -> None:
        self.result = result or CredentialTestResult(ok=True, http_status=200)
        self.calls = 0

    def test_credentials(self, config):
        self.calls += 1
        return self.result


class FakeRegistry:
    """In-memory registry double recording every remote call."""

    def __init__(
        self,
        *,
        existing: set[str] | None = None,
        failures: dict[str, Exception] | None = None,
        check_failures: dict[str, Exception] | None = None,
    ) -> None:
        self.registered: set[str] = set(existing or ())
        self.failures = dict(failures or {})
        self.check_failures = dict(check_failures or {})
        self.check_calls: list[str] = []
        self.register_calls: list[str] = []
        self._lock = threading.Lock()

    def check_existence(self, remote_id, kind, config):
        with self._lock:
            self.check_calls.append(remote_id)
        if remote_id in self.check_failures:
            raise self.check_failures[remote_id]
        return remote_id in self.registered

    def register_entity(self, remote_id, entity, plan, config):
        with self._lock:
            self.register_calls.append(remote_id)
            if remote_id in self.failures:
                raise self.failures[remote_id]
            if remote_id in self.registered:
                return OUTCOME_ALREADY_EXISTS
            self.registered.add(remote_id)
        return OUTCOME_CREATED


@pytest.fixture
def registry_config() -> RegistryConfig:
    return RegistryConfig(
        enabled=True,
        cluster="eu1",
        application_id="app-1",
        credential_ref="NNSXS.test-key-123456",
        org_id="org-1",
        gateway_owner_id="owner-1",
    )


@pytest.fixture
def devices() -> list[Entity]:
    return [
        Entity(
            local_id="d1",
            hardware_eui="AABBCCDDEEFF0011",
            display_name="Freezer sensor",
            kind=KIND_DEVICE,
        ),
        Entity(
            local_id="d2",
            hardware_eui="AABBCCDDEEFF0022",
            display_name="Cooler sensor",
            kind=KIND_DEVICE,
        ),
    ]


@pytest.fixture
def gateways() -> list[Entity]:
    return [
        Entity(
            local_id=f"g{idx}",
            hardware_eui=f"00112233445566{idx:02x}",
            display_name=f"Gateway {idx}",
            kind=KIND_GATEWAY,
        )
        for idx in range(1, 4)
    ]


@pytest.fixture
def make_registry():
    return FakeRegistry


@pytest.fixture
def make_tester():
    return FakeTester
