from __future__ import annotations

import pytest

from loraprov_core.config import DEFAULT_STATE_URI, Config, get_config


@pytest.mark.core
def test_config_defaults(monkeypatch):
    for name in (
        "LORAPROV_STATE_URI",
        "LORAPROV_DISCOVERY_WORKERS",
        "LORAPROV_GATEWAY_BATCH_WORKERS",
        "LORAPROV_REQUEST_TIMEOUT_S",
        "LORAPROV_DEVICE_DELAY_S",
    ):
        monkeypatch.delenv(name, raising=False)
    config = Config.from_env()
    assert config.env == "test"
    assert config.state_uri == DEFAULT_STATE_URI
    assert config.discovery_workers == 4
    assert config.gateway_batch_workers == 8
    assert config.request_timeout_s == 10.0
    assert config.device_delay_s == 0.5
    assert config.registry_base_url is None


@pytest.mark.core
def test_config_reads_overrides(monkeypatch):
    monkeypatch.setenv("LORAPROV_GATEWAY_BATCH_WORKERS", "2")
    monkeypatch.setenv("LORAPROV_REGISTRY_BASE_URL", "http://localhost:8090")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    config = get_config()
    assert config.gateway_batch_workers == 2
    assert config.registry_base_url == "http://localhost:8090"
    assert config.log_level == "DEBUG"
    assert get_config() is config


@pytest.mark.core
@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("LORAPROV_DISCOVERY_WORKERS", "many"),
        ("LORAPROV_DISCOVERY_WORKERS", "0"),
        ("LORAPROV_REQUEST_TIMEOUT_S", "soon"),
        ("LORAPROV_DEVICE_DELAY_S", "-1"),
    ],
)
def test_config_rejects_invalid_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError, match="LORAPROV_"):
        Config.from_env()
