import os
from dataclasses import dataclass
from functools import lru_cache

DEFAULT_STATE_URI = "./loraprov_data"


@dataclass(frozen=True)
class Config:
    env: str
    log_level: str
    state_uri: str
    discovery_workers: int
    gateway_batch_workers: int
    request_timeout_s: float
    device_delay_s: float
    registry_base_url: str | None = None

    @classmethod
    def from_env(cls) -> "Config":
        env = os.getenv("ENV", "dev").strip() or "dev"
        log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
        state_uri = os.getenv("LORAPROV_STATE_URI", DEFAULT_STATE_URI).strip()
        if not state_uri:
            state_uri = DEFAULT_STATE_URI

        discovery_workers = _parse_int("LORAPROV_DISCOVERY_WORKERS", 4)
        gateway_batch_workers = _parse_int("LORAPROV_GATEWAY_BATCH_WORKERS", 8)
        if discovery_workers < 1:
            raise ValueError("LORAPROV_DISCOVERY_WORKERS must be >= 1")
        if gateway_batch_workers < 1:
            raise ValueError("LORAPROV_GATEWAY_BATCH_WORKERS must be >= 1")

        request_timeout_s = _parse_float("LORAPROV_REQUEST_TIMEOUT_S", 10.0)
        device_delay_s = _parse_float("LORAPROV_DEVICE_DELAY_S", 0.5)
        if request_timeout_s < 0 or device_delay_s < 0:
            raise ValueError(
                "LORAPROV_REQUEST_TIMEOUT_S and LORAPROV_DEVICE_DELAY_S must be >= 0"
            )

        registry_base_url = os.getenv("LORAPROV_REGISTRY_BASE_URL") or None

        return cls(
            env=env,
            log_level=log_level,
            state_uri=state_uri,
            discovery_workers=discovery_workers,
            gateway_batch_workers=gateway_batch_workers,
            request_timeout_s=request_timeout_s,
            device_delay_s=device_delay_s,
            registry_base_url=registry_base_url,
        )


def _parse_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc


def _parse_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number") from exc


@lru_cache(maxsize=1)
def get_config() -> Config:
    return Config.from_env()
