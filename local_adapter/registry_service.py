from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from loraprov_core.logging import configure_logging, get_logger, mask_secret

SERVICE_NAME = "loraprov-local-registry"

RIGHT_APPLICATION_INFO = "RIGHT_APPLICATION_INFO"
RIGHT_DEVICES_READ = "RIGHT_APPLICATION_DEVICES_READ"
RIGHT_DEVICES_WRITE = "RIGHT_APPLICATION_DEVICES_WRITE"
RIGHT_GATEWAY_ALL = "RIGHT_GATEWAY_ALL"
ALL_RIGHTS = frozenset(
    {
        RIGHT_APPLICATION_INFO,
        RIGHT_DEVICES_READ,
        RIGHT_DEVICES_WRITE,
        RIGHT_GATEWAY_ALL,
    }
)

DEFAULT_API_KEY = "local-dev-key"
DEFAULT_APPLICATIONS = "app-1"

configure_logging(
    service=SERVICE_NAME,
    env=os.getenv("ENV", "local"),
    version=os.getenv("LORAPROV_VERSION"),
)
logger = get_logger(__name__)


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    timestamp: str


class FieldMask(BaseModel):
    paths: list[str] = []


class AppKey(BaseModel):
    key: str


class RootKeys(BaseModel):
    app_key: AppKey | None = None


class EndDeviceIdentifiers(BaseModel):
    device_id: str
    dev_eui: str | None = None
    join_eui: str | None = None


class EndDevice(BaseModel):
    ids: EndDeviceIdentifiers
    name: str | None = None
    description: str | None = None
    lorawan_version: str | None = None
    lorawan_phy_version: str | None = None
    frequency_plan_id: str | None = None
    supports_join: bool | None = None
    root_keys: RootKeys | None = None
    network_server_address: str | None = None
    application_server_address: str | None = None


class EndDeviceRequest(BaseModel):
    end_device: EndDevice
    field_mask: FieldMask = FieldMask()


class GatewayIdentifiers(BaseModel):
    gateway_id: str
    eui: str | None = None


class Gateway(BaseModel):
    ids: GatewayIdentifiers
    name: str | None = None
    description: str | None = None
    gateway_server_address: str | None = None
    frequency_plan_id: str | None = None
    status_public: bool = False
    location_public: bool = False
    enforce_duty_cycle: bool = True
    require_authenticated_connection: bool = False


class GatewayRequest(BaseModel):
    gateway: Gateway


@dataclass
class RegistryState:
    """In-memory registry contents shared by all requests of one app."""

    api_keys: dict[str, frozenset[str]] = field(default_factory=dict)
    applications: set[str] = field(default_factory=set)
    devices: dict[tuple[str, str], EndDevice] = field(default_factory=dict)
    join_server_devices: dict[tuple[str, str], EndDevice] = field(default_factory=dict)
    gateways: dict[str, Gateway] = field(default_factory=dict)
    gateway_owners: dict[str, str] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock)

    @classmethod
    def from_env(cls) -> "RegistryState":
        api_key = os.getenv("LORAPROV_LOCAL_API_KEY", DEFAULT_API_KEY)
        raw_apps = os.getenv("LORAPROV_LOCAL_APPLICATIONS", DEFAULT_APPLICATIONS)
        applications = {item.strip() for item in raw_apps.split(",") if item.strip()}
        return cls(api_keys={api_key: ALL_RIGHTS}, applications=applications)


def create_app(state: RegistryState | None = None) -> FastAPI:
    registry = state or RegistryState.from_env()
    app = FastAPI()
    app.state.registry = registry

    @app.exception_handler(HTTPException)
    async def _http_error(_: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"code": exc.status_code, "message": str(exc.detail)},
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(
        _: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "code": 400,
                "message": f"invalid request: {len(exc.errors())} errors",
            },
        )

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(
            status="ok",
            service=SERVICE_NAME,
            version=os.getenv("LORAPROV_VERSION", "dev"),
            timestamp=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        )

    @app.get("/api/v3/applications/{application_id}")
    def get_application(
        application_id: str,
        authorization: str | None = Header(default=None),
    ) -> dict[str, Any]:
        _authorize(registry, authorization, RIGHT_APPLICATION_INFO)
        _require_application(registry, application_id)
        return {"ids": {"application_id": application_id}}

    @app.get("/api/v3/applications/{application_id}/devices/{device_id}")
    def get_device(
        application_id: str,
        device_id: str,
        authorization: str | None = Header(default=None),
    ) -> dict[str, Any]:
        _authorize(registry, authorization, RIGHT_DEVICES_READ)
        _require_application(registry, application_id)
        device = registry.devices.get((application_id, device_id))
        if device is None:
            raise HTTPException(status_code=404, detail=f"device {device_id} not found")
        return device.model_dump(exclude={"root_keys"})

    @app.post("/api/v3/applications/{application_id}/devices")
    def create_device(
        application_id: str,
        payload: EndDeviceRequest,
        authorization: str | None = Header(default=None),
    ) -> dict[str, Any]:
        api_key = _authorize(registry, authorization, RIGHT_DEVICES_WRITE)
        _require_application(registry, application_id)
        device = payload.end_device
        if not device.frequency_plan_id:
            raise HTTPException(status_code=400, detail="frequency_plan_id is required")
        key = (application_id, device.ids.device_id)
        with registry.lock:
            if key in registry.devices or _dev_eui_taken(
                registry, application_id, device.ids.dev_eui
            ):
                raise HTTPException(
                    status_code=409,
                    detail=f"end device {device.ids.device_id} already exists",
                )
            registry.devices[key] = device
        logger.info(
            "Emulated device created",
            extra={
                "application_id": application_id,
                "remote_id": device.ids.device_id,
                "frequency_plan": device.frequency_plan_id,
                "api_key": mask_secret(api_key),
            },
        )
        return device.model_dump(exclude={"root_keys"})

    @app.put("/api/v3/js/applications/{application_id}/devices/{device_id}")
    def set_join_server_device(
        application_id: str,
        device_id: str,
        payload: EndDeviceRequest,
        authorization: str | None = Header(default=None),
    ) -> dict[str, Any]:
        _authorize(registry, authorization, RIGHT_DEVICES_WRITE)
        _require_application(registry, application_id)
        if payload.end_device.ids.device_id != device_id:
            raise HTTPException(status_code=400, detail="device_id mismatch")
        with registry.lock:
            registry.join_server_devices[(application_id, device_id)] = (
                payload.end_device
            )
        return {"ids": payload.end_device.ids.model_dump()}

    @app.get("/api/v3/gateways/{gateway_id}")
    def get_gateway(
        gateway_id: str,
        authorization: str | None = Header(default=None),
    ) -> dict[str, Any]:
        _authorize(registry, authorization, RIGHT_GATEWAY_ALL)
        gateway = registry.gateways.get(gateway_id)
        if gateway is None:
            raise HTTPException(
                status_code=404, detail=f"gateway {gateway_id} not found"
            )
        return gateway.model_dump()

    @app.post("/api/v3/users/{owner_id}/gateways")
    def create_user_gateway(
        owner_id: str,
        payload: GatewayRequest,
        authorization: str | None = Header(default=None),
    ) -> dict[str, Any]:
        return _create_gateway(registry, f"users/{owner_id}", payload, authorization)

    @app.post("/api/v3/organizations/{owner_id}/gateways")
    def create_organization_gateway(
        owner_id: str,
        payload: GatewayRequest,
        authorization: str | None = Header(default=None),
    ) -> dict[str, Any]:
        return _create_gateway(
            registry, f"organizations/{owner_id}", payload, authorization
        )

    return app


def _create_gateway(
    registry: RegistryState,
    owner: str,
    payload: GatewayRequest,
    authorization: str | None,
) -> dict[str, Any]:
    api_key = _authorize(registry, authorization, RIGHT_GATEWAY_ALL)
    gateway = payload.gateway
    gateway_id = gateway.ids.gateway_id
    eui = (gateway.ids.eui or "").lower()
    with registry.lock:
        taken_eui = bool(eui) and any(
            (item.ids.eui or "").lower() == eui for item in registry.gateways.values()
        )
        if gateway_id in registry.gateways or taken_eui:
            raise HTTPException(
                status_code=409, detail=f"gateway {gateway_id} already exists"
            )
        registry.gateways[gateway_id] = gateway
        registry.gateway_owners[gateway_id] = owner
    logger.info(
        "Emulated gateway created",
        extra={
            "remote_id": gateway_id,
            "frequency_plan": gateway.frequency_plan_id,
            "api_key": mask_secret(api_key),
        },
    )
    return gateway.model_dump()


def _authorize(
    registry: RegistryState,
    authorization: str | None,
    right: str,
) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="missing bearer token")
    api_key = authorization[len("Bearer "):].strip()
    rights = registry.api_keys.get(api_key)
    if rights is None:
        raise HTTPException(status_code=401, detail="invalid API key")
    if right not in rights:
        raise HTTPException(status_code=403, detail=f"no rights: {right}")
    return api_key


def _require_application(registry: RegistryState, application_id: str) -> None:
    if application_id not in registry.applications:
        raise HTTPException(
            status_code=404, detail=f"application {application_id} not found"
        )


def _dev_eui_taken(
    registry: RegistryState,
    application_id: str,
    dev_eui: str | None,
) -> bool:
    if not dev_eui:
        return False
    wanted = dev_eui.lower()
    return any(
        (device.ids.dev_eui or "").lower() == wanted
        for (app_id, _), device in registry.devices.items()
        if app_id == application_id
    )


app = create_app()
