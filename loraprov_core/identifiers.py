from __future__ import annotations

import re

from loraprov_core.errors import FormatError
from loraprov_core.inventory.types import KIND_GATEWAY, Entity

DEVICE_ID_PREFIX = "sensor"
GATEWAY_ID_PREFIX = "emu-gw"

_EUI_PATTERN = re.compile(r"[0-9a-f]{16}")


def normalize_eui(eui: str) -> str:
    """Return the lowercase form of a 16-hex-digit EUI.

    Raises FormatError for anything else, including separators and
    surrounding whitespace.
    """
    if not isinstance(eui, str):
        raise FormatError(f"EUI must be a string, got {type(eui).__name__}")
    lowered = eui.lower()
    if not _EUI_PATTERN.fullmatch(lowered):
        raise FormatError(f"Invalid EUI {eui!r}: expected 16 hex characters")
    return lowered


def derive_device_id(eui: str) -> str:
    return f"{DEVICE_ID_PREFIX}-{normalize_eui(eui)}"


def derive_gateway_id(eui: str) -> str:
    return f"{GATEWAY_ID_PREFIX}-{normalize_eui(eui)}"


def derive_remote_id(entity: Entity) -> str:
    if entity.kind == KIND_GATEWAY:
        return derive_gateway_id(entity.hardware_eui)
    return derive_device_id(entity.hardware_eui)
