from __future__ import annotations

import re

from loraprov_core.provisioning.types import (
    ERROR_ALREADY_EXISTS,
    ERROR_AUTH_FORBIDDEN,
    ERROR_AUTH_INVALID,
    ERROR_INVALID_EUI,
    ERROR_INVALID_REQUEST,
    ERROR_NETWORK,
    ERROR_NOT_FOUND,
    ERROR_PERMISSION_MISSING,
    ERROR_RATE_LIMITED,
    ERROR_SERVER,
    ERROR_TIMEOUT,
    ERROR_UNKNOWN,
)

RETRYABLE_STATUSES: tuple[int, ...] = (429, 500, 502, 503, 504)

_RETRYABLE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"timeout",
        r"timed out",
        r"rate limit",
        r"\b(429|500|502|503|504)\b",
        r"network",
        r"connection",
        r"ECONNRESET",
        r"ETIMEDOUT",
        r"temporarily unavailable",
        r"service unavailable",
        r"gateway timeout",
    )
)

_PERMISSION_MARKERS = ("permission", "no rights", "gateway")


def error_code_for(http_status: int | None, message: str | None = None) -> str:
    text = (message or "").lower()
    if http_status == 401:
        return ERROR_AUTH_INVALID
    if http_status == 403:
        if any(marker in text for marker in _PERMISSION_MARKERS):
            return ERROR_PERMISSION_MISSING
        return ERROR_AUTH_FORBIDDEN
    if http_status == 404:
        return ERROR_NOT_FOUND
    if http_status == 409:
        return ERROR_ALREADY_EXISTS
    if http_status == 429:
        return ERROR_RATE_LIMITED
    if http_status == 400:
        return ERROR_INVALID_REQUEST
    if http_status is not None and http_status >= 500:
        return ERROR_SERVER
    if "eui" in text:
        return ERROR_INVALID_EUI
    if "timeout" in text or "timed out" in text:
        return ERROR_TIMEOUT
    if "network" in text or "connection" in text:
        return ERROR_NETWORK
    return ERROR_UNKNOWN


def is_retryable(http_status: int | None, message: str | None = None) -> bool:
    if http_status is not None and http_status in RETRYABLE_STATUSES:
        return True
    if http_status is not None and 400 <= http_status < 500:
        return False
    if not message:
        return False
    return any(pattern.search(message) for pattern in _RETRYABLE_PATTERNS)


def status_category(http_status: int | None) -> str:
    """Short human-readable category for an HTTP status."""
    if http_status is None:
        return "unknown"
    if http_status == 401:
        return "unauthorized"
    if http_status == 403:
        return "forbidden"
    if http_status == 404:
        return "not-found"
    if http_status == 409:
        return "conflict"
    if http_status == 429:
        return "rate-limited"
    if 400 <= http_status < 500:
        return "bad-request"
    if http_status >= 500:
        return "server-error"
    return "unknown"


def failure_reason(message: str | None, http_status: int | None) -> str:
    category = status_category(http_status)
    detail = (message or "").strip()
    if http_status is None:
        return detail or category
    prefix = f"{category} (HTTP {http_status})"
    if not detail:
        return prefix
    return f"{prefix}: {detail}"
