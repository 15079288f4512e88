import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Iterable

CONTEXT_FIELDS: tuple[str, ...] = ("service", "env", "version", "session_id", "run_id")
WORKFLOW_FIELDS: tuple[str, ...] = (
    "step",
    "from_step",
    "to_step",
    "step_status",
    "kind",
    "batched",
    "target_count",
)
REGISTRY_FIELDS: tuple[str, ...] = (
    "org_id",
    "cluster",
    "application_id",
    "frequency_plan",
    "entity_id",
    "remote_id",
    "endpoint",
    "api_key",
    "status",
    "http_status",
    "error_code",
    "error_message",
    "attempt_count",
    "duration_ms",
)
# Outcome tallies carry a _count suffix; bare names such as "created" are
# LogRecord attributes and cannot be passed through ``extra``.
COUNTER_FIELDS: tuple[str, ...] = (
    "created_count",
    "already_exists_count",
    "failed_count",
    "registered_count",
    "not_registered_count",
    "error_count",
    "selected_count",
)
LOG_FIELDS: tuple[str, ...] = (
    CONTEXT_FIELDS + WORKFLOW_FIELDS + REGISTRY_FIELDS + COUNTER_FIELDS
)

_SECRET_FIELDS = frozenset({"api_key"})
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


def mask_secret(value: str | None) -> str:
    """Keep the first and last four characters of a secret.

    Masking an already-masked value returns it unchanged.
    """
    if not value or len(value) < 8:
        return "****"
    return f"{value[:4]}...{value[-4:]}"


class JsonFormatter(logging.Formatter):
    """One JSON object per record, limited to a known set of ``extra`` fields."""

    def __init__(self, fields: Iterable[str] = LOG_FIELDS) -> None:
        super().__init__()
        self.fields = tuple(fields)
        clashes = _RECORD_ATTRS.intersection(self.fields)
        if clashes:
            raise ValueError(
                f"Log fields shadow LogRecord attributes: {sorted(clashes)}"
            )

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "timestamp": timestamp.isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in self.fields:
            value = getattr(record, key, None)
            if value is None:
                continue
            if key in _SECRET_FIELDS:
                value = mask_secret(str(value))
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


class BaseFieldFilter(logging.Filter):
    """Stamp process-wide context onto records that do not carry it."""

    def __init__(self, service: str, env: str | None, version: str | None) -> None:
        super().__init__()
        self.defaults = {"service": service, "env": env, "version": version}

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self.defaults.items():
            if getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


def configure_logging(
    service: str,
    env: str | None = None,
    version: str | None = None,
) -> None:
    root = logging.getLogger()
    root.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    handler.addFilter(BaseFieldFilter(service=service, env=env, version=version))
    root.handlers = [handler]


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
