from __future__ import annotations

import time

from loraprov_core.errors import ConfigError, CredentialError
from loraprov_core.inventory.types import RegistryConfig
from loraprov_core.logging import get_logger
from loraprov_core.provisioning.collaborators import (
    CATEGORY_PERMISSION_DENIED,
    CredentialTester,
    CredentialTestResult,
)
from loraprov_core.provisioning.types import (
    CHECK_FAILED,
    CHECK_PASSED,
    CHECK_PENDING,
    CheckResult,
    ValidationReport,
)

logger = get_logger(__name__)

CHECK_ENABLED = "Integration Enabled"
CHECK_CLUSTER = "Cluster Configured"
CHECK_APPLICATION = "Application ID Set"
CHECK_CREDENTIAL = "API Key Valid"
CHECK_PERMISSIONS = "Required Permissions"

CHECK_NAMES: tuple[str, ...] = (
    CHECK_ENABLED,
    CHECK_CLUSTER,
    CHECK_APPLICATION,
    CHECK_CREDENTIAL,
    CHECK_PERMISSIONS,
)

_CONFIG_CHECKS = frozenset({CHECK_ENABLED, CHECK_CLUSTER, CHECK_APPLICATION})


def pending_report() -> ValidationReport:
    return ValidationReport(
        checks=tuple(CheckResult(name=name) for name in CHECK_NAMES)
    )


def validate_connection(
    config: RegistryConfig | None,
    tester: CredentialTester,
) -> ValidationReport:
    """Run the five connection checks in order, stopping at the first failure.

    Checks 4 and 5 share a single call to ``tester``. A permission-denied
    response means the key itself is valid, so check 4 passes and check 5
    fails. Any other failure fails check 4 and leaves check 5 unevaluated.
    """
    checks = list(pending_report().checks)

    enabled = bool(config and config.enabled)
    checks[0] = CheckResult(
        name=CHECK_ENABLED,
        status=CHECK_PASSED if enabled else CHECK_FAILED,
        message=None if enabled else "Enable the registry integration in settings",
    )
    if not enabled:
        return _finish(checks)

    cluster = (config.cluster or "").strip()
    checks[1] = CheckResult(
        name=CHECK_CLUSTER,
        status=CHECK_PASSED if cluster else CHECK_FAILED,
        message=f"Using {cluster}" if cluster else "Select a registry cluster",
    )
    if not cluster:
        return _finish(checks)

    application_id = (config.application_id or "").strip()
    checks[2] = CheckResult(
        name=CHECK_APPLICATION,
        status=CHECK_PASSED if application_id else CHECK_FAILED,
        message=application_id or "Enter the registry application ID",
    )
    if not application_id:
        return _finish(checks)

    started = time.monotonic()
    try:
        result = tester.test_credentials(config)
    except Exception as exc:
        logger.warning(
            "Credential test raised",
            extra={
                "cluster": cluster,
                "application_id": application_id,
                "error_message": str(exc),
            },
        )
        result = CredentialTestResult(
            ok=False,
            error_message=str(exc) or type(exc).__name__,
        )
    duration_ms = int((time.monotonic() - started) * 1000)

    if result.ok:
        checks[3] = CheckResult(
            name=CHECK_CREDENTIAL, status=CHECK_PASSED, message="API key verified"
        )
        checks[4] = CheckResult(
            name=CHECK_PERMISSIONS,
            status=CHECK_PASSED,
            message="All permissions available",
        )
    else:
        message = result.error_message or "Connection test failed"
        if is_permission_failure(result):
            checks[3] = CheckResult(name=CHECK_CREDENTIAL, status=CHECK_PASSED)
            checks[4] = CheckResult(
                name=CHECK_PERMISSIONS, status=CHECK_FAILED, message=message
            )
        else:
            checks[3] = CheckResult(
                name=CHECK_CREDENTIAL, status=CHECK_FAILED, message=message
            )
            checks[4] = CheckResult(name=CHECK_PERMISSIONS, status=CHECK_PENDING)

    logger.info(
        "Credential test finished",
        extra={
            "cluster": cluster,
            "application_id": application_id,
            "status": "ok" if result.ok else "failed",
            "http_status": result.http_status,
            "duration_ms": duration_ms,
        },
    )
    return _finish(checks)


def is_permission_failure(result: CredentialTestResult) -> bool:
    if result.ok:
        return False
    if result.error_category is not None:
        return result.error_category == CATEGORY_PERMISSION_DENIED
    if result.http_status == 403:
        return True
    message = (result.error_message or "").lower()
    return "permission" in message or "403" in message


def raise_for_report(report: ValidationReport) -> None:
    """Raise ConfigError or CredentialError for a failed report."""
    failed = report.failed_check()
    if failed is None:
        return
    detail = failed.message or failed.name
    if failed.name in _CONFIG_CHECKS:
        raise ConfigError(f"{failed.name}: {detail}")
    raise CredentialError(f"{failed.name}: {detail}")


def _finish(checks: list[CheckResult]) -> ValidationReport:
    report = ValidationReport(checks=tuple(checks))
    failed = report.failed_check()
    if failed is not None:
        logger.info(
            "Connection validation failed",
            extra={"status": report.status, "error_message": failed.name},
        )
    return report
