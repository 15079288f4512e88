from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

STATUS_UNKNOWN = "unknown"
STATUS_CHECKING = "checking"
STATUS_REGISTERED = "registered"
STATUS_NOT_REGISTERED = "not_registered"
STATUS_ERROR = "error"
ENTITY_STATUSES: tuple[str, ...] = (
    STATUS_UNKNOWN,
    STATUS_CHECKING,
    STATUS_REGISTERED,
    STATUS_NOT_REGISTERED,
    STATUS_ERROR,
)

OUTCOME_CREATED = "created"
OUTCOME_ALREADY_EXISTS = "already_exists"
OUTCOME_FAILED = "failed"

CHECK_PENDING = "pending"
CHECK_PASSED = "passed"
CHECK_FAILED = "failed"

VALIDATION_SUCCESS = "success"
VALIDATION_FAILED = "failed"

ACTIVATION_OTAA = "OTAA"

ERROR_AUTH_INVALID = "AUTH_INVALID"
ERROR_AUTH_FORBIDDEN = "AUTH_FORBIDDEN"
ERROR_PERMISSION_MISSING = "PERMISSION_MISSING"
ERROR_NOT_FOUND = "NOT_FOUND"
ERROR_ALREADY_EXISTS = "ALREADY_EXISTS"
ERROR_RATE_LIMITED = "RATE_LIMITED"
ERROR_INVALID_REQUEST = "INVALID_REQUEST"
ERROR_SERVER = "SERVER_ERROR"
ERROR_INVALID_EUI = "INVALID_EUI"
ERROR_TIMEOUT = "TIMEOUT"
ERROR_NETWORK = "NETWORK_ERROR"
ERROR_UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: str = CHECK_PENDING
    message: str | None = None


@dataclass(frozen=True)
class ValidationReport:
    checks: tuple[CheckResult, ...]

    @property
    def status(self) -> str:
        if self.checks and all(check.status == CHECK_PASSED for check in self.checks):
            return VALIDATION_SUCCESS
        return VALIDATION_FAILED

    @property
    def ok(self) -> bool:
        return self.status == VALIDATION_SUCCESS

    def failed_check(self) -> CheckResult | None:
        return next(
            (check for check in self.checks if check.status == CHECK_FAILED),
            None,
        )


@dataclass(frozen=True)
class DiscoveryResult:
    statuses: Mapping[str, str]
    selection: frozenset[str]
    remote_ids: Mapping[str, str] = field(default_factory=dict)

    def count(self, status: str) -> int:
        return sum(1 for value in self.statuses.values() if value == status)


@dataclass(frozen=True)
class RegistrationPlan:
    target_ids: tuple[str, ...]
    frequency_plan: str
    activation_mode: str | None
    batched: bool
    kind: str
    cluster: str | None = None
    application_id: str | None = None
    remote_ids: Mapping[str, str] = field(default_factory=dict)
    invalid_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class RegistrationOutcome:
    local_id: str
    status: str
    remote_id: str | None = None
    reason: str | None = None
    error_code: str | None = None
    http_status: int | None = None
    retryable: bool = False
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status in (OUTCOME_CREATED, OUTCOME_ALREADY_EXISTS)


@dataclass(frozen=True)
class ProvisioningSummary:
    results: tuple[RegistrationOutcome, ...] = ()

    @property
    def created(self) -> int:
        return sum(1 for item in self.results if item.status == OUTCOME_CREATED)

    @property
    def already_exists(self) -> int:
        return sum(
            1 for item in self.results if item.status == OUTCOME_ALREADY_EXISTS
        )

    @property
    def failed(self) -> int:
        return sum(1 for item in self.results if item.status == OUTCOME_FAILED)

    @property
    def total(self) -> int:
        return len(self.results)

    def outcome_for(self, local_id: str) -> RegistrationOutcome | None:
        return next(
            (item for item in self.results if item.local_id == local_id),
            None,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "created": self.created,
            "already_exists": self.already_exists,
            "failed": self.failed,
            "total": self.total,
            "results": [
                {
                    "local_id": item.local_id,
                    "remote_id": item.remote_id,
                    "status": item.status,
                    "reason": item.reason,
                    "error_code": item.error_code,
                    "http_status": item.http_status,
                    "retryable": item.retryable,
                }
                for item in self.results
            ],
        }
