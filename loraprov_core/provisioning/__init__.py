from loraprov_core.provisioning.collaborators import (
    CredentialTester,
    CredentialTestResult,
    RegistryClient,
)
from loraprov_core.provisioning.discovery import reconcile
from loraprov_core.provisioning.executor import ExecutionOptions, execute
from loraprov_core.provisioning.plan import (
    ConfirmationGate,
    build_plan,
    frequency_plan_for,
)
from loraprov_core.provisioning.runlog import (
    RegistrationRecord,
    read_run_log,
    write_run_log,
)
from loraprov_core.provisioning.session import ProvisioningSession, SessionOptions
from loraprov_core.provisioning.types import (
    CheckResult,
    DiscoveryResult,
    ProvisioningSummary,
    RegistrationOutcome,
    RegistrationPlan,
    ValidationReport,
)
from loraprov_core.provisioning.validator import (
    raise_for_report,
    validate_connection,
)
from loraprov_core.provisioning.wizard import WizardState

__all__ = [
    "CheckResult",
    "ConfirmationGate",
    "CredentialTestResult",
    "CredentialTester",
    "DiscoveryResult",
    "ExecutionOptions",
    "ProvisioningSession",
    "ProvisioningSummary",
    "RegistrationOutcome",
    "RegistrationPlan",
    "RegistrationRecord",
    "RegistryClient",
    "SessionOptions",
    "ValidationReport",
    "WizardState",
    "build_plan",
    "execute",
    "frequency_plan_for",
    "raise_for_report",
    "read_run_log",
    "reconcile",
    "validate_connection",
    "write_run_log",
]
