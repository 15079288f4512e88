from __future__ import annotations


class LoraprovError(Exception):
    """Base error for Loraprov."""


class RecoverableError(LoraprovError):
    """Indicates the operation can be retried safely."""


class PermanentError(LoraprovError):
    """Indicates the operation should not be retried."""


class FormatError(PermanentError, ValueError):
    """Malformed hardware identifier."""


class ConfigError(PermanentError):
    """Missing or invalid registry configuration."""


class CredentialError(PermanentError):
    """Invalid or insufficiently privileged registry credential."""


class TransportError(RecoverableError):
    """Network or remote-service failure."""

    def __init__(self, message: str, *, http_status: int | None = None) -> None:
        super().__init__(message)
        self.http_status = http_status


class RemoteTimeoutError(TransportError):
    """A remote call did not finish within its time budget."""


class RegistrationError(TransportError):
    """The registry refused or failed a registration call."""

    def __init__(
        self,
        reason: str,
        *,
        http_status: int | None = None,
        error_code: str | None = None,
    ) -> None:
        super().__init__(reason, http_status=http_status)
        self.reason = reason
        self.error_code = error_code


class WizardTransitionError(LoraprovError):
    """A wizard command is not allowed in the current state."""


class PlanNotConfirmedError(WizardTransitionError):
    """The registration plan was requested before operator confirmation."""
