"""Custom exceptions for SM Automation."""

from typing import Any


class SMAutomationError(Exception):
    """Base exception for all SM Automation errors."""

    kind = "error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


class ResourceUnavailableError(SMAutomationError):
    """Raised when an automation context cannot be launched."""

    kind = "resource_unavailable"

    def __init__(
        self,
        message: str = "Automation context unavailable",
        tenant_key: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.tenant_key = tenant_key


class NavigationTimeoutError(SMAutomationError):
    """Raised when a page navigation exceeds its time bound."""

    kind = "navigation_timeout"

    def __init__(
        self,
        message: str,
        url: str | None = None,
        timeout: float | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.url = url
        self.timeout = timeout


class FieldsNotFoundError(SMAutomationError):
    """Raised when the login fields could not be located on the page."""

    kind = "fields_not_found"

    def __init__(
        self,
        message: str = "Login fields not found",
        missing: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.missing = missing or []


class LoginRejectedError(SMAutomationError):
    """Raised when a submitted login form is still shown after the settle wait."""

    kind = "login_rejected"


class CredentialsMissingError(SMAutomationError):
    """Raised when no credentials are stored for a tenant."""

    kind = "credentials_missing"

    def __init__(
        self,
        message: str = "Credentials not found",
        tenant_key: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.tenant_key = tenant_key


class CaptureFailedError(SMAutomationError):
    """Raised internally when a snapshot cannot be taken."""

    kind = "capture_failed"


class ValidationError(SMAutomationError):
    """Raised when request input validation fails."""

    kind = "validation"

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.field = field
        self.value = value


class StateTransitionError(SMAutomationError):
    """Raised when an invalid state transition is attempted."""

    kind = "state_transition"

    def __init__(
        self,
        message: str,
        current_state: str,
        attempted_state: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.current_state = current_state
        self.attempted_state = attempted_state
