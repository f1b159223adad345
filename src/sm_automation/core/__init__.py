"""Core infrastructure for SM Automation."""

from sm_automation.core.config import Config
from sm_automation.core.exceptions import (
    CaptureFailedError,
    CredentialsMissingError,
    FieldsNotFoundError,
    LoginRejectedError,
    NavigationTimeoutError,
    ResourceUnavailableError,
    SMAutomationError,
    StateTransitionError,
    ValidationError,
)

__all__ = [
    "Config",
    "SMAutomationError",
    "ResourceUnavailableError",
    "NavigationTimeoutError",
    "FieldsNotFoundError",
    "LoginRejectedError",
    "CredentialsMissingError",
    "CaptureFailedError",
    "ValidationError",
    "StateTransitionError",
]
