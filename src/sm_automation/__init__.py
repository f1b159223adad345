"""SM Automation - isolated, credential-bound dashboard sessions for Sushi Metrics.

This package provides both a library interface and CLI for:
- Keeping one isolated browser context per tenant, with time-based eviction
- Signing in to Trail and Attensi dashboards with a heuristic login flow
- Capturing snapshots of dashboard pages
- Serverless-style JSON endpoints and a multi-window desktop shell

Library Usage:
    >>> from sm_automation import Config, SessionController
    >>>
    >>> async with SessionController.from_config(Config()) as controller:
    ...     result = await controller.run("allerton", "complete-tasks", take_snapshot=True)
    >>> result.to_dict()["success"]
    True

CLI Usage:
    $ sm-automation login --tenant allerton --target daily-report -o report.jpg
    $ sm-automation snapshot --account sefton -o sefton.png
    $ sm-automation credentials set allerton --email ops@example.com
    $ sm-automation desktop -w trail-allerton -w attensi
"""

__version__ = "0.1.0"

# Core
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

# Models
from sm_automation.models.results import (
    AutomationResult,
    Credentials,
    LoginAttempt,
    SnapshotResult,
)
from sm_automation.models.tenants import TARGETS, TENANTS, WindowKey

# Components
from sm_automation.api.handlers import AutomationHandler, HandlerResponse, SnapshotHandler
from sm_automation.browser import AutoFillHeuristic, PlaywrightEngine, SnapshotCapture
from sm_automation.credentials import CredentialStore, credential_store_from_config
from sm_automation.desktop import DesktopShell
from sm_automation.sessions import SessionPool, SessionState
from sm_automation.state_machine import FailureReason, LoginFlow, LoginState
from sm_automation.workflows import SessionController

__all__ = [
    "__version__",
    # Core
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
    # Models
    "AutomationResult",
    "Credentials",
    "LoginAttempt",
    "SnapshotResult",
    "TARGETS",
    "TENANTS",
    "WindowKey",
    # Components
    "AutomationHandler",
    "HandlerResponse",
    "SnapshotHandler",
    "AutoFillHeuristic",
    "PlaywrightEngine",
    "SnapshotCapture",
    "CredentialStore",
    "credential_store_from_config",
    "DesktopShell",
    "SessionPool",
    "SessionState",
    "LoginFlow",
    "LoginState",
    "FailureReason",
    "SessionController",
]
