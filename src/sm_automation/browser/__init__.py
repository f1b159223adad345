"""Browser automation layer: context launcher, login autofill, snapshots."""

from sm_automation.browser.autofill import (
    DEFAULT_SELECTORS,
    AutoFillHeuristic,
    FieldRole,
    LoginForm,
    SubmitMethod,
)
from sm_automation.browser.engine import (
    CHROMIUM_ARGS,
    BrowserHandle,
    Launcher,
    PlaywrightEngine,
    PlaywrightHandle,
)
from sm_automation.browser.snapshot import SnapshotCapture

__all__ = [
    # Launching
    "CHROMIUM_ARGS",
    "BrowserHandle",
    "Launcher",
    "PlaywrightEngine",
    "PlaywrightHandle",
    # Login form heuristic
    "DEFAULT_SELECTORS",
    "AutoFillHeuristic",
    "FieldRole",
    "LoginForm",
    "SubmitMethod",
    # Snapshots
    "SnapshotCapture",
]
