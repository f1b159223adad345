"""Desktop multi-window shell."""

from sm_automation.desktop.shell import DesktopShell, DesktopWindow, window_key

__all__ = ["DesktopShell", "DesktopWindow", "window_key"]
