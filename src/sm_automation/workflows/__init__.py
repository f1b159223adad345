"""Workflow orchestrators."""

from sm_automation.workflows.controller import SessionController

__all__ = ["SessionController"]
