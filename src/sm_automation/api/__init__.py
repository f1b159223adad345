"""Serverless request handlers."""

from sm_automation.api.handlers import (
    AutomationHandler,
    HandlerResponse,
    SnapshotHandler,
    event_body,
    event_method,
    make_lambda_handler,
)

__all__ = [
    "AutomationHandler",
    "HandlerResponse",
    "SnapshotHandler",
    "event_body",
    "event_method",
    "make_lambda_handler",
]
