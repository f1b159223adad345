"""Utility functions for SM Automation."""

from sm_automation.utils.redaction import redact_data_url, redact_params

__all__ = [
    "redact_data_url",
    "redact_params",
]
