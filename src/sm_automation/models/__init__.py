"""Data models for SM Automation."""

from sm_automation.models.results import (
    AutomationResult,
    Credentials,
    LoginAttempt,
    SnapshotResult,
    isoformat_utc,
    utcnow,
)
from sm_automation.models.tenants import (
    TARGETS,
    TENANTS,
    Target,
    Tenant,
    WindowKey,
    get_tenant,
    resolve_target,
    service_id_for,
)

__all__ = [
    "AutomationResult",
    "Credentials",
    "LoginAttempt",
    "SnapshotResult",
    "isoformat_utc",
    "utcnow",
    "TARGETS",
    "TENANTS",
    "Target",
    "Tenant",
    "WindowKey",
    "get_tenant",
    "resolve_target",
    "service_id_for",
]
