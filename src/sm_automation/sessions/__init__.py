"""Session pool for tenant-isolated browser contexts."""

from sm_automation.sessions.pool import (
    DEFAULT_SESSION_TTL,
    Session,
    SessionPool,
    SessionState,
    canonical_key,
)

__all__ = [
    "DEFAULT_SESSION_TTL",
    "Session",
    "SessionPool",
    "SessionState",
    "canonical_key",
]
