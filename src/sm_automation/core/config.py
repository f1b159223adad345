"""Configuration management for SM Automation."""

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes")


@dataclass
class Config:
    """Global configuration for SM Automation.

    All values can be overridden via environment variables with the SM_ prefix.
    Example: SM_SESSION_TTL_SECONDS=3600

    Timeouts are expressed in seconds; the browser layer converts them to
    milliseconds where Playwright expects it.
    """

    # Session pool
    session_ttl_seconds: float = field(
        default_factory=lambda: float(os.environ.get("SM_SESSION_TTL_SECONDS", str(4 * 60 * 60)))
    )

    # Time bounds
    navigation_timeout: float = field(
        default_factory=lambda: float(os.environ.get("SM_NAVIGATION_TIMEOUT", "30.0"))
    )
    field_wait_timeout: float = field(
        default_factory=lambda: float(os.environ.get("SM_FIELD_WAIT_TIMEOUT", "3.0"))
    )
    submit_settle_timeout: float = field(
        default_factory=lambda: float(os.environ.get("SM_SUBMIT_SETTLE_TIMEOUT", "10.0"))
    )
    snapshot_idle_timeout: float = field(
        default_factory=lambda: float(os.environ.get("SM_SNAPSHOT_IDLE_TIMEOUT", "10.0"))
    )
    snapshot_settle_delay: float = field(
        default_factory=lambda: float(os.environ.get("SM_SNAPSHOT_SETTLE_DELAY", "2.0"))
    )
    default_timeout: float = field(
        default_factory=lambda: float(os.environ.get("SM_DEFAULT_TIMEOUT", "30.0"))
    )

    # Browser
    headless: bool = field(default_factory=lambda: _env_bool("SM_HEADLESS", "true"))
    viewport_width: int = field(
        default_factory=lambda: int(os.environ.get("SM_VIEWPORT_WIDTH", "1280"))
    )
    viewport_height: int = field(
        default_factory=lambda: int(os.environ.get("SM_VIEWPORT_HEIGHT", "900"))
    )
    user_agent: str = field(
        default_factory=lambda: os.environ.get(
            "SM_USER_AGENT",
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
        )
    )
    profile_root: Path = field(
        default_factory=lambda: Path(
            os.environ.get("SM_PROFILE_ROOT", os.path.join(tempfile.gettempdir(), "sm-automation-profiles"))
        )
    )

    # Credential stores
    credentials_file: str = field(
        default_factory=lambda: os.environ.get("SM_CREDENTIALS_FILE", "")
    )
    supabase_url: str = field(
        default_factory=lambda: os.environ.get("SUPABASE_URL") or os.environ.get("VITE_SUPABASE_URL", "")
    )
    supabase_service_key: str = field(
        default_factory=lambda: os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")
    )

    # Logging
    log_level: str = field(
        default_factory=lambda: os.environ.get("SM_LOG_LEVEL", "INFO")
    )
    redact_sensitive: bool = field(
        default_factory=lambda: _env_bool("SM_REDACT_SENSITIVE", "true")
    )

    def validate(self) -> None:
        """Validate that configured values are usable.

        Raises:
            ValueError: If a time bound or dimension is not positive.
        """
        bounds = {
            "session_ttl_seconds": self.session_ttl_seconds,
            "navigation_timeout": self.navigation_timeout,
            "field_wait_timeout": self.field_wait_timeout,
            "submit_settle_timeout": self.submit_settle_timeout,
            "snapshot_idle_timeout": self.snapshot_idle_timeout,
            "default_timeout": self.default_timeout,
            "viewport_width": self.viewport_width,
            "viewport_height": self.viewport_height,
        }
        for name, value in bounds.items():
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if self.snapshot_settle_delay < 0:
            raise ValueError("snapshot_settle_delay must not be negative")
        if bool(self.supabase_url) != bool(self.supabase_service_key):
            raise ValueError(
                "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set together"
            )

    @classmethod
    def from_env(cls) -> "Config":
        """Create a Config instance from environment variables.

        Returns:
            Config instance with values from environment.
        """
        return cls()
