"""Result models for SM Automation operations."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sm_automation.state_machine.states import FailureReason, LoginState


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def isoformat_utc(value: datetime) -> str:
    """Render a timestamp as ISO 8601 with millisecond precision and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class Credentials:
    """Login credentials borrowed from a credential store.

    Attributes:
        identity: Email address or username
        secret: Password
    """

    identity: str
    secret: str = field(repr=False)

    def __repr__(self) -> str:
        return f"Credentials(identity={self.identity!r}, secret='***')"

    @property
    def is_complete(self) -> bool:
        return bool(self.identity) and bool(self.secret)

    @classmethod
    def from_mapping(cls, data: Any) -> Credentials | None:
        """Build credentials from an {email, password} style mapping.

        Accepts both the wire names (email/password) and the internal
        names (identity/secret). Returns None when either part is missing.
        """
        if not isinstance(data, dict):
            return None
        identity = data.get("email") or data.get("identity") or data.get("username")
        secret = data.get("password") or data.get("secret")
        if not identity or not secret:
            return None
        return cls(identity=str(identity), secret=str(secret))

    def to_mapping(self) -> dict[str, str]:
        """Wire representation used by the stores and the desktop bridge."""
        return {"email": self.identity, "password": self.secret}


@dataclass
class SnapshotResult:
    """An encoded full-page image of a page.

    Attributes:
        encoded_image: Raw image bytes
        captured_at: When the capture completed
        image_format: "jpeg" or "png"
    """

    encoded_image: bytes
    captured_at: datetime = field(default_factory=utcnow)
    image_format: str = "jpeg"

    @property
    def mime_type(self) -> str:
        return f"image/{self.image_format}"

    def to_base64(self) -> str:
        return base64.b64encode(self.encoded_image).decode("ascii")

    def to_data_url(self) -> str:
        """Render as a data URL suitable for JSON responses."""
        return f"data:{self.mime_type};base64,{self.to_base64()}"

    def __repr__(self) -> str:
        return (
            f"SnapshotResult({self.image_format}, {len(self.encoded_image)} bytes, "
            f"captured_at={isoformat_utc(self.captured_at)})"
        )


@dataclass
class LoginAttempt:
    """Transient record of one LoginFlow run.

    Attributes:
        target: URL the flow navigated to
        state: Current (finally: terminal) state
        started_at: When the run started
        last_error: Message of the most recent failure
        failure: Failure reason when the flow ended in FAILED
        history: States visited, in order
        submit_method: How the login form was submitted, if it was
    """

    target: str
    state: LoginState
    started_at: datetime = field(default_factory=utcnow)
    last_error: str = ""
    failure: FailureReason | None = None
    history: list[LoginState] = field(default_factory=list)
    submit_method: str = ""

    @property
    def confirmed(self) -> bool:
        from sm_automation.state_machine.states import LoginState

        return self.state == LoginState.CONFIRMED

    @property
    def failed(self) -> bool:
        from sm_automation.state_machine.states import LoginState

        return self.state == LoginState.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "state": self.state.value,
            "started_at": isoformat_utc(self.started_at),
            "last_error": self.last_error,
            "failure": self.failure.value if self.failure else None,
            "history": [s.value for s in self.history],
            "submit_method": self.submit_method,
        }


@dataclass
class AutomationResult:
    """Structured outcome of a SessionController run.

    Attributes:
        success: Whether sign-in (and navigation to the target) succeeded
        url: Final page URL
        snapshot: Success snapshot, or diagnostic snapshot on failure
        timestamp: When the result was produced
        error: Error message if failed
        error_kind: Stable error kind (see core.exceptions)
        attempt: The LoginFlow record for this run
    """

    success: bool
    url: str = ""
    snapshot: SnapshotResult | None = None
    timestamp: datetime = field(default_factory=utcnow)
    error: str = ""
    error_kind: str = ""
    attempt: LoginAttempt | None = None

    @property
    def final_state(self) -> str:
        return self.attempt.state.value if self.attempt else ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON response shape."""
        if self.success:
            data: dict[str, Any] = {
                "success": True,
                "timestamp": isoformat_utc(self.timestamp),
                "url": self.url,
            }
        else:
            data = {"success": False, "error": self.error}
        if self.snapshot is not None:
            data["screenshot"] = self.snapshot.to_data_url()
        return data
