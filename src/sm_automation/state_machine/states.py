"""State definitions for the login flow state machine."""

from enum import Enum


class LoginState(str, Enum):
    """States for the login flow.

    The flow progresses through these states:
    1. NOT_STARTED - Nothing done yet
    2. NAVIGATED - Target page loaded
    3. FORM_DETECTION_PENDING - Polling for login fields
    4. FORM_FOUND / FORM_ABSENT - Login form present, or not (already signed in)
    5. FILLED - Credentials entered
    6. SUBMITTED - Form submitted, waiting for the page to settle

    Terminal states:
    - CONFIRMED - Signed in (or never needed to)
    - FAILED - See FailureReason
    """

    NOT_STARTED = "not_started"
    NAVIGATED = "navigated"
    FORM_DETECTION_PENDING = "form_detection_pending"
    FORM_FOUND = "form_found"
    FORM_ABSENT = "form_absent"
    FILLED = "filled"
    SUBMITTED = "submitted"

    # Terminal states
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self in TERMINAL_STATES


class FailureReason(str, Enum):
    """Why a login flow ended in FAILED."""

    NAVIGATION_TIMEOUT = "navigation_timeout"
    NAVIGATION_FAILED = "navigation_failed"
    FIELDS_NOT_FOUND = "fields_not_found"
    LOGIN_REJECTED = "login_rejected"
    UNEXPECTED_ERROR = "unexpected_error"


TERMINAL_STATES = frozenset({
    LoginState.CONFIRMED,
    LoginState.FAILED,
})

# Allowed transitions; anything else is a programming error.
TRANSITIONS: dict[LoginState, frozenset[LoginState]] = {
    LoginState.NOT_STARTED: frozenset({LoginState.NAVIGATED, LoginState.FAILED}),
    LoginState.NAVIGATED: frozenset({LoginState.FORM_DETECTION_PENDING, LoginState.FAILED}),
    LoginState.FORM_DETECTION_PENDING: frozenset({
        LoginState.FORM_FOUND,
        LoginState.FORM_ABSENT,
        LoginState.FAILED,
    }),
    LoginState.FORM_ABSENT: frozenset({LoginState.CONFIRMED, LoginState.FAILED}),
    LoginState.FORM_FOUND: frozenset({LoginState.FILLED, LoginState.FAILED}),
    LoginState.FILLED: frozenset({LoginState.SUBMITTED, LoginState.FAILED}),
    LoginState.SUBMITTED: frozenset({LoginState.CONFIRMED, LoginState.FAILED}),
    LoginState.CONFIRMED: frozenset(),
    LoginState.FAILED: frozenset(),
}


def can_transition(current: LoginState, target: LoginState) -> bool:
    """Check whether a transition is declared.

    Args:
        current: State the flow is in
        target: State it wants to move to

    Returns:
        True if the transition is allowed
    """
    return target in TRANSITIONS.get(current, frozenset())
