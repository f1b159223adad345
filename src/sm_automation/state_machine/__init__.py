"""State machine for the login flow."""

from sm_automation.state_machine.machine import LoginFlow, StateResult
from sm_automation.state_machine.states import (
    TERMINAL_STATES,
    TRANSITIONS,
    FailureReason,
    LoginState,
    can_transition,
)

__all__ = [
    "LoginFlow",
    "StateResult",
    "LoginState",
    "FailureReason",
    "TERMINAL_STATES",
    "TRANSITIONS",
    "can_transition",
]
