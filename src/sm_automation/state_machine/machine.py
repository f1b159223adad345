"""Login flow state machine implementation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from sm_automation.browser.autofill import AutoFillHeuristic, LoginForm
from sm_automation.core.config import Config
from sm_automation.core.exceptions import (
    FieldsNotFoundError,
    LoginRejectedError,
    NavigationTimeoutError,
    SMAutomationError,
    StateTransitionError,
)
from sm_automation.models.results import Credentials, LoginAttempt, utcnow
from sm_automation.state_machine.states import (
    TERMINAL_STATES,
    FailureReason,
    LoginState,
    can_transition,
)

logger = logging.getLogger(__name__)

FAILURE_BY_ERROR: dict[type[SMAutomationError], FailureReason] = {
    NavigationTimeoutError: FailureReason.NAVIGATION_TIMEOUT,
    FieldsNotFoundError: FailureReason.FIELDS_NOT_FOUND,
    LoginRejectedError: FailureReason.LOGIN_REJECTED,
}


@dataclass
class StateResult:
    """Result from executing a state.

    Attributes:
        next_state: State to transition to
        error: Error message if the flow failed
        failure: Failure reason when next_state is FAILED
    """

    next_state: LoginState
    error: str = ""
    failure: FailureReason | None = None


@dataclass
class _FlowRun:
    """Per-run working data; a LoginFlow instance may serve several runs at once."""

    page: Any
    credentials: Credentials
    attempt: LoginAttempt
    form: LoginForm | None = None
    settled: bool = False


class LoginFlow:
    """State machine that signs in to a dashboard page.

    Sequence: navigate to the target, poll for a login form, fill and submit
    it, then confirm. A page with no recognizable login form is treated as
    already authenticated. Every failure is reported in the returned
    LoginAttempt rather than raised; only cancellation and undeclared
    transitions propagate.

    Example:
        >>> flow = LoginFlow.from_config(config)
        >>> attempt = await flow.run(page, credentials, "https://web.trailapp.com/trail#/")
        >>> attempt.state
        <LoginState.CONFIRMED: 'confirmed'>
    """

    def __init__(
        self,
        autofill: AutoFillHeuristic | None = None,
        navigation_timeout: float = 30.0,
        submit_settle_timeout: float = 10.0,
        idle_timeout: float = 10.0,
    ) -> None:
        """Initialize the login flow.

        Args:
            autofill: Form heuristic (defaults to AutoFillHeuristic())
            navigation_timeout: Seconds allowed for the initial navigation
            submit_settle_timeout: Seconds to wait for post-submit navigation
            idle_timeout: Seconds of best-effort network idle wait after navigation
        """
        self.autofill = autofill or AutoFillHeuristic()
        self.navigation_timeout = navigation_timeout
        self.submit_settle_timeout = submit_settle_timeout
        self.idle_timeout = idle_timeout

    @classmethod
    def from_config(cls, config: Config) -> LoginFlow:
        return cls(
            autofill=AutoFillHeuristic(field_wait_timeout=config.field_wait_timeout),
            navigation_timeout=config.navigation_timeout,
            submit_settle_timeout=config.submit_settle_timeout,
            idle_timeout=config.snapshot_idle_timeout,
        )

    async def run(self, page: Any, credentials: Credentials, target_url: str) -> LoginAttempt:
        """Execute the flow until a terminal state is reached.

        Args:
            page: Fresh page in the tenant's context
            credentials: Credentials borrowed for this run
            target_url: Page to sign in to

        Returns:
            LoginAttempt in CONFIRMED or FAILED
        """
        attempt = LoginAttempt(
            target=target_url,
            state=LoginState.NOT_STARTED,
            started_at=utcnow(),
            history=[LoginState.NOT_STARTED],
        )
        run = _FlowRun(page=page, credentials=credentials, attempt=attempt)

        while attempt.state not in TERMINAL_STATES:
            try:
                result = await self._execute_state(run)
            except SMAutomationError as e:
                result = StateResult(
                    next_state=LoginState.FAILED,
                    error=e.message,
                    failure=FAILURE_BY_ERROR.get(type(e), FailureReason.UNEXPECTED_ERROR),
                )
            except Exception as e:
                logger.exception(f"Unexpected error in state {attempt.state.value}")
                result = StateResult(
                    next_state=LoginState.FAILED,
                    error=f"Unexpected error: {type(e).__name__}",
                    failure=FailureReason.UNEXPECTED_ERROR,
                )
            self._transition(attempt, result)

        logger.info(f"Login flow for {target_url} ended in {attempt.state.value}")
        return attempt

    def _transition(self, attempt: LoginAttempt, result: StateResult) -> None:
        if not can_transition(attempt.state, result.next_state):
            raise StateTransitionError(
                f"Invalid transition {attempt.state.value} -> {result.next_state.value}",
                current_state=attempt.state.value,
                attempted_state=result.next_state.value,
            )
        logger.debug(f"{attempt.state.value} -> {result.next_state.value}")
        attempt.state = result.next_state
        attempt.history.append(result.next_state)
        if result.next_state == LoginState.FAILED:
            attempt.failure = result.failure or FailureReason.UNEXPECTED_ERROR
            attempt.last_error = result.error or attempt.failure.value
            logger.warning(f"Login flow failed ({attempt.failure.value}): {attempt.last_error}")

    async def _execute_state(self, run: _FlowRun) -> StateResult:
        handlers: dict[LoginState, Callable[[_FlowRun], Awaitable[StateResult]]] = {
            LoginState.NOT_STARTED: self._handle_navigate,
            LoginState.NAVIGATED: self._handle_navigated,
            LoginState.FORM_DETECTION_PENDING: self._handle_detect_form,
            LoginState.FORM_ABSENT: self._handle_form_absent,
            LoginState.FORM_FOUND: self._handle_fill,
            LoginState.FILLED: self._handle_submit,
            LoginState.SUBMITTED: self._handle_confirm,
        }

        handler = handlers.get(run.attempt.state)
        if not handler:
            return StateResult(
                next_state=LoginState.FAILED,
                error=f"No handler for state {run.attempt.state.value}",
                failure=FailureReason.UNEXPECTED_ERROR,
            )
        return await handler(run)

    async def _handle_navigate(self, run: _FlowRun) -> StateResult:
        """Load the target page."""
        url = run.attempt.target
        try:
            await run.page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.navigation_timeout * 1000,
            )
        except PlaywrightTimeoutError as e:
            raise NavigationTimeoutError(
                f"Navigation to {url} timed out after {self.navigation_timeout:g}s",
                url=url,
                timeout=self.navigation_timeout,
            ) from e
        except Exception as e:
            return StateResult(
                next_state=LoginState.FAILED,
                error=f"Navigation to {url} failed: {type(e).__name__}",
                failure=FailureReason.NAVIGATION_FAILED,
            )

        try:
            await run.page.wait_for_load_state("networkidle", timeout=self.idle_timeout * 1000)
        except Exception as e:
            logger.debug(f"Network idle not reached after navigation: {type(e).__name__}")
        return StateResult(next_state=LoginState.NAVIGATED)

    async def _handle_navigated(self, run: _FlowRun) -> StateResult:
        return StateResult(next_state=LoginState.FORM_DETECTION_PENDING)

    async def _handle_detect_form(self, run: _FlowRun) -> StateResult:
        """Poll for login fields within the field wait bound."""
        run.form = await self.autofill.detect(run.page)
        if run.form is None:
            return StateResult(next_state=LoginState.FORM_ABSENT)
        return StateResult(next_state=LoginState.FORM_FOUND)

    async def _handle_form_absent(self, run: _FlowRun) -> StateResult:
        # No login form: the context is assumed to be signed in already.
        logger.info(f"No login form on {run.attempt.target}, assuming existing session")
        return StateResult(next_state=LoginState.CONFIRMED)

    async def _handle_fill(self, run: _FlowRun) -> StateResult:
        run.form = await self.autofill.locate_and_fill(run.page, run.credentials, form=run.form)
        return StateResult(next_state=LoginState.FILLED)

    async def _handle_submit(self, run: _FlowRun) -> StateResult:
        """Submit inside a bounded wait for the post-submit navigation."""
        try:
            async with run.page.expect_navigation(
                wait_until="networkidle",
                timeout=self.submit_settle_timeout * 1000,
            ):
                method = await self.autofill.submit(run.page, run.form)
                run.attempt.submit_method = method.value
            run.settled = True
        except PlaywrightTimeoutError:
            run.settled = False
        logger.debug(
            f"Login submitted via {run.attempt.submit_method or 'unknown'} "
            f"(navigation settled: {run.settled})"
        )
        return StateResult(next_state=LoginState.SUBMITTED)

    async def _handle_confirm(self, run: _FlowRun) -> StateResult:
        if run.settled:
            return StateResult(next_state=LoginState.CONFIRMED)
        if await self.autofill.has_login_form(run.page, timeout=0):
            raise LoginRejectedError("Login was rejected: sign-in form still shown after submit")
        return StateResult(next_state=LoginState.CONFIRMED)
