"""Heuristic login form detection, filling and submission."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sm_automation.core.exceptions import FieldsNotFoundError
from sm_automation.models.results import Credentials

logger = logging.getLogger(__name__)


class FieldRole(str, Enum):
    """Role of a login form element."""

    IDENTITY = "identity"
    SECRET = "secret"
    SUBMIT = "submit"


class SubmitMethod(str, Enum):
    """How a login form was submitted."""

    CONTROL = "control"
    ENTER_KEY = "enter_key"
    FORM_SUBMIT = "form_submit"


# Priority-ordered; the first visible match per role wins.
DEFAULT_SELECTORS: dict[FieldRole, list[str]] = {
    FieldRole.IDENTITY: [
        'input[type="email"]',
        'input[name="email"]',
        "input#email",
        'input[name="username"]',
        "input#username",
        'input[autocomplete="username"]',
    ],
    FieldRole.SECRET: [
        'input[type="password"]',
        'input[name="password"]',
        "input#password",
    ],
    FieldRole.SUBMIT: [
        'button[type="submit"]',
        'input[type="submit"]',
        'button[data-testid="login-submit"]',
        'button:has-text("Sign In")',
        'button:has-text("Log In")',
        "button:not([type])",
    ],
}

# Returns true when a native form submission was triggered.
_FORM_SUBMIT_JS = """
(el) => {
    const form = el.form || el.closest('form');
    if (!form) return false;
    if (typeof form.requestSubmit === 'function') form.requestSubmit();
    else form.submit();
    return true;
}
"""


@dataclass
class LoginForm:
    """Elements located on a page for one login attempt.

    Attributes:
        identity: Email/username input, if found
        secret: Password input, if found
        submit: Submit control, if found
        matched: Selector that matched, per role
    """

    identity: Any = None
    secret: Any = None
    submit: Any = None
    matched: dict[FieldRole, str] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        """Both credential fields are present."""
        return self.identity is not None and self.secret is not None

    @property
    def missing(self) -> list[str]:
        missing = []
        if self.identity is None:
            missing.append(FieldRole.IDENTITY.value)
        if self.secret is None:
            missing.append(FieldRole.SECRET.value)
        return missing


class AutoFillHeuristic:
    """Locates login fields on a loaded page and fills them.

    Each role has a priority-ordered list of structural selectors. For every
    role the selectors are tried in order and the first visible element wins.
    The page is polled until at least one credential field shows up or the
    field wait bound expires.

    Example:
        >>> autofill = AutoFillHeuristic(field_wait_timeout=3.0)
        >>> form = await autofill.locate_and_fill(page, credentials)
        >>> method = await autofill.submit(page, form)
    """

    def __init__(
        self,
        selectors: dict[FieldRole, list[str]] | None = None,
        field_wait_timeout: float = 3.0,
        poll_interval: float = 0.25,
    ) -> None:
        """Initialize the heuristic.

        Args:
            selectors: Per-role selector overrides (missing roles use defaults)
            field_wait_timeout: Seconds to poll for login fields
            poll_interval: Seconds between polls
        """
        self.selectors = {role: list(values) for role, values in DEFAULT_SELECTORS.items()}
        if selectors:
            for role, values in selectors.items():
                self.selectors[FieldRole(role)] = list(values)
        self.field_wait_timeout = field_wait_timeout
        self.poll_interval = poll_interval

    async def _first_visible(self, page: Any, role: FieldRole) -> tuple[Any, str]:
        for selector in self.selectors[role]:
            try:
                elements = await page.query_selector_all(selector)
            except Exception as e:
                logger.debug(f"Selector {selector!r} failed: {e}")
                continue
            for element in elements:
                try:
                    if await element.is_visible():
                        return element, selector
                except Exception as e:
                    logger.debug(f"Visibility check failed for {selector!r}: {e}")
        return None, ""

    async def _scan(self, page: Any) -> LoginForm:
        form = LoginForm()
        for role in FieldRole:
            element, selector = await self._first_visible(page, role)
            if element is not None:
                setattr(form, role.value, element)
                form.matched[role] = selector
        return form

    async def detect(self, page: Any, timeout: float | None = None) -> LoginForm | None:
        """Poll the page for a login form.

        Args:
            page: Playwright page (or compatible)
            timeout: Seconds to poll; defaults to the field wait bound

        Returns:
            LoginForm if an identity or secret field was found, else None
        """
        wait = self.field_wait_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait
        while True:
            form = await self._scan(page)
            if form.identity is not None or form.secret is not None:
                logger.debug(f"Login form detected: {[r.value for r in form.matched]}")
                return form
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def has_login_form(self, page: Any, timeout: float = 0) -> bool:
        """Whether the page currently exposes a login form."""
        return await self.detect(page, timeout=timeout) is not None

    async def fill_field(self, element: Any, value: str) -> None:
        """Select any existing text, type the value and notify listeners."""
        await element.click(click_count=3)
        await element.fill(value)
        await element.dispatch_event("input")
        await element.dispatch_event("change")

    async def locate_and_fill(
        self,
        page: Any,
        credentials: Credentials,
        form: LoginForm | None = None,
    ) -> LoginForm:
        """Locate the login fields and fill them with the credentials.

        Args:
            page: Playwright page (or compatible)
            credentials: Credentials to enter
            form: Previously detected form; detected afresh when omitted

        Returns:
            The filled LoginForm

        Raises:
            FieldsNotFoundError: If either credential field cannot be located
        """
        if form is None:
            form = await self.detect(page)
        if form is None or not form.is_complete:
            missing = form.missing if form is not None else [
                FieldRole.IDENTITY.value,
                FieldRole.SECRET.value,
            ]
            raise FieldsNotFoundError(
                f"Could not locate login fields: {', '.join(missing)}",
                missing=missing,
            )

        await self.fill_field(form.identity, credentials.identity)
        await self.fill_field(form.secret, credentials.secret)
        logger.debug("Login fields filled")
        return form

    async def submit(self, page: Any, form: LoginForm) -> SubmitMethod:
        """Submit a filled form.

        Tries the submit control, then Enter on the secret field, then a
        native form submission.

        Returns:
            The SubmitMethod that was used

        Raises:
            FieldsNotFoundError: If no submission method is available
        """
        if form.submit is not None:
            try:
                await form.submit.click()
                return SubmitMethod.CONTROL
            except Exception as e:
                logger.debug(f"Submit control click failed: {e}")

        if form.secret is not None:
            try:
                await form.secret.press("Enter")
                return SubmitMethod.ENTER_KEY
            except Exception as e:
                logger.debug(f"Enter key submit failed: {e}")

            try:
                if await form.secret.evaluate(_FORM_SUBMIT_JS):
                    return SubmitMethod.FORM_SUBMIT
            except Exception as e:
                logger.debug(f"Native form submit failed: {e}")

        raise FieldsNotFoundError(
            "No way to submit the login form",
            missing=[FieldRole.SUBMIT.value],
        )
