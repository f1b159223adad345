"""Session controller: the entry point for automation requests."""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import urlparse

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from sm_automation.browser.engine import Launcher
from sm_automation.browser.snapshot import SNAPSHOT_FORMATS, SnapshotCapture
from sm_automation.core.config import Config
from sm_automation.core.exceptions import CredentialsMissingError, ValidationError
from sm_automation.credentials.store import CredentialStore, credential_store_from_config
from sm_automation.models.results import AutomationResult, Credentials, LoginAttempt
from sm_automation.models.tenants import (
    TARGETS,
    Target,
    get_tenant,
    resolve_target,
    service_id_for,
)
from sm_automation.sessions.pool import SessionPool
from sm_automation.state_machine.machine import LoginFlow
from sm_automation.state_machine.states import FailureReason

logger = logging.getLogger(__name__)


def _same_page(current: str, target: str) -> bool:
    return (current or "").rstrip("/") == (target or "").rstrip("/")


def stored_credentials_allowed(tenant_key: str, target: Target) -> bool:
    """Whether a tenant's stored credentials may be typed into a target.

    Catalogue targets always qualify; ad-hoc URLs only on the tenant's
    own dashboard host.
    """
    if TARGETS.get(target.key) == target:
        return True
    try:
        host = get_tenant(tenant_key).dashboard_host
    except ValidationError:
        return False
    return urlparse(target.url).netloc.lower() == host


class SessionController:
    """Signs a tenant in to a dashboard page and optionally captures it.

    Each run:
    1. Resolves the target and the tenant's credentials (before any launch)
    2. Leases the tenant's session from the pool
    3. Opens a fresh page and drives the LoginFlow
    4. Navigates to the target if the flow ended elsewhere
    5. Captures a snapshot (JPEG on success, diagnostic PNG on failure)

    The page is closed and the session released on every exit path.

    Example:
        >>> async with SessionController.from_config(config) as controller:
        ...     result = await controller.run("allerton", "complete-tasks", take_snapshot=True)
        >>> result.to_dict()["success"]
        True
    """

    def __init__(
        self,
        pool: SessionPool,
        credential_store: CredentialStore,
        login_flow: LoginFlow | None = None,
        snapshot: SnapshotCapture | None = None,
        config: Config | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            pool: Session pool (owned; closed by close())
            credential_store: Where tenant credentials are looked up
            login_flow: Login state machine (defaults from config)
            snapshot: Snapshot capture (defaults from config)
            config: Configuration
        """
        self.config = config or Config.from_env()
        self.pool = pool
        self.credential_store = credential_store
        self.login_flow = login_flow or LoginFlow.from_config(self.config)
        self.snapshot = snapshot or SnapshotCapture(
            idle_timeout=self.config.snapshot_idle_timeout,
            settle_delay=self.config.snapshot_settle_delay,
        )

    @classmethod
    def from_config(
        cls,
        config: Config | None = None,
        credential_store: CredentialStore | None = None,
        launcher: Launcher | None = None,
    ) -> SessionController:
        config = config or Config.from_env()
        return cls(
            pool=SessionPool.from_config(config, launcher=launcher),
            credential_store=credential_store or credential_store_from_config(config),
            config=config,
        )

    async def resolve_credentials(
        self,
        tenant_key: str,
        credentials: Credentials | dict[str, Any] | None = None,
        use_store: bool = True,
    ) -> Credentials:
        """Pick the credentials for a run.

        Explicit credentials win when both parts are present; otherwise the
        store is asked by tenant key, then by the tenant's service id.

        Args:
            tenant_key: Tenant to look up
            credentials: Request-supplied credentials
            use_store: Fall back to the credential store

        Raises:
            CredentialsMissingError: If nothing usable is found
        """
        if isinstance(credentials, dict):
            credentials = Credentials.from_mapping(credentials)
        if credentials is not None and credentials.is_complete:
            return credentials
        if not use_store:
            raise CredentialsMissingError(
                f"Stored credentials for {tenant_key} are only used on its own dashboard; "
                f"pass credentials explicitly for this target",
                tenant_key=tenant_key,
            )

        for lookup_key in dict.fromkeys((tenant_key, service_id_for(tenant_key))):
            stored = await asyncio.to_thread(self.credential_store.get, lookup_key)
            if stored is not None and stored.is_complete:
                return stored

        raise CredentialsMissingError(
            f"Credentials not found for {tenant_key}",
            tenant_key=tenant_key,
        )

    async def run(
        self,
        tenant_key: str,
        target: str | Target,
        take_snapshot: bool = True,
        credentials: Credentials | dict[str, Any] | None = None,
        snapshot_format: str = "jpeg",
        allow_urls: bool = False,
    ) -> AutomationResult:
        """Sign in and optionally capture the target page.

        Args:
            tenant_key: Tenant to act as
            target: Target key (or absolute URL with allow_urls)
            take_snapshot: Capture the page after sign-in
            credentials: Request-supplied credentials (override the store)
            snapshot_format: "jpeg" or "png" for the success snapshot
            allow_urls: Accept ad-hoc URLs; stored credentials are only
                used when the URL is on the tenant's dashboard host

        Returns:
            AutomationResult; login failures are reported, not raised

        Raises:
            ValidationError: If the target or snapshot format is unknown
            CredentialsMissingError: If no credentials are available
            ResourceUnavailableError: If no context could be launched
        """
        resolved = resolve_target(target, allow_urls=allow_urls)
        if snapshot_format not in SNAPSHOT_FORMATS:
            raise ValidationError(
                f"Unsupported image format: {snapshot_format}",
                field="snapshot_format",
                value=snapshot_format,
            )
        creds = await self.resolve_credentials(
            tenant_key,
            credentials,
            use_store=stored_credentials_allowed(tenant_key, resolved),
        )
        logger.info(f"Automation run: tenant={tenant_key} target={resolved.key}")

        async with self.pool.lease(tenant_key) as session:
            page = await session.handle.new_page()
            try:
                return await self._drive(page, creds, resolved, take_snapshot, snapshot_format)
            finally:
                await self._close_page(page)

    async def _drive(
        self,
        page: Any,
        credentials: Credentials,
        target: Target,
        take_snapshot: bool,
        snapshot_format: str,
    ) -> AutomationResult:
        attempt = await self.login_flow.run(page, credentials, target.url)
        if attempt.failed:
            return await self._failure(page, attempt, attempt.last_error, attempt.failure)

        if not _same_page(page.url, target.url):
            try:
                await page.goto(
                    target.url,
                    wait_until="domcontentloaded",
                    timeout=self.config.navigation_timeout * 1000,
                )
            except PlaywrightTimeoutError:
                return await self._failure(
                    page,
                    attempt,
                    f"Navigation to {target.url} timed out",
                    FailureReason.NAVIGATION_TIMEOUT,
                )
            except Exception as e:
                return await self._failure(
                    page,
                    attempt,
                    f"Navigation to {target.url} failed: {type(e).__name__}",
                    FailureReason.NAVIGATION_FAILED,
                )

        snapshot = None
        if take_snapshot:
            snapshot = await self.snapshot.capture(page, image_format=snapshot_format)
        return AutomationResult(success=True, url=page.url, snapshot=snapshot, attempt=attempt)

    async def _failure(
        self,
        page: Any,
        attempt: LoginAttempt,
        error: str,
        failure: FailureReason | None,
    ) -> AutomationResult:
        snapshot = await self.snapshot.capture_diagnostic(page)
        return AutomationResult(
            success=False,
            url=page.url,
            snapshot=snapshot,
            error=error or "Login failed",
            error_kind=failure.value if failure else FailureReason.UNEXPECTED_ERROR.value,
            attempt=attempt,
        )

    async def _close_page(self, page: Any) -> None:
        try:
            await page.close()
        except Exception as e:
            logger.debug(f"Error closing page: {e}")

    async def snapshot_account(self, account: str) -> AutomationResult:
        """Sign in to an account's default page and capture it as PNG.

        Raises:
            ValidationError: If the account is unknown
            CredentialsMissingError: If no credentials are stored
            ResourceUnavailableError: If no context could be launched
        """
        tenant = get_tenant(account)
        return await self.run(
            tenant.key,
            tenant.default_target,
            take_snapshot=True,
            snapshot_format="png",
        )

    async def close(self) -> None:
        """Close all sessions."""
        await self.pool.close_all()

    async def __aenter__(self) -> SessionController:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
