"""Playwright launcher for isolated per-tenant browser contexts."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from sm_automation.core.config import Config

logger = logging.getLogger(__name__)


CHROMIUM_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
]


class BrowserHandle(Protocol):
    """An exclusively owned browser context."""

    partition: str

    async def new_page(self) -> Any: ...

    async def close(self) -> None: ...


class Launcher(Protocol):
    """Anything that can launch isolated contexts (real engine or test fake)."""

    async def launch(self, tenant_key: str, partition: str) -> BrowserHandle: ...

    async def shutdown(self) -> None: ...


@dataclass
class PlaywrightHandle:
    """One chromium process plus one context, owned by a single session.

    Attributes:
        partition: Storage partition id of the context
        context: Playwright browser context
        browser: Owning browser (None for persistent contexts)
    """

    partition: str
    context: BrowserContext
    browser: Browser | None = None
    closed: bool = field(default=False, init=False)

    async def new_page(self) -> Page:
        return await self.context.new_page()

    async def main_page(self) -> Page:
        """First page of the context; persistent contexts open with one."""
        if self.context.pages:
            return self.context.pages[0]
        return await self.context.new_page()

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self.context.close()
        finally:
            if self.browser is not None:
                await self.browser.close()


def _context_kwargs(config: Config) -> dict[str, Any]:
    return {
        "viewport": {"width": config.viewport_width, "height": config.viewport_height},
        "ignore_https_errors": True,
        "user_agent": config.user_agent,
    }


class PlaywrightEngine:
    """Launches chromium contexts with the async Playwright API.

    The Playwright driver is started lazily on the first launch and stopped
    by ``shutdown()``. Each ``launch`` gets its own browser process so that
    closing one tenant's session never touches another's.

    Example:
        >>> engine = PlaywrightEngine(Config())
        >>> handle = await engine.launch("allerton", "persist:trail-allerton")
        >>> page = await handle.new_page()
    """

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()
        self._playwright: Playwright | None = None
        self._start_lock = asyncio.Lock()

    async def _ensure_started(self) -> Playwright:
        async with self._start_lock:
            if self._playwright is None:
                logger.debug("Starting Playwright driver")
                self._playwright = await async_playwright().start()
        return self._playwright

    async def launch(self, tenant_key: str, partition: str) -> PlaywrightHandle:
        """Launch a fresh, isolated context for a tenant.

        Args:
            tenant_key: Tenant the context belongs to (for logging)
            partition: Storage partition id the context represents

        Returns:
            PlaywrightHandle owning the browser and context
        """
        playwright = await self._ensure_started()
        logger.info(f"Launching browser for {tenant_key} (partition={partition})")
        browser = await playwright.chromium.launch(
            headless=self.config.headless,
            args=list(CHROMIUM_ARGS),
        )
        try:
            context = await browser.new_context(**_context_kwargs(self.config))
        except Exception:
            await browser.close()
            raise
        context.set_default_timeout(self.config.default_timeout * 1000)
        return PlaywrightHandle(partition=partition, context=context, browser=browser)

    async def launch_persistent(
        self,
        user_data_dir: Path | str,
        partition: str,
        headless: bool | None = None,
    ) -> PlaywrightHandle:
        """Launch a context whose storage lives in a profile directory.

        Args:
            user_data_dir: Profile directory for the partition
            partition: Storage partition id
            headless: Override the configured headless flag

        Returns:
            PlaywrightHandle for the persistent context
        """
        playwright = await self._ensure_started()
        Path(user_data_dir).mkdir(parents=True, exist_ok=True)
        context = await playwright.chromium.launch_persistent_context(
            str(user_data_dir),
            headless=self.config.headless if headless is None else headless,
            args=list(CHROMIUM_ARGS),
            **_context_kwargs(self.config),
        )
        context.set_default_timeout(self.config.default_timeout * 1000)
        return PlaywrightHandle(partition=partition, context=context)

    async def shutdown(self) -> None:
        """Stop the Playwright driver if it was started."""
        async with self._start_lock:
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
                logger.debug("Playwright driver stopped")
