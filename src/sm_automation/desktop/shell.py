"""Desktop shell: one persistent, isolated browser window per window key.

The operations mirror the desktop IPC bridge (open/refresh/close/focus/logout
a window, look up the service of a page, get/set stored credentials) and are
reachable by channel name through ``DesktopShell.dispatch``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from sm_automation.browser.autofill import AutoFillHeuristic
from sm_automation.browser.engine import PlaywrightEngine
from sm_automation.core.config import Config
from sm_automation.core.exceptions import ValidationError
from sm_automation.credentials.store import CredentialStore, credential_store_from_config
from sm_automation.models.results import Credentials
from sm_automation.models.tenants import PARTITION_PREFIX, WindowKey

logger = logging.getLogger(__name__)

MAX_AUTOFILL_ATTEMPTS = 3


@dataclass
class DesktopWindow:
    """An open window and the persistent context behind it."""

    key: WindowKey
    handle: Any
    page: Any
    autofill_attempts: int = 0


def window_key(value: str | WindowKey) -> WindowKey:
    """Parse a window key.

    Raises:
        ValidationError: If the key is not one of the fixed window keys
    """
    try:
        return WindowKey(value)
    except ValueError as e:
        raise ValidationError(
            f"Unknown window key. Use {', '.join(k.value for k in WindowKey)}",
            field="key",
            value=value,
        ) from e


class DesktopShell:
    """Multi-window desktop surface with per-window storage partitions.

    Each WindowKey maps to its own profile directory under
    ``<profile_root>/desktop``; two windows never share cookies or storage.
    Every page load in a window attempts an automatic sign-in with the
    credentials stored for the window's service id.

    Example:
        >>> shell = DesktopShell(config=Config(headless=False))
        >>> await shell.dispatch("open-window", "trail-allerton")
        True
        >>> await shell.dispatch("logout-window", "trail-allerton")
        True
    """

    def __init__(
        self,
        engine: PlaywrightEngine | None = None,
        credential_store: CredentialStore | None = None,
        config: Config | None = None,
        autofill: AutoFillHeuristic | None = None,
        headless: bool | None = None,
    ) -> None:
        self.config = config or Config.from_env()
        self.engine = engine or PlaywrightEngine(self.config)
        self.credential_store = credential_store or credential_store_from_config(self.config)
        self.autofill = autofill or AutoFillHeuristic(field_wait_timeout=self.config.field_wait_timeout)
        self.headless = self.config.headless if headless is None else headless
        self._windows: dict[WindowKey, DesktopWindow] = {}
        self._page_services: dict[Any, str] = {}
        self._tasks: set[asyncio.Task] = set()
        self._window_locks: dict[WindowKey, asyncio.Lock] = {}
        self._teardowns: dict[WindowKey, asyncio.Task] = {}
        self._channels: dict[str, Callable[..., Any]] = {
            "open-window": self.open_window,
            "refresh-window": self.refresh_window,
            "close-window": self.close_window,
            "focus-window": self.focus_window,
            "logout-window": self.logout_window,
            "get-service": self.get_service,
            "get-credential": self.get_credential,
            "set-credential": self.set_credential,
        }

    @property
    def profile_dir(self) -> Path:
        return Path(self.config.profile_root) / "desktop"

    def partition_dir(self, key: str | WindowKey) -> Path:
        """Profile directory backing a window's partition."""
        key = window_key(key)
        return self.profile_dir / key.partition[len(PARTITION_PREFIX):]

    def is_open(self, key: str | WindowKey) -> bool:
        return window_key(key) in self._windows

    @property
    def open_windows(self) -> list[WindowKey]:
        return list(self._windows)

    async def dispatch(self, channel: str, *args: Any) -> Any:
        """Invoke an operation by its IPC channel name."""
        operation = self._channels.get(channel)
        if operation is None:
            raise ValidationError(f"Unknown channel: {channel}", field="channel", value=channel)
        result = operation(*args)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _window_lock(self, key: WindowKey) -> asyncio.Lock:
        lock = self._window_locks.get(key)
        if lock is None:
            lock = self._window_locks[key] = asyncio.Lock()
        return lock

    async def open_window(self, key: str | WindowKey) -> bool:
        """Open a window, or focus it if it is already open."""
        key = window_key(key)
        async with self._window_lock(key):
            return await self._open(key)

    async def _open(self, key: WindowKey) -> bool:
        """Find or launch a window. Caller holds the window lock."""
        window = self._windows.get(key)
        if window is not None:
            await window.page.bring_to_front()
            return True

        teardown = self._teardowns.get(key)
        if teardown is not None:
            # The profile directory stays locked until the old context is gone
            await asyncio.gather(teardown, return_exceptions=True)

        handle = await self.engine.launch_persistent(
            self.partition_dir(key),
            key.partition,
            headless=self.headless,
        )
        page = await handle.main_page()
        window = DesktopWindow(key=key, handle=handle, page=page)
        self._windows[key] = window
        self._page_services[page] = key.service_id
        page.on("load", lambda _page: self._schedule_autofill(window))
        page.on("close", lambda _page: self._on_page_closed(window))

        logger.info(f"Opening window {key.title}")
        try:
            await page.goto(key.url, wait_until="domcontentloaded")
        except Exception as e:
            logger.warning(f"Initial load of {key.value} failed: {e}")
        return True

    async def refresh_window(self, key: str | WindowKey) -> bool:
        """Reload a window's start page."""
        window = self._windows.get(window_key(key))
        if window is None:
            return False
        window.autofill_attempts = 0
        await window.page.goto(window.key.url, wait_until="domcontentloaded")
        return True

    async def close_window(self, key: str | WindowKey) -> bool:
        key = window_key(key)
        async with self._window_lock(key):
            return await self._close(key)

    async def _close(self, key: WindowKey) -> bool:
        window = self._windows.get(key)
        if window is None:
            return False
        self._forget(window)
        await window.handle.close()
        logger.info(f"Closed window {window.key.title}")
        return True

    async def focus_window(self, key: str | WindowKey) -> bool:
        window = self._windows.get(window_key(key))
        if window is None:
            return False
        await window.page.bring_to_front()
        return True

    async def logout_window(self, key: str | WindowKey) -> bool:
        """Clear all storage and cache of a window's partition.

        The window is reopened on its start page if it was open.
        """
        key = window_key(key)
        async with self._window_lock(key):
            was_open = await self._close(key)
            path = self.partition_dir(key)
            if path.exists():
                await asyncio.to_thread(shutil.rmtree, path)
            logger.info(f"Cleared partition {key.partition}")
            if was_open:
                await self._open(key)
        return True

    def get_service(self, page: Any) -> str | None:
        """Service id of the window a page belongs to."""
        return self._page_services.get(page)

    async def get_credential(self, service_id: str) -> dict[str, str] | None:
        try:
            creds = await asyncio.to_thread(self.credential_store.get, service_id)
        except Exception as e:
            logger.warning(f"Could not read credentials for {service_id}: {type(e).__name__}")
            return None
        return creds.to_mapping() if creds is not None else None

    async def set_credential(self, service_id: str, identity: str, secret: str) -> bool:
        if not identity or not secret:
            return False
        try:
            await asyncio.to_thread(
                self.credential_store.set,
                service_id,
                Credentials(identity=identity, secret=secret),
            )
        except Exception as e:
            logger.warning(f"Could not store credentials for {service_id}: {type(e).__name__}")
            return False
        return True

    def _forget(self, window: DesktopWindow) -> None:
        if self._windows.get(window.key) is window:
            del self._windows[window.key]
        self._page_services.pop(window.page, None)

    def _on_page_closed(self, window: DesktopWindow) -> None:
        """The user closed a window: forget it and release its context."""
        if self._windows.get(window.key) is not window:
            return
        self._forget(window)
        task = asyncio.get_running_loop().create_task(self._teardown(window))
        self._teardowns[window.key] = task
        self._track(task)
        task.add_done_callback(lambda t: self._drop_teardown(window.key, t))

    def _drop_teardown(self, key: WindowKey, task: asyncio.Task) -> None:
        if self._teardowns.get(key) is task:
            del self._teardowns[key]

    async def _teardown(self, window: DesktopWindow) -> None:
        try:
            await window.handle.close()
        except Exception as e:
            logger.warning(f"Error closing context of {window.key.value}: {e}")
        else:
            logger.info(f"Window {window.key.title} closed by user")

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _schedule_autofill(self, window: DesktopWindow) -> None:
        if self._windows.get(window.key) is not window:
            return
        self._track(asyncio.get_running_loop().create_task(self._autofill(window)))

    async def _autofill(self, window: DesktopWindow) -> bool:
        """Sign a window in if it shows a login form and credentials are stored."""
        service = self.get_service(window.page)
        if not service or window.autofill_attempts >= MAX_AUTOFILL_ATTEMPTS:
            return False
        credentials = Credentials.from_mapping(await self.get_credential(service))
        if credentials is None:
            return False
        try:
            form = await self.autofill.detect(window.page)
            if form is None or not form.is_complete:
                return False
            window.autofill_attempts += 1
            await self.autofill.locate_and_fill(window.page, credentials, form=form)
            method = await self.autofill.submit(window.page, form)
        except Exception as e:
            logger.debug(f"Auto-login skipped for {window.key.value}: {e}")
            return False
        logger.info(f"Auto-login submitted for {window.key.value} via {method.value}")
        return True

    async def wait_for_autofill(self) -> None:
        """Wait for pending auto-login attempts and window teardowns."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def wait_closed(self, poll_interval: float = 0.5) -> None:
        """Block until every window has been closed."""
        while self._windows:
            await asyncio.sleep(poll_interval)

    async def close_all(self) -> None:
        for key in list(self._windows):
            try:
                await self.close_window(key)
            except Exception as e:
                logger.warning(f"Error closing window {key.value}: {e}")
        await self.wait_for_autofill()
        await self.engine.shutdown()
