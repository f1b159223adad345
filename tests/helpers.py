"""
In-process stand-ins for Playwright pages, contexts and the launcher.

They implement only the async surface the automation code touches, record
every call, and let a test decide how the "remote" page behaves: which
selectors match, what happens when the submit button is clicked, whether
the post-submit navigation settles, and whether screenshots succeed.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

IDENTITY_SELECTOR = 'input[type="email"]'
SECRET_SELECTOR = 'input[type="password"]'
SUBMIT_SELECTOR = 'button[type="submit"]'

FAKE_JPEG = b"\xff\xd8\xff\xe0fake-jpeg"
FAKE_PNG = b"\x89PNGfake-png"


class FakeElement:
    def __init__(self, name="", visible=True, on_click=None, on_press=None, form_submit=True):
        self.name = name
        self.visible = visible
        self.on_click = on_click
        self.on_press = on_press
        self.form_submit = form_submit
        self.value = ""
        self.clicks = []
        self.pressed = []
        self.events = []
        self.evaluated = []
        self.click_error = None
        self.press_error = None

    async def is_visible(self):
        return self.visible

    async def click(self, **kwargs):
        self.clicks.append(kwargs)
        if self.click_error is not None:
            raise self.click_error
        if self.on_click and not kwargs.get("click_count"):
            self.on_click()

    async def fill(self, value):
        self.value = value

    async def dispatch_event(self, name):
        self.events.append(name)

    async def press(self, key):
        self.pressed.append(key)
        if self.press_error is not None:
            raise self.press_error
        if self.on_press:
            self.on_press()

    async def evaluate(self, script):
        self.evaluated.append(script)
        return self.form_submit


class FakePage:
    def __init__(self, elements=None, url="about:blank"):
        self.elements = elements or {}
        self.url = url
        self.goto_calls = []
        self.goto_error = None
        self.load_states = []
        self.screenshot_calls = []
        self.screenshot_error = None
        self.navigation_error = None
        self.navigation_kwargs = []
        self.closed = False
        self.front_count = 0
        self.handlers = {}

    async def goto(self, url, **kwargs):
        self.goto_calls.append((url, kwargs))
        if self.goto_error is not None:
            raise self.goto_error
        self.url = url
        self.emit("load")

    async def wait_for_load_state(self, state="load", **kwargs):
        self.load_states.append((state, kwargs))

    async def query_selector_all(self, selector):
        return list(self.elements.get(selector, []))

    async def screenshot(self, **kwargs):
        self.screenshot_calls.append(kwargs)
        if self.screenshot_error is not None:
            raise self.screenshot_error
        return FAKE_PNG if kwargs.get("type") == "png" else FAKE_JPEG

    @asynccontextmanager
    async def expect_navigation(self, **kwargs):
        self.navigation_kwargs.append(kwargs)
        yield
        if self.navigation_error is not None:
            raise self.navigation_error

    async def close(self):
        if not self.closed:
            self.closed = True
            self.emit("close")

    def is_closed(self):
        return self.closed

    async def bring_to_front(self):
        self.front_count += 1

    def on(self, event, callback):
        self.handlers.setdefault(event, []).append(callback)

    def emit(self, event):
        for callback in list(self.handlers.get(event, [])):
            callback(self)

    @property
    def has_login_form(self):
        return bool(self.elements.get(IDENTITY_SELECTOR) or self.elements.get(SECRET_SELECTOR))


def make_login_page(accept=True, settle=True, with_submit=True, url="about:blank"):
    """A page showing an email/password form.

    Args:
        accept: Submitting clears the form (correct password)
        settle: The post-submit navigation settles before the timeout
        with_submit: Render a submit button
    """
    page = FakePage(url=url)
    identity = FakeElement("identity")
    secret = FakeElement("secret")

    def sign_in():
        if accept:
            page.elements = {}

    page.elements = {
        IDENTITY_SELECTOR: [identity],
        SECRET_SELECTOR: [secret],
    }
    if with_submit:
        page.elements[SUBMIT_SELECTOR] = [FakeElement("submit", on_click=sign_in)]
    else:
        secret.on_press = sign_in
    if not settle:
        page.navigation_error = PlaywrightTimeoutError("Timeout 10000ms exceeded.")
    return page


def make_blank_page(url="about:blank"):
    """A page with no login form (already signed in)."""
    return FakePage(url=url)


def signed_in_after_first(index):
    """Page factory: the first page shows a login form, later ones do not."""
    return make_login_page() if index == 0 else make_blank_page()


class FakeHandle:
    def __init__(self, partition, page_factory):
        self.partition = partition
        self.page_factory = page_factory
        self.pages = []
        self.close_calls = 0

    async def new_page(self):
        page = self.page_factory(len(self.pages))
        self.pages.append(page)
        return page

    async def main_page(self):
        if self.pages:
            return self.pages[0]
        return await self.new_page()

    async def close(self):
        self.close_calls += 1
        for page in self.pages:
            await page.close()

    @property
    def closed(self):
        return self.close_calls > 0


class FakeLauncher:
    def __init__(self, page_factory=None, fail=False, delay=0.0):
        self.page_factory = page_factory or (lambda index: make_login_page())
        self.fail = fail
        self.delay = delay
        self.launches = []
        self.persistent_launches = []
        self.handles = []
        self.shutdown_calls = 0

    async def launch(self, tenant_key, partition):
        self.launches.append((tenant_key, partition))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("Executable doesn't exist at /ms-playwright/chromium")
        handle = FakeHandle(partition, self.page_factory)
        self.handles.append(handle)
        return handle

    async def launch_persistent(self, user_data_dir, partition, headless=None):
        if self.delay:
            await asyncio.sleep(self.delay)
        Path(user_data_dir).mkdir(parents=True, exist_ok=True)
        self.persistent_launches.append((str(user_data_dir), partition, headless))
        handle = FakeHandle(partition, self.page_factory)
        self.handles.append(handle)
        return handle

    async def shutdown(self):
        self.shutdown_calls += 1


class ManualClock:
    def __init__(self, start=None):
        self.now = start or datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
