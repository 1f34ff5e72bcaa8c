"""Shared fixtures for browserd tests."""

from __future__ import annotations

import inspect
import tempfile
from collections import defaultdict
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from browserd.browser import BrowserSession
from browserd.config import DaemonSettings
from browserd.connector import ConnectionHandle, ConnectionOrigin

_ENV_VARS = (
    "BROWSERBASE_API_KEY",
    "BROWSERBASE_PROJECT_ID",
    "BROWSER_USE_API_KEY",
    "AGENT_BROWSER_SESSION",
    "AGENT_BROWSER_PROVIDER",
    "AGENT_BROWSER_HEADED",
    "AGENT_BROWSER_EXECUTABLE_PATH",
    "AGENT_BROWSER_VIEWPORT",
    "AGENT_BROWSER_EXTENSIONS",
    "AGENT_BROWSER_PROXY",
    "AGENT_BROWSER_PROXY_BYPASS",
)


# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep provider credentials and launch overrides from leaking in."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def temp_root(tmp_path, monkeypatch):
    """Point tempfile.gettempdir() at a per-test directory."""
    root = tmp_path / "tmp"
    root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(root))
    return root


@pytest.fixture
def sessions_dir(tmp_path, monkeypatch):
    """Patch Path.home() so session dirs live under tmp_path."""
    monkeypatch.setattr(Path, "home", lambda: tmp_path)
    return tmp_path / ".agent-browser" / "sessions"


# ---------------------------------------------------------------------------
# Engine stand-ins
# ---------------------------------------------------------------------------


class EventEmitter:
    """Minimal on/remove_listener/emit registry for mocked engine objects."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Any]] = defaultdict(list)

    def on(self, event: str, handler: Any) -> None:
        self._listeners[event].append(handler)

    def remove_listener(self, event: str, handler: Any) -> None:
        self._listeners[event].remove(handler)

    def emit(self, event: str, *args: Any) -> list[Any]:
        return [handler(*args) for handler in list(self._listeners[event])]

    def listener_count(self, event: str) -> int:
        return len(self._listeners[event])


def with_events(mock: MagicMock) -> MagicMock:
    emitter = EventEmitter()
    mock.on = MagicMock(side_effect=emitter.on)
    mock.remove_listener = MagicMock(side_effect=emitter.remove_listener)
    mock.emit = emitter.emit
    mock.listener_count = emitter.listener_count
    return mock


async def fire(mock: MagicMock, event: str, *args: Any) -> None:
    """Emit *event* on *mock* and await any coroutine handlers."""
    for result in mock.emit(event, *args):
        if inspect.isawaitable(result):
            await result


def make_cdp_session() -> MagicMock:
    cdp = with_events(MagicMock())
    cdp.send = AsyncMock(return_value={})
    cdp.detach = AsyncMock()
    return cdp


def make_locator() -> MagicMock:
    locator = MagicMock()
    for name in (
        "click",
        "dblclick",
        "fill",
        "press_sequentially",
        "hover",
        "check",
        "uncheck",
    ):
        setattr(locator, name, AsyncMock())
    locator.select_option = AsyncMock(return_value=["a"])
    locator.nth = MagicMock(return_value=locator)
    return locator


def make_page(url: str = "https://example.com", title: str = "Example") -> MagicMock:
    page = with_events(MagicMock())
    page.url = url
    page.title = AsyncMock(return_value=title)
    page.goto = AsyncMock()
    page.close = AsyncMock()
    page.set_viewport_size = AsyncMock()
    page.route = AsyncMock()
    page.unroute = AsyncMock()
    page.query_selector = AsyncMock(return_value=None)
    page.frame = MagicMock(return_value=None)
    page.video = None
    page.locator = MagicMock(return_value=make_locator())
    page.get_by_role = MagicMock(return_value=make_locator())

    impl = MagicMock()
    impl._channel.send_return_as_dict = AsyncMock(return_value={"full": "- document\n"})
    page._impl_obj = impl
    return page


def make_context(pages: list[MagicMock] | None = None) -> MagicMock:
    context = with_events(MagicMock())
    context.pages = list(pages or [])
    for page in context.pages:
        page.context = context

    async def _new_page() -> MagicMock:
        page = make_page("about:blank", "")
        page.context = context
        context.pages.append(page)
        return page

    context.new_page = AsyncMock(side_effect=_new_page)
    context.new_cdp_session = AsyncMock(side_effect=lambda page: make_cdp_session())
    context.set_default_timeout = MagicMock()
    context.storage_state = AsyncMock(return_value={"cookies": [], "origins": []})
    context.close = AsyncMock()
    context.set_geolocation = AsyncMock()
    context.grant_permissions = AsyncMock()
    context.clear_permissions = AsyncMock()
    context.set_offline = AsyncMock()
    context.set_extra_http_headers = AsyncMock()
    context.tracing = MagicMock()
    context.tracing.start = AsyncMock()
    context.tracing.stop = AsyncMock()
    return context


def make_browser(contexts: list[MagicMock] | None = None) -> MagicMock:
    browser = MagicMock()
    browser.contexts = list(contexts or [])

    async def _new_context(**kwargs: Any) -> MagicMock:
        context = make_context()
        context.options = kwargs
        browser.contexts.append(context)
        return context

    browser.new_context = AsyncMock(side_effect=_new_context)
    browser.is_connected = MagicMock(return_value=True)
    browser.close = AsyncMock()
    return browser


def make_playwright(browser: MagicMock) -> MagicMock:
    playwright = MagicMock()
    for name in ("chromium", "firefox", "webkit"):
        browser_type = getattr(playwright, name)
        browser_type.launch = AsyncMock(return_value=browser)
        browser_type.connect_over_cdp = AsyncMock(return_value=browser)
        browser_type.launch_persistent_context = AsyncMock()
    playwright.devices = {
        "iPhone 13": {"viewport": {"width": 390, "height": 844}, "is_mobile": True},
        "Desktop Chrome": {"viewport": {"width": 1280, "height": 720}},
    }
    playwright.stop = AsyncMock()
    return playwright


@pytest.fixture
def page():
    return make_page()


@pytest.fixture
def context(page):
    return make_context([page])


@pytest.fixture
def browser(context):
    return make_browser([context])


@pytest.fixture
def playwright(browser):
    return make_playwright(browser)


@pytest.fixture
def settings():
    return DaemonSettings()


@pytest.fixture
def browser_session(sessions_dir, settings, playwright, browser, context, page):
    """A BrowserSession with a local connection to mocked engine objects."""
    session = BrowserSession("test-session", settings)
    session.playwright = playwright
    session._commit(
        ConnectionHandle(
            origin=ConnectionOrigin.LOCAL,
            browser=browser,
            contexts=[context],
            pages=[page],
        )
    )
    return session
