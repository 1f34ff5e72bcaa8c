"""The browser session aggregate.

``BrowserSession`` is the one object that owns a session's mutable state:
the provider connection, the page registry, the control channel, the
recorder and the current reference table.  Components get a reference to
it (or to the piece they need) instead of reaching for globals.
"""

from __future__ import annotations

import logging
from typing import Any, Literal
from urllib.parse import urlsplit

import httpx
from patchright.async_api import async_playwright

from browserd.channel import ControlChannel
from browserd.config import DaemonSettings, LaunchConfig
from browserd.connector import ConnectionHandle, ProviderConnector, teardown
from browserd.errors import ConfigurationError, best_effort
from browserd.recording import Recorder
from browserd.refs import RefTable, build_locator, parse_ref
from browserd.registry import SessionRegistry
from browserd.snapshot import Snapshot, take_snapshot

logger = logging.getLogger("browserd.browser")


def _origin_pattern(origin: str) -> str:
    """``api.example.com`` or ``https://api.example.com/x`` -> ``**://api.example.com/**``."""
    parsed = urlsplit(origin if origin.startswith("http") else f"https://{origin}")
    host = parsed.netloc or origin
    return f"**://{host}/**"


class BrowserSession:
    """Holds all state for a single daemon-managed browser session."""

    def __init__(
        self,
        session_name: str,
        settings: DaemonSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.session_name: str = session_name
        self.settings: DaemonSettings = settings
        self._transport = transport

        self.playwright: Any = None
        self.connection: ConnectionHandle | None = None

        self.channel = ControlChannel(lambda: self.registry.get_page())
        self.registry = SessionRegistry(self.channel)
        self.recorder = Recorder(self)

        # Element reference tracking
        self.refs: RefTable = RefTable()
        self.last_snapshot: str = ""

        # url pattern -> (page, handler)
        self.routes: dict[str, tuple[Any, Any]] = {}
        self.scoped_header_routes: dict[str, tuple[Any, Any]] = {}
        self._dialog_handler: tuple[Any, Any] | None = None

    # -- Properties ----------------------------------------------------------

    @property
    def browser(self) -> Any | None:
        return self.connection.browser if self.connection is not None else None

    @property
    def is_launched(self) -> bool:
        return self.connection is not None

    # -- Browser lifecycle ---------------------------------------------------

    async def launch(self, launch: LaunchConfig) -> None:
        """Connect a browser; a no-op if already connected to the same target."""
        if launch.extensions and launch.cdp_port:
            raise ConfigurationError("Extensions cannot be used with CDP connection")

        if self.connection is not None:
            if not self._needs_relaunch(launch.cdp_port):
                return
            logger.info("Connection target changed or went stale, relaunching")
            await self.close()

        if self.playwright is None:
            self.playwright = await async_playwright().start()

        connector = ProviderConnector(
            self.playwright, self.settings, self.session_name, transport=self._transport
        )
        handle = await connector.establish(launch)
        self._commit(handle)

    def _needs_relaunch(self, cdp_port: int | None) -> bool:
        handle = self.connection
        if cdp_port is None:
            return handle.cdp_port is not None
        if not handle.is_connected() or handle.cdp_port != cdp_port:
            return True
        contexts = handle.browser.contexts
        return not any(context.pages for context in contexts)

    def _commit(self, handle: ConnectionHandle) -> None:
        self.connection = handle
        for context in handle.contexts:
            self.registry.add_context(
                context, track_new_pages=context in handle.tracked_contexts
            )
        for page in handle.pages:
            self.registry.add_page(page)
        self.registry.active_page_index = 0

    async def close(self) -> None:
        """Tear everything down, whatever kind of connection this is."""
        if self.recorder.is_recording:
            await self.recorder.stop()
        await self.channel.invalidate()

        if self.connection is not None:
            await teardown(
                self.connection, list(self.registry.pages), list(self.registry.contexts)
            )

        self.registry.reset()
        self.connection = None
        self.refs = RefTable()
        self.last_snapshot = ""
        self.routes.clear()
        self.scoped_header_routes.clear()
        self._dialog_handler = None

        if self.playwright is not None:
            await best_effort(self.playwright.stop(), "stop playwright")
            self.playwright = None

    # -- Snapshot & refs -----------------------------------------------------

    async def snapshot(self) -> Snapshot:
        """Snapshot the active page and replace the reference table."""
        snap = await take_snapshot(self.registry.get_page())
        self.refs = snap.refs
        self.last_snapshot = snap.tree
        return snap

    def is_ref(self, token: str) -> bool:
        return parse_ref(token) is not None

    def get_locator_from_ref(self, token: str) -> Any | None:
        descriptor = self.refs.resolve(token)
        if descriptor is None:
            return None
        return build_locator(self.registry.get_page(), descriptor)

    def get_locator(self, selector_or_ref: str) -> Any:
        """Return a locator for a ref token or, failing that, a selector."""
        locator = self.get_locator_from_ref(selector_or_ref)
        if locator is not None:
            return locator
        if self.is_ref(selector_or_ref):
            raise ValueError(
                f"Element ref '{selector_or_ref}' not found. Take a new snapshot "
                f"to get current refs."
            )
        return self.registry.get_page().locator(selector_or_ref)

    # -- Navigation ----------------------------------------------------------

    async def navigate(
        self,
        url: str,
        wait_until: Literal["load", "domcontentloaded", "networkidle"] = "load",
        headers: dict[str, str] | None = None,
    ) -> dict[str, str]:
        page = self.registry.get_page()
        if headers:
            await self.set_scoped_headers(url, headers)
        await page.goto(url, wait_until=wait_until)
        return {"url": page.url, "title": await page.title()}

    async def set_viewport(self, width: int, height: int) -> None:
        await self.registry.get_page().set_viewport_size(
            {"width": int(width), "height": int(height)}
        )

    # -- Profile-wide operations (default context) ---------------------------

    def _default_context(self) -> Any | None:
        return self.registry.contexts[0] if self.registry.contexts else None

    async def set_geolocation(
        self, latitude: float, longitude: float, accuracy: float | None = None
    ) -> None:
        context = self._default_context()
        if context is not None:
            geolocation: dict[str, float] = {"latitude": latitude, "longitude": longitude}
            if accuracy is not None:
                geolocation["accuracy"] = accuracy
            await context.set_geolocation(geolocation)

    async def set_permissions(self, permissions: list[str], grant: bool) -> None:
        context = self._default_context()
        if context is not None:
            if grant:
                await context.grant_permissions(permissions)
            else:
                await context.clear_permissions()

    async def set_offline(self, offline: bool) -> None:
        context = self._default_context()
        if context is not None:
            await context.set_offline(offline)

    async def set_extra_headers(self, headers: dict[str, str]) -> None:
        context = self._default_context()
        if context is not None:
            await context.set_extra_http_headers(headers)

    async def start_tracing(self, screenshots: bool = True, snapshots: bool = True) -> None:
        context = self._default_context()
        if context is not None:
            await context.tracing.start(screenshots=screenshots, snapshots=snapshots)

    async def stop_tracing(self, path: str) -> None:
        context = self._default_context()
        if context is not None:
            await context.tracing.stop(path=path)

    async def save_storage_state(self, path: str) -> None:
        context = self._default_context()
        if context is not None:
            await context.storage_state(path=path)

    # -- Dialogs -------------------------------------------------------------

    def set_dialog_handler(
        self, response: Literal["accept", "dismiss"], prompt_text: str | None = None
    ) -> None:
        """Auto-answer dialogs on the active page, replacing any previous handler."""
        page = self.registry.get_page()
        self.clear_dialog_handler()

        async def _on_dialog(dialog: Any) -> None:
            if response == "accept":
                if prompt_text is not None:
                    await dialog.accept(prompt_text)
                else:
                    await dialog.accept()
            else:
                await dialog.dismiss()

        page.on("dialog", _on_dialog)
        self._dialog_handler = (page, _on_dialog)

    def clear_dialog_handler(self) -> None:
        if self._dialog_handler is not None:
            page, handler = self._dialog_handler
            page.remove_listener("dialog", handler)
            self._dialog_handler = None

    # -- Routes --------------------------------------------------------------

    async def add_route(
        self,
        url: str,
        abort: bool = False,
        response: dict[str, Any] | None = None,
    ) -> None:
        """Intercept requests to *url*: abort them, fulfil them, or let them through."""
        page = self.registry.get_page()

        async def _handler(route: Any) -> None:
            if abort:
                await route.abort()
            elif response is not None:
                await route.fulfill(
                    status=response.get("status", 200),
                    body=response.get("body", ""),
                    content_type=response.get("content_type", "text/plain"),
                    headers=response.get("headers"),
                )
            else:
                await route.continue_()

        await self._replace_route(self.routes, url, page, _handler)

    async def remove_route(self, url: str | None = None) -> None:
        await self._drop_routes(self.routes, url)

    async def set_scoped_headers(self, origin: str, headers: dict[str, str]) -> None:
        """Send *headers* only with requests to *origin*'s host."""
        page = self.registry.get_page()

        async def _handler(route: Any) -> None:
            await route.continue_(headers={**route.request.headers, **headers})

        await self._replace_route(
            self.scoped_header_routes, _origin_pattern(origin), page, _handler
        )

    async def clear_scoped_headers(self, origin: str | None = None) -> None:
        pattern = _origin_pattern(origin) if origin is not None else None
        await self._drop_routes(self.scoped_header_routes, pattern)

    async def _replace_route(
        self, table: dict[str, tuple[Any, Any]], pattern: str, page: Any, handler: Any
    ) -> None:
        existing = table.pop(pattern, None)
        if existing is not None:
            old_page, old_handler = existing
            await old_page.unroute(pattern, old_handler)
        await page.route(pattern, handler)
        table[pattern] = (page, handler)

    async def _drop_routes(
        self, table: dict[str, tuple[Any, Any]], pattern: str | None
    ) -> None:
        patterns = [pattern] if pattern is not None else list(table)
        for key in patterns:
            entry = table.pop(key, None)
            if entry is not None:
                page, handler = entry
                await page.unroute(key, handler)

    # -- Devices -------------------------------------------------------------

    def list_devices(self) -> list[str]:
        if self.playwright is None:
            return []
        return sorted(self.playwright.devices)

    def get_device(self, name: str) -> dict[str, Any] | None:
        if self.playwright is None:
            return None
        return self.playwright.devices.get(name)
