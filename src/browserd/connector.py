"""Remote provider connector.

Decides how a session gets its browser and knows how to let go of it again.
Resolution order, first match wins:

1. ``cdp_port`` given -> attach to an already running browser over CDP.
2. Browserbase credentials in the environment -> provision a cloud session.
3. Browser Use selected (flag or ``AGENT_BROWSER_PROVIDER``) -> provision there.
4. Otherwise launch a local browser (persistent profile when extensions are
   requested).

Nothing returned from :meth:`ProviderConnector.establish` has been committed
to the session yet; the caller registers contexts and pages only after
every validation step here has passed.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from browserd.cloud import BrowserbaseClient, BrowserUseClient, CloudClient
from browserd.config import DaemonSettings, LaunchConfig
from browserd.errors import ConfigurationError, ProviderConnectionError, best_effort
from browserd.session import get_extension_profile_dir

logger = logging.getLogger("browserd.connector")

BROWSER_USE_PROVIDER = "browseruse"


class ConnectionOrigin(str, enum.Enum):
    LOCAL = "local"
    ATTACHED = "attached"
    BROWSERBASE = "browserbase"
    BROWSER_USE = "browser_use"


@dataclass
class ConnectionHandle:
    """A live browser connection tagged with how it was obtained."""

    origin: ConnectionOrigin
    browser: Any | None
    contexts: list[Any]
    pages: list[Any]
    # Contexts whose server-side page creations must be picked up.
    tracked_contexts: list[Any] = field(default_factory=list)
    cdp_port: int | None = None
    cloud: CloudClient | None = None
    remote_session_id: str | None = None
    persistent: bool = False

    def is_connected(self) -> bool:
        if self.browser is None:
            return self.persistent
        return bool(self.browser.is_connected())


class ProviderConnector:
    def __init__(
        self,
        playwright: Any,
        settings: DaemonSettings,
        session_name: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.playwright = playwright
        self.settings = settings
        self.session_name = session_name
        self._transport = transport

    async def establish(self, launch: LaunchConfig) -> ConnectionHandle:
        if launch.extensions and launch.cdp_port:
            raise ConfigurationError("Extensions cannot be used with CDP connection")

        if launch.cdp_port:
            return await self._attach(launch.cdp_port)

        handle = await self._connect_browserbase()
        if handle is not None:
            return handle

        provider = launch.provider or self.settings.provider
        if provider == BROWSER_USE_PROVIDER:
            return await self._connect_browser_use()

        return await self._launch_local(launch)

    # -- Attach over CDP -----------------------------------------------------

    async def _attach(self, port: int) -> ConnectionHandle:
        endpoint = f"http://localhost:{port}"
        try:
            browser = await self.playwright.chromium.connect_over_cdp(
                endpoint, timeout=self.settings.timeouts.attach
            )
        except Exception as exc:
            raise ProviderConnectionError(
                f"Failed to connect via CDP on port {port}. "
                f"Make sure the app is running with --remote-debugging-port={port}"
            ) from exc

        try:
            contexts = list(browser.contexts)
            if not contexts:
                raise ProviderConnectionError(
                    "No browser context found. Make sure the app has an open window."
                )
            # Pages with an empty URL hang later operations; skip them.
            pages = [page for context in contexts for page in context.pages if page.url]
            if not pages:
                raise ProviderConnectionError(
                    "No page found. Make sure the app has loaded content."
                )
        except Exception:
            await best_effort(browser.close(), "disconnect from CDP browser")
            raise

        logger.info(f"Attached to CDP browser on port {port} ({len(pages)} pages)")
        return ConnectionHandle(
            origin=ConnectionOrigin.ATTACHED,
            browser=browser,
            contexts=contexts,
            pages=pages,
            tracked_contexts=contexts,
            cdp_port=port,
        )

    # -- Cloud providers -----------------------------------------------------

    async def _connect_browserbase(self) -> ConnectionHandle | None:
        settings = self.settings
        if not settings.has_browserbase_credentials:
            return None
        client = BrowserbaseClient(
            settings.browserbase_api_key,
            settings.browserbase_project_id,
            base_url=settings.browserbase_api_url,
            transport=self._transport,
        )
        return await self._provision(
            client,
            ConnectionOrigin.BROWSERBASE,
            timeout=settings.timeouts.browserbase,
            create_missing_context=False,
            track_new_pages=False,
        )

    async def _connect_browser_use(self) -> ConnectionHandle:
        settings = self.settings
        if not settings.browser_use_api_key:
            raise ConfigurationError(
                "BROWSER_USE_API_KEY is required when using browseruse as a provider"
            )
        client = BrowserUseClient(
            settings.browser_use_api_key,
            base_url=settings.browser_use_api_url,
            transport=self._transport,
        )
        return await self._provision(
            client,
            ConnectionOrigin.BROWSER_USE,
            timeout=settings.timeouts.browser_use,
            create_missing_context=True,
            track_new_pages=True,
        )

    async def _provision(
        self,
        client: CloudClient,
        origin: ConnectionOrigin,
        *,
        timeout: int,
        create_missing_context: bool,
        track_new_pages: bool,
    ) -> ConnectionHandle:
        """Create a remote session, attach to it, and validate it.

        Any failure after the create call deletes the remote session again
        before the error propagates.
        """
        session = await client.create_session()
        browser = None
        try:
            try:
                browser = await self.playwright.chromium.connect_over_cdp(
                    session.connect_url
                )
            except Exception as exc:
                raise ProviderConnectionError(
                    f"Failed to connect to {client.name} session via CDP"
                ) from exc

            contexts = list(browser.contexts)
            if contexts:
                context = contexts[0]
            elif create_missing_context:
                context = await browser.new_context()
            else:
                raise ProviderConnectionError(
                    f"No browser context found in {client.name} session"
                )
            page = context.pages[0] if context.pages else await context.new_page()
            context.set_default_timeout(timeout)
        except Exception:
            if browser is not None:
                await best_effort(browser.close(), f"disconnect from {client.name}")
            await best_effort(
                client.close_session(session.id),
                f"close {client.name} session {session.id} during cleanup",
            )
            raise

        logger.info(f"Connected to {client.name} session {session.id}")
        return ConnectionHandle(
            origin=origin,
            browser=browser,
            contexts=[context],
            pages=[page],
            tracked_contexts=[context] if track_new_pages else [],
            cloud=client,
            remote_session_id=session.id,
        )

    # -- Local launch --------------------------------------------------------

    async def _launch_local(self, launch: LaunchConfig) -> ConnectionHandle:
        has_extensions = bool(launch.extensions)
        if has_extensions and launch.browser_name != "chromium":
            raise ConfigurationError("Extensions are only supported in Chromium")

        browser_type = getattr(self.playwright, launch.browser_name)
        context_opts = launch.context_options()
        browser = None
        try:
            if has_extensions:
                ext_paths = ",".join(launch.extensions)
                context = await browser_type.launch_persistent_context(
                    str(get_extension_profile_dir(self.session_name)),
                    headless=False,
                    executable_path=launch.executable_path,
                    args=[
                        f"--disable-extensions-except={ext_paths}",
                        f"--load-extension={ext_paths}",
                    ],
                    **context_opts,
                )
            else:
                browser = await browser_type.launch(
                    headless=launch.headless,
                    executable_path=launch.executable_path,
                )
                context = await browser.new_context(**context_opts)
            context.set_default_timeout(self.settings.timeouts.default)
            page = context.pages[0] if context.pages else await context.new_page()
        except Exception as exc:
            if browser is not None:
                await best_effort(browser.close(), "close partially launched browser")
            raise ProviderConnectionError(
                f"Failed to launch {launch.browser_name}: {exc}"
            ) from exc

        logger.info(
            f"Launched local {launch.browser_name} "
            f"({'persistent, extensions' if has_extensions else 'ephemeral'})"
        )
        return ConnectionHandle(
            origin=ConnectionOrigin.LOCAL,
            browser=browser,
            contexts=[context],
            pages=[page],
            persistent=has_extensions,
        )


# ---------------------------------------------------------------------------
# Teardown, one implementation per origin
# ---------------------------------------------------------------------------


async def _teardown_local(handle: ConnectionHandle, pages: list, contexts: list) -> None:
    for page in pages:
        await best_effort(page.close(), "close page")
    for context in contexts:
        await best_effort(context.close(), "close context")
    if handle.browser is not None:
        await best_effort(handle.browser.close(), "close browser")


async def _teardown_attached(
    handle: ConnectionHandle, pages: list, contexts: list
) -> None:
    # Pages and contexts belong to the external app: disconnect only.
    if handle.browser is not None:
        await best_effort(handle.browser.close(), "disconnect from CDP browser")


async def _teardown_cloud(handle: ConnectionHandle, pages: list, contexts: list) -> None:
    cloud = handle.cloud
    if cloud is not None and handle.remote_session_id:
        await best_effort(
            cloud.close_session(handle.remote_session_id),
            f"close {cloud.name} session {handle.remote_session_id}",
        )
    if handle.browser is not None:
        await best_effort(handle.browser.close(), "disconnect from cloud browser")


_TEARDOWNS: dict[
    ConnectionOrigin, Callable[[ConnectionHandle, list, list], Awaitable[None]]
] = {
    ConnectionOrigin.LOCAL: _teardown_local,
    ConnectionOrigin.ATTACHED: _teardown_attached,
    ConnectionOrigin.BROWSERBASE: _teardown_cloud,
    ConnectionOrigin.BROWSER_USE: _teardown_cloud,
}


async def teardown(handle: ConnectionHandle, pages: list, contexts: list) -> None:
    """Release *handle* according to how it was established.

    *pages* and *contexts* are the session's current lists, which may have
    grown since the handle was created (new tabs, windows).
    """
    logger.info(f"Tearing down {handle.origin.value} connection")
    await _TEARDOWNS[handle.origin](handle, pages, contexts)
