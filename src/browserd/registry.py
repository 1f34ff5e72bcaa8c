"""Session registry: contexts, pages, the active-page pointer and event logs.

Pages are addressed by their position in ``pages``.  Positions compact when
a page goes away, and the active index is re-clamped every time that
happens, so whenever at least one page exists ``active_page_index`` points
at a valid one.

Every registered page gets console, pageerror and close handlers at
registration time, kept in a :class:`PageSubscriptions` so they can be
removed before the page is disposed of.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from browserd.errors import SessionStateError

if TYPE_CHECKING:
    from browserd.channel import ControlChannel

logger = logging.getLogger("browserd.registry")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ConsoleEntry:
    type: str
    text: str
    timestamp: int


@dataclass
class PageErrorEntry:
    message: str
    timestamp: int


@dataclass
class TrackedRequest:
    url: str
    method: str
    headers: dict[str, str]
    timestamp: int
    resource_type: str


class PageSubscriptions:
    """Event handlers registered on one page, removable as a group."""

    def __init__(self, page: Any) -> None:
        self.page = page
        self._handlers: list[tuple[str, Any]] = []

    def on(self, event: str, handler: Any) -> None:
        self.page.on(event, handler)
        self._handlers.append((event, handler))

    def has(self, event: str) -> bool:
        return any(name == event for name, _ in self._handlers)

    def remove_all(self) -> None:
        for event, handler in self._handlers:
            self.page.remove_listener(event, handler)
        self._handlers.clear()


class SessionRegistry:
    def __init__(self, channel: ControlChannel) -> None:
        self.channel = channel

        self.contexts: list[Any] = []
        self.pages: list[Any] = []
        self.active_page_index: int = 0
        self.active_frame: Any | None = None

        # Logs, appended to by page event handlers.
        self.console_messages: list[ConsoleEntry] = []
        self.page_errors: list[PageErrorEntry] = []
        self.requests: list[TrackedRequest] = []
        self.request_tracking: bool = False

        self._subscriptions: dict[Any, PageSubscriptions] = {}
        self._context_handlers: list[tuple[Any, Any]] = []
        self._background_tasks: set[asyncio.Future[Any]] = set()

    # -- Lookup --------------------------------------------------------------

    def get_page(self) -> Any:
        """Return the active page, raising if the browser is not launched."""
        if not self.pages:
            raise SessionStateError("Browser not launched. Call launch first.")
        return self.pages[self.active_page_index]

    def get_frame(self) -> Any:
        """Return the active frame, or the active page's main frame."""
        if self.active_frame is not None:
            return self.active_frame
        return self.get_page().main_frame

    # -- Registration --------------------------------------------------------

    def add_context(self, context: Any, track_new_pages: bool = False) -> None:
        """Register *context*; optionally pick up pages it opens on its own."""
        if context not in self.contexts:
            self.contexts.append(context)
        if track_new_pages:

            def _on_page(page: Any) -> None:
                self.add_page(page)

            context.on("page", _on_page)
            self._context_handlers.append((context, _on_page))

    def add_page(self, page: Any, activate: bool = False) -> int:
        """Register *page* (once) and return its index."""
        if page not in self.pages:
            self.pages.append(page)
            self._subscribe(page)
        index = self.pages.index(page)
        if activate:
            self.active_page_index = index
            self.active_frame = None
        return index

    def remove_page(self, page: Any) -> bool:
        """Unsubscribe and drop *page* without closing it or re-clamping."""
        self._unsubscribe(page)
        if page in self.pages:
            self.pages.remove(page)
            return True
        return False

    def remove_context(self, context: Any) -> bool:
        for owner, handler in list(self._context_handlers):
            if owner is context:
                context.remove_listener("page", handler)
                self._context_handlers.remove((owner, handler))
        if context in self.contexts:
            self.contexts.remove(context)
            return True
        return False

    def clamp_active(self) -> None:
        if self.active_page_index >= len(self.pages):
            self.active_page_index = max(0, len(self.pages) - 1)
            self.active_frame = None

    def reset(self) -> None:
        """Forget every context and page.  Logs are kept."""
        for page in list(self._subscriptions):
            self._unsubscribe(page)
        for context, handler in self._context_handlers:
            context.remove_listener("page", handler)
        self._context_handlers.clear()
        self.contexts = []
        self.pages = []
        self.active_page_index = 0
        self.active_frame = None

    # -- Page event subscriptions --------------------------------------------

    def _subscribe(self, page: Any) -> None:
        subs = PageSubscriptions(page)

        def _on_console(msg: Any) -> None:
            self.console_messages.append(
                ConsoleEntry(type=msg.type, text=msg.text, timestamp=_now_ms())
            )

        def _on_page_error(error: Any) -> None:
            message = getattr(error, "message", None) or str(error)
            self.page_errors.append(PageErrorEntry(message=message, timestamp=_now_ms()))

        def _on_close(*_: Any) -> None:
            self._on_page_closed(page)

        subs.on("console", _on_console)
        subs.on("pageerror", _on_page_error)
        subs.on("close", _on_close)
        if self.request_tracking:
            subs.on("request", self._on_request)
        self._subscriptions[page] = subs

    def _unsubscribe(self, page: Any) -> None:
        subs = self._subscriptions.pop(page, None)
        if subs is not None:
            subs.remove_all()

    def _on_page_closed(self, page: Any) -> None:
        """Drop a page that was closed from outside by the user or the site."""
        if page not in self.pages:
            return
        removed = self.pages.index(page)
        was_active = removed == self.active_page_index
        self.remove_page(page)
        logger.debug(f"Page closed externally, {len(self.pages)} remaining")

        if removed < self.active_page_index:
            self.active_page_index -= 1
        elif was_active:
            self.active_frame = None
            self.clamp_active()

        bound = self.channel.bound_page
        current = self.pages[self.active_page_index] if self.pages else None
        if bound is not None and bound is not current:
            self._spawn(self.channel.invalidate())

    def _spawn(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def _on_request(self, request: Any) -> None:
        self.requests.append(
            TrackedRequest(
                url=request.url,
                method=request.method,
                headers=dict(request.headers),
                timestamp=_now_ms(),
                resource_type=request.resource_type,
            )
        )

    # -- Tabs & windows ------------------------------------------------------

    async def new_tab(self) -> dict[str, int]:
        """Open a page in the default context and make it active."""
        if not self.contexts:
            raise SessionStateError("Browser not launched")
        await self.channel.invalidate()
        page = await self.contexts[0].new_page()
        index = self.add_page(page, activate=True)
        return {"index": index, "total": len(self.pages)}

    async def new_window(
        self, browser: Any, viewport: dict[str, int], default_timeout: int
    ) -> dict[str, int]:
        """Open a fresh context with one page and make that page active."""
        if browser is None:
            raise SessionStateError("Browser not launched")
        context = await browser.new_context(viewport=viewport)
        context.set_default_timeout(default_timeout)
        self.add_context(context)
        await self.channel.invalidate()
        page = await context.new_page()
        index = self.add_page(page, activate=True)
        return {"index": index, "total": len(self.pages)}

    async def switch_to(self, index: int) -> dict[str, Any]:
        if index < 0 or index >= len(self.pages):
            raise SessionStateError(
                f"Invalid tab index: {index}. Available: 0-{len(self.pages) - 1}"
            )
        if index != self.active_page_index:
            await self.channel.invalidate()
            self.active_frame = None
        self.active_page_index = index
        page = self.pages[index]
        return {"index": index, "url": page.url, "title": await _title(page)}

    async def close_tab(self, index: int | None = None) -> dict[str, int]:
        target = self.active_page_index if index is None else index
        if target < 0 or target >= len(self.pages):
            raise SessionStateError(f"Invalid tab index: {target}")
        if len(self.pages) == 1:
            raise SessionStateError(
                'Cannot close the last tab. Use "close" to close the browser.'
            )

        if target == self.active_page_index:
            await self.channel.invalidate()
            self.active_frame = None

        page = self.pages[target]
        self.remove_page(page)
        if self.active_page_index >= len(self.pages):
            self.active_page_index = len(self.pages) - 1
        elif self.active_page_index > target:
            self.active_page_index -= 1

        await page.close()
        return {"closed": target, "remaining": len(self.pages)}

    async def list_tabs(self) -> list[dict[str, Any]]:
        return [
            {
                "index": i,
                "url": page.url,
                "title": await _title(page),
                "active": i == self.active_page_index,
            }
            for i, page in enumerate(self.pages)
        ]

    # -- Frames --------------------------------------------------------------

    async def switch_to_frame(
        self,
        selector: str | None = None,
        name: str | None = None,
        url: str | None = None,
    ) -> None:
        page = self.get_page()
        if selector:
            element = await page.query_selector(selector)
            if element is None:
                raise ValueError(f"Frame not found: {selector}")
            frame = await element.content_frame()
            if frame is None:
                raise ValueError(f"Element is not a frame: {selector}")
        elif name:
            frame = page.frame(name=name)
            if frame is None:
                raise ValueError(f"Frame not found with name: {name}")
        elif url:
            frame = page.frame(url=url)
            if frame is None:
                raise ValueError(f"Frame not found with URL: {url}")
        else:
            raise ValueError("One of selector, name or url is required")
        self.active_frame = frame

    def switch_to_main_frame(self) -> None:
        self.active_frame = None

    # -- Logs ----------------------------------------------------------------

    def start_request_tracking(self) -> None:
        self.request_tracking = True
        for subs in self._subscriptions.values():
            if not subs.has("request"):
                subs.on("request", self._on_request)

    def get_requests(self, filter: str | None = None) -> list[TrackedRequest]:
        if filter:
            return [r for r in self.requests if filter in r.url]
        return self.requests

    def clear_requests(self) -> None:
        self.requests = []

    def clear_console_messages(self) -> None:
        self.console_messages = []

    def clear_page_errors(self) -> None:
        self.page_errors = []


async def _title(page: Any) -> str:
    try:
        return await page.title()
    except Exception as exc:
        logger.warning(f"Could not read title of {page.url}: {exc}")
        return ""
