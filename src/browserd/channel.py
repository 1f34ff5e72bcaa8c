"""Per-page CDP control channel.

At most one CDP session is alive at a time, bound to whichever page was
active when it was opened.  Anything that changes the active page must call
:meth:`ControlChannel.invalidate` first, otherwise screencast frames and
injected input would keep going to the old page.

Two protocols ride on the channel:

* screencast: ``Page.startScreencast`` / ``Page.screencastFrame`` /
  ``Page.screencastFrameAck`` / ``Page.stopScreencast``
* input injection: ``Input.dispatchMouseEvent``, ``Input.dispatchKeyEvent``
  and ``Input.dispatchTouchEvent``

Input is passed straight through.  No cursor or key state is kept here; the
remote caller owns it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from browserd.errors import SessionStateError, best_effort

logger = logging.getLogger("browserd.channel")

# Modifier bitmask used by every Input.dispatch* command.
MODIFIER_ALT = 1
MODIFIER_CTRL = 2
MODIFIER_META = 4
MODIFIER_SHIFT = 8

_MOUSE_BUTTONS = ("left", "right", "middle")


@dataclass
class ScreencastOptions:
    format: Literal["jpeg", "png"] = "jpeg"
    quality: int = 80
    max_width: int = 1280
    max_height: int = 720
    every_nth_frame: int = 1

    def to_params(self) -> dict[str, Any]:
        return {
            "format": self.format,
            "quality": self.quality,
            "maxWidth": self.max_width,
            "maxHeight": self.max_height,
            "everyNthFrame": self.every_nth_frame,
        }


@dataclass
class ScreencastFrame:
    data: str  # base64 image
    session_id: int
    metadata: dict[str, Any] = field(default_factory=dict)


FrameCallback = Callable[[ScreencastFrame], Any]


class ControlChannel:
    def __init__(self, page_source: Callable[[], Any]) -> None:
        # Returns the currently active page; raises if there is none.
        self._page_source = page_source
        self._session: Any | None = None
        self._page: Any | None = None

        self._screencast_active: bool = False
        self._frame_callback: FrameCallback | None = None
        self._frame_handler: Callable[[dict[str, Any]], Any] | None = None
        self.screencast_options: ScreencastOptions | None = None

    @property
    def is_open(self) -> bool:
        return self._session is not None

    @property
    def bound_page(self) -> Any | None:
        return self._page

    @property
    def is_screencasting(self) -> bool:
        return self._screencast_active

    async def get(self) -> Any:
        """Return the live CDP session, opening one on the active page if needed."""
        if self._session is not None:
            return self._session
        page = self._page_source()
        self._session = await page.context.new_cdp_session(page)
        self._page = page
        logger.debug(f"Opened control channel for {page.url}")
        return self._session

    async def invalidate(self) -> None:
        """Stop any screencast and detach the current session."""
        if self._screencast_active:
            await self.stop_screencast()
        if self._session is not None:
            session = self._session
            self._session = None
            self._page = None
            await best_effort(session.detach(), "detach control channel")

    # -- Screencast ----------------------------------------------------------

    async def start_screencast(
        self, callback: FrameCallback, options: ScreencastOptions | None = None
    ) -> None:
        if self._screencast_active:
            raise SessionStateError("Screencast already active")

        options = options or ScreencastOptions()
        session = await self.get()

        async def _on_frame(params: dict[str, Any]) -> None:
            frame = ScreencastFrame(
                data=params["data"],
                session_id=params["sessionId"],
                metadata=params.get("metadata", {}),
            )
            # The next frame is only produced once this one is acknowledged.
            await best_effort(
                session.send(
                    "Page.screencastFrameAck", {"sessionId": params["sessionId"]}
                ),
                "acknowledge screencast frame",
            )
            if self._frame_callback is not None:
                self._frame_callback(frame)

        self._frame_callback = callback
        self._frame_handler = _on_frame
        self.screencast_options = options
        self._screencast_active = True
        session.on("Page.screencastFrame", _on_frame)
        try:
            await session.send("Page.startScreencast", options.to_params())
        except Exception:
            session.remove_listener("Page.screencastFrame", _on_frame)
            self._reset_screencast()
            raise

    async def stop_screencast(self) -> None:
        if not self._screencast_active:
            return
        session = self._session
        handler = self._frame_handler
        try:
            if session is not None:
                await session.send("Page.stopScreencast")
        except Exception as exc:
            # The session may already be gone along with its page.
            logger.warning(f"Ignoring screencast stop failure: {exc}")
        finally:
            if session is not None and handler is not None:
                session.remove_listener("Page.screencastFrame", handler)
            self._reset_screencast()

    def _reset_screencast(self) -> None:
        self._screencast_active = False
        self._frame_callback = None
        self._frame_handler = None
        self.screencast_options = None

    # -- Input injection -----------------------------------------------------

    async def inject_mouse(
        self,
        type: Literal["mousePressed", "mouseReleased", "mouseMoved", "mouseWheel"],
        x: float,
        y: float,
        button: str | None = None,
        click_count: int = 1,
        delta_x: float = 0,
        delta_y: float = 0,
        modifiers: int = 0,
    ) -> None:
        session = await self.get()
        await session.send(
            "Input.dispatchMouseEvent",
            {
                "type": type,
                "x": x,
                "y": y,
                "button": button if button in _MOUSE_BUTTONS else "none",
                "clickCount": click_count,
                "deltaX": delta_x,
                "deltaY": delta_y,
                "modifiers": modifiers,
            },
        )

    async def inject_keyboard(
        self,
        type: Literal["keyDown", "keyUp", "char"],
        key: str | None = None,
        code: str | None = None,
        text: str | None = None,
        modifiers: int = 0,
    ) -> None:
        session = await self.get()
        params: dict[str, Any] = {"type": type, "modifiers": modifiers}
        for name, value in (("key", key), ("code", code), ("text", text)):
            if value is not None:
                params[name] = value
        await session.send("Input.dispatchKeyEvent", params)

    async def inject_touch(
        self,
        type: Literal["touchStart", "touchEnd", "touchMove", "touchCancel"],
        touch_points: list[dict[str, Any]],
        modifiers: int = 0,
    ) -> None:
        session = await self.get()
        points = [
            {
                "x": point["x"],
                "y": point["y"],
                "id": index if point.get("id") is None else point["id"],
            }
            for index, point in enumerate(touch_points)
        ]
        await session.send(
            "Input.dispatchTouchEvent",
            {"type": type, "touchPoints": points, "modifiers": modifiers},
        )
