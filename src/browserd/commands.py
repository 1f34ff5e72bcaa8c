"""Command surface for a browserd session.

``CommandHandler.handle_command(cmd, args)`` dispatches to the matching
``cmd_*`` coroutine.  Every handler returns a plain ``dict`` of result data;
the dispatcher wraps it as ``{"ok": True, "data": ...}`` or converts a
raised error into ``{"ok": False, "error": ...}``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict
from typing import Any

from browserd.browser import BrowserSession
from browserd.channel import ScreencastFrame, ScreencastOptions
from browserd.config import Viewport, parse_size
from browserd.errors import BrowserdError

logger = logging.getLogger("browserd.commands")

FrameSink = Callable[[ScreencastFrame], Any]

# Failures the caller caused; reported without a traceback.
_EXPECTED_ERRORS = (BrowserdError, ValueError, FileExistsError)


class LatestFrameSink:
    """Keeps the most recent screencast frame and counts the rest."""

    def __init__(self) -> None:
        self.last_frame: ScreencastFrame | None = None
        self.frame_count: int = 0

    def __call__(self, frame: ScreencastFrame) -> None:
        self.last_frame = frame
        self.frame_count += 1


class CommandHandler:
    def __init__(self, session: BrowserSession, frame_sink: FrameSink | None = None) -> None:
        self.session = session
        self.frame_sink: FrameSink = frame_sink if frame_sink is not None else LatestFrameSink()

    async def handle_command(
        self, cmd: str, args: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Dispatch *cmd* to the appropriate ``cmd_*`` handler."""
        method_name = f"cmd_{cmd.replace('-', '_')}"
        handler = getattr(self, method_name, None)
        if handler is None:
            return {"ok": False, "error": f"Unknown command: {cmd}"}
        logger.debug(f"Handling {cmd} {args or {}}")
        try:
            data = await handler(**(args or {}))
        except _EXPECTED_ERRORS as exc:
            logger.warning(f"{cmd} failed: {exc}")
            return {"ok": False, "error": str(exc)}
        except Exception as exc:
            logger.exception(f"{cmd} failed unexpectedly")
            return {"ok": False, "error": str(exc)}
        return {"ok": True, "data": data}

    @property
    def _registry(self):
        return self.session.registry

    # -----------------------------------------------------------------------
    # Command handlers
    # -----------------------------------------------------------------------

    # -- Lifecycle ------------------------------------------------------------

    async def cmd_launch(
        self,
        headless: bool | None = None,
        viewport: str | dict | None = None,
        browser_name: str | None = None,
        headers: dict[str, str] | None = None,
        executable_path: str | None = None,
        cdp_port: int | None = None,
        extensions: list[str] | None = None,
        proxy: dict[str, Any] | None = None,
        provider: str | None = None,
    ) -> dict[str, Any]:
        """Launch or attach a browser, merging these options over the config."""
        options = self.session.settings.merged_launch(
            {
                "headless": headless,
                "viewport": viewport,
                "browser_name": browser_name,
                "headers": headers,
                "executable_path": executable_path,
                "cdp_port": cdp_port,
                "extensions": extensions,
                "proxy": proxy,
                "provider": provider,
            }
        )
        await self.session.launch(options)
        connection = self.session.connection
        return {
            "launched": True,
            "origin": connection.origin.value,
            "pages": len(self._registry.pages),
        }

    async def cmd_close(self) -> dict[str, Any]:
        await self.session.close()
        return {"closed": True}

    # -- Navigation -----------------------------------------------------------

    async def cmd_navigate(
        self,
        url: str,
        wait_until: str = "load",
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        return await self.session.navigate(url, wait_until=wait_until, headers=headers)

    # -- Tabs, windows & frames ----------------------------------------------

    async def cmd_tab_new(self, url: str | None = None) -> dict[str, Any]:
        result = await self._registry.new_tab()
        if url:
            await self.session.navigate(url)
        return result

    async def cmd_tab_list(self) -> dict[str, Any]:
        return {
            "tabs": await self._registry.list_tabs(),
            "active": self._registry.active_page_index,
        }

    async def cmd_tab_switch(self, index: int) -> dict[str, Any]:
        return await self._registry.switch_to(int(index))

    async def cmd_tab_close(self, index: int | None = None) -> dict[str, Any]:
        return await self._registry.close_tab(None if index is None else int(index))

    async def cmd_window_new(self, viewport: str | dict | None = None) -> dict[str, Any]:
        if isinstance(viewport, str):
            size = parse_size(viewport)
        elif isinstance(viewport, dict):
            size = Viewport.model_validate(viewport).as_dict()
        else:
            size = self.session.settings.launch.viewport.as_dict()
        return await self._registry.new_window(
            self.session.browser, size, self.session.settings.timeouts.default
        )

    async def cmd_frame(
        self,
        selector: str | None = None,
        name: str | None = None,
        url: str | None = None,
    ) -> dict[str, Any]:
        await self._registry.switch_to_frame(selector=selector, name=name, url=url)
        return {"frame": self._registry.active_frame.url}

    async def cmd_mainframe(self) -> dict[str, Any]:
        self._registry.switch_to_main_frame()
        return {"frame": "main"}

    # -- Snapshot & element interaction --------------------------------------

    async def cmd_snapshot(self) -> dict[str, Any]:
        snap = await self.session.snapshot()
        return {"snapshot": snap.tree, "refs": snap.refs.to_dict()}

    async def cmd_click(
        self, selector: str, button: str = "left", click_count: int = 1
    ) -> dict[str, Any]:
        await self.session.get_locator(selector).click(
            button=button, click_count=click_count
        )
        return {"clicked": selector}

    async def cmd_dblclick(self, selector: str) -> dict[str, Any]:
        await self.session.get_locator(selector).dblclick()
        return {"clicked": selector}

    async def cmd_fill(self, selector: str, value: str) -> dict[str, Any]:
        await self.session.get_locator(selector).fill(value)
        return {"filled": selector}

    async def cmd_type(
        self, selector: str, text: str, delay: float | None = None
    ) -> dict[str, Any]:
        await self.session.get_locator(selector).press_sequentially(text, delay=delay)
        return {"typed": selector}

    async def cmd_hover(self, selector: str) -> dict[str, Any]:
        await self.session.get_locator(selector).hover()
        return {"hovered": selector}

    async def cmd_check(self, selector: str) -> dict[str, Any]:
        await self.session.get_locator(selector).check()
        return {"checked": selector}

    async def cmd_uncheck(self, selector: str) -> dict[str, Any]:
        await self.session.get_locator(selector).uncheck()
        return {"unchecked": selector}

    async def cmd_select(self, selector: str, values: str | list[str]) -> dict[str, Any]:
        selected = await self.session.get_locator(selector).select_option(values)
        return {"selected": selected}

    # -- Screencast & input injection ----------------------------------------

    async def cmd_screencast_start(
        self,
        format: str = "jpeg",
        quality: int = 80,
        max_width: int = 1280,
        max_height: int = 720,
        every_nth_frame: int = 1,
    ) -> dict[str, Any]:
        options = ScreencastOptions(
            format=format,
            quality=quality,
            max_width=max_width,
            max_height=max_height,
            every_nth_frame=every_nth_frame,
        )
        await self.session.channel.start_screencast(self.frame_sink, options)
        return {"started": True, "options": asdict(options)}

    async def cmd_screencast_stop(self) -> dict[str, Any]:
        await self.session.channel.stop_screencast()
        return {"stopped": True}

    async def cmd_input_mouse(
        self,
        type: str,
        x: float,
        y: float,
        button: str | None = None,
        click_count: int = 1,
        delta_x: float = 0,
        delta_y: float = 0,
        modifiers: int = 0,
    ) -> dict[str, Any]:
        await self.session.channel.inject_mouse(
            type,
            x,
            y,
            button=button,
            click_count=click_count,
            delta_x=delta_x,
            delta_y=delta_y,
            modifiers=modifiers,
        )
        return {"injected": type}

    async def cmd_input_keyboard(
        self,
        type: str,
        key: str | None = None,
        code: str | None = None,
        text: str | None = None,
        modifiers: int = 0,
    ) -> dict[str, Any]:
        await self.session.channel.inject_keyboard(
            type, key=key, code=code, text=text, modifiers=modifiers
        )
        return {"injected": type}

    async def cmd_input_touch(
        self, type: str, touch_points: list[dict[str, Any]], modifiers: int = 0
    ) -> dict[str, Any]:
        await self.session.channel.inject_touch(type, touch_points, modifiers=modifiers)
        return {"injected": type}

    # -- Recording -----------------------------------------------------------

    async def cmd_recording_start(self, path: str, url: str | None = None) -> dict[str, Any]:
        await self.session.recorder.start(path, url)
        return {"started": True, "path": path}

    async def cmd_recording_stop(self) -> dict[str, Any]:
        result = await self.session.recorder.stop()
        return result.to_dict()

    async def cmd_recording_restart(
        self, path: str, url: str | None = None
    ) -> dict[str, Any]:
        result = await self.session.recorder.restart(path, url)
        return {**result, "path": path}

    # -- Profile-wide settings -----------------------------------------------

    async def cmd_geolocation(
        self, latitude: float, longitude: float, accuracy: float | None = None
    ) -> dict[str, Any]:
        await self.session.set_geolocation(latitude, longitude, accuracy)
        return {"latitude": latitude, "longitude": longitude}

    async def cmd_permissions(
        self, permissions: list[str], grant: bool = True
    ) -> dict[str, Any]:
        await self.session.set_permissions(permissions, grant)
        return {"permissions": permissions, "granted": grant}

    async def cmd_offline(self, offline: bool = True) -> dict[str, Any]:
        await self.session.set_offline(offline)
        return {"offline": offline}

    async def cmd_headers(self, headers: dict[str, str]) -> dict[str, Any]:
        await self.session.set_extra_headers(headers)
        return {"headers": headers}

    async def cmd_tracing_start(
        self, screenshots: bool = True, snapshots: bool = True
    ) -> dict[str, Any]:
        await self.session.start_tracing(screenshots=screenshots, snapshots=snapshots)
        return {"tracing": True}

    async def cmd_tracing_stop(self, path: str) -> dict[str, Any]:
        await self.session.stop_tracing(path)
        return {"tracing": False, "path": path}

    async def cmd_state_save(self, path: str) -> dict[str, Any]:
        await self.session.save_storage_state(path)
        return {"path": path}

    # -- Page-scoped settings ------------------------------------------------

    async def cmd_viewport(self, width: int, height: int) -> dict[str, Any]:
        await self.session.set_viewport(width, height)
        return {"width": int(width), "height": int(height)}

    async def cmd_dialog(
        self, response: str = "accept", prompt_text: str | None = None
    ) -> dict[str, Any]:
        if response == "clear":
            self.session.clear_dialog_handler()
        elif response in ("accept", "dismiss"):
            self.session.set_dialog_handler(response, prompt_text)
        else:
            raise ValueError(f"Unknown dialog response: {response}")
        return {"dialog": response}

    async def cmd_route(
        self,
        url: str,
        abort: bool = False,
        response: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        await self.session.add_route(url, abort=abort, response=response)
        return {"routed": url}

    async def cmd_unroute(self, url: str | None = None) -> dict[str, Any]:
        await self.session.remove_route(url)
        return {"unrouted": url or "all"}

    # -- Logs ----------------------------------------------------------------

    async def cmd_console(self, clear: bool = False) -> dict[str, Any]:
        messages = [asdict(m) for m in self._registry.console_messages]
        if clear:
            self._registry.clear_console_messages()
        return {"messages": messages}

    async def cmd_errors(self, clear: bool = False) -> dict[str, Any]:
        errors = [asdict(e) for e in self._registry.page_errors]
        if clear:
            self._registry.clear_page_errors()
        return {"errors": errors}

    async def cmd_requests(
        self, filter: str | None = None, clear: bool = False
    ) -> dict[str, Any]:
        """Return tracked requests, turning tracking on with the first call."""
        if not self._registry.request_tracking:
            self._registry.start_request_tracking()
        requests = [asdict(r) for r in self._registry.get_requests(filter)]
        if clear:
            self._registry.clear_requests()
        return {"requests": requests}

    # -- Devices -------------------------------------------------------------

    async def cmd_device_list(self) -> dict[str, Any]:
        return {"devices": self.session.list_devices()}
