"""Native video recording.

Playwright can only record video for a context configured to do so at
creation time.  Starting a recording therefore opens a dedicated context
(seeded with the default context's cookies and local storage) plus one page
that becomes the active page.  Stopping closes that page, which finalises
the WebM file, and copies it to the requested path.

States: idle (``recording is None``) and active.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from browserd.config import RECORDING_EXTENSION
from browserd.errors import SessionStateError, best_effort
from browserd.session import create_recording_temp_dir

if TYPE_CHECKING:
    from browserd.browser import BrowserSession

logger = logging.getLogger("browserd.recording")


@dataclass
class Recording:
    context: Any
    page: Any
    output_path: Path
    temp_dir: Path


@dataclass
class RecordingResult:
    path: str
    frames: int = 0  # not exposed by the engine
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if data["error"] is None:
            del data["error"]
        return data


def _remove_temp_dir(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning(f"Failed to remove recording temp dir {path}: {exc}")


class Recorder:
    def __init__(self, session: BrowserSession) -> None:
        self._session = session
        self.recording: Recording | None = None

    @property
    def is_recording(self) -> bool:
        return self.recording is not None

    async def start(self, output_path: str | Path, url: str | None = None) -> None:
        session = self._session
        output = Path(output_path)

        if self.recording is not None:
            raise SessionStateError(
                "Recording already in progress. Run 'record stop' first, or use "
                "'record restart' to stop and start a new recording."
            )
        if session.browser is None:
            raise SessionStateError("Browser not launched. Call launch first.")
        if output.exists():
            raise FileExistsError(f"Output file already exists: {output}")
        if output.suffix != RECORDING_EXTENSION:
            raise ValueError(
                "Playwright native recording only supports WebM format. "
                "Please use a .webm extension."
            )

        registry = session.registry
        if url is None and registry.pages:
            current_url = registry.get_page().url
            if current_url and current_url != "about:blank":
                url = current_url

        storage_state = None
        if registry.contexts:
            try:
                storage_state = await registry.contexts[0].storage_state()
            except Exception as exc:
                logger.warning(f"Could not capture storage state for recording: {exc}")

        temp_dir = create_recording_temp_dir(session.session_name)
        viewport = session.settings.recording.viewport.as_dict()
        context = None
        try:
            context = await session.browser.new_context(
                viewport=viewport,
                record_video_dir=str(temp_dir),
                record_video_size=viewport,
                storage_state=storage_state,
            )
            context.set_default_timeout(session.settings.timeouts.recording)
            page = await context.new_page()
        except Exception:
            if context is not None:
                await best_effort(context.close(), "close recording context")
            _remove_temp_dir(temp_dir)
            raise

        self.recording = Recording(
            context=context, page=page, output_path=output, temp_dir=temp_dir
        )
        await session.channel.invalidate()
        registry.add_context(context)
        registry.add_page(page, activate=True)
        logger.info(f"Recording started -> {output}")

        if url:
            await page.goto(url, wait_until="load")

    async def stop(self) -> RecordingResult:
        if self.recording is None:
            return RecordingResult(path="", error="No recording in progress")

        recording = self.recording
        registry = self._session.registry
        error: str | None = None
        try:
            # The video handle must be taken before its page is closed.
            video = recording.page.video
            registry.remove_page(recording.page)
            registry.remove_context(recording.context)
            await recording.page.close()
            if video is not None:
                await video.save_as(str(recording.output_path))
            await recording.context.close()
        except Exception as exc:
            logger.warning(f"Recording stop failed: {exc}")
            error = str(exc)
            await best_effort(recording.context.close(), "close recording context")
        finally:
            _remove_temp_dir(recording.temp_dir)
            self.recording = None
            registry.clamp_active()

        await self._session.channel.invalidate()
        if error is None:
            logger.info(f"Recording saved to {recording.output_path}")
        return RecordingResult(path=str(recording.output_path), error=error)

    async def restart(
        self, output_path: str | Path, url: str | None = None
    ) -> dict[str, Any]:
        previous_path: str | None = None
        stopped = False
        if self.recording is not None:
            result = await self.stop()
            previous_path = result.path
            stopped = True
        await self.start(output_path, url)
        return {"previous_path": previous_path, "stopped": stopped}
