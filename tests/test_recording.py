"""Tests for browserd.recording module."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from browserd.browser import BrowserSession
from browserd.errors import SessionStateError
from browserd.recording import RecordingResult


@pytest.fixture
def output(tmp_path):
    return tmp_path / "videos" / "demo.webm"


@pytest.fixture
def recorder(browser_session):
    return browser_session.recorder


def attach_video(recorder, fail: Exception | None = None):
    video = MagicMock()
    video.save_as = AsyncMock(side_effect=fail)
    recorder.recording.page.video = video
    return video


# ---------------------------------------------------------------------------
# start
# ---------------------------------------------------------------------------


class TestStart:
    async def test_creates_capture_context(self, browser_session, recorder, browser, output):
        await recorder.start(output, "https://example.com/start")

        assert recorder.is_recording
        recording = recorder.recording
        kwargs = recording.context.options
        assert kwargs["viewport"] == {"width": 1280, "height": 720}
        assert kwargs["record_video_size"] == {"width": 1280, "height": 720}
        assert kwargs["record_video_dir"] == str(recording.temp_dir)
        assert kwargs["storage_state"] == {"cookies": [], "origins": []}
        recording.context.set_default_timeout.assert_called_once_with(10000)
        assert recording.temp_dir.is_dir()
        assert recording.temp_dir.name.startswith("agent-browser-recording-test-session-")

    async def test_capture_page_becomes_active(self, browser_session, recorder, output):
        await recorder.start(output, "https://example.com/start")
        page = recorder.recording.page
        assert browser_session.registry.get_page() is page
        assert recorder.recording.context in browser_session.registry.contexts
        page.goto.assert_awaited_once_with("https://example.com/start", wait_until="load")

    async def test_defaults_to_current_url(self, recorder, output):
        await recorder.start(output)
        recorder.recording.page.goto.assert_awaited_once_with(
            "https://example.com", wait_until="load"
        )

    async def test_about_blank_not_replayed(self, browser_session, recorder, page, output):
        page.url = "about:blank"
        await recorder.start(output)
        recorder.recording.page.goto.assert_not_awaited()

    async def test_invalidates_channel(self, browser_session, recorder, output):
        cdp = await browser_session.channel.get()
        await recorder.start(output)
        cdp.detach.assert_awaited_once()
        await browser_session.channel.get()
        assert browser_session.channel.bound_page is recorder.recording.page

    async def test_channel_invalidated_before_capture_page_activates(
        self, browser_session, recorder, page, output
    ):
        cdp = await browser_session.channel.get()
        active_at_detach = []
        cdp.detach.side_effect = lambda: active_at_detach.append(
            browser_session.registry.get_page()
        )
        await recorder.start(output)
        assert active_at_detach == [page]

    async def test_storage_state_failure_tolerated(self, recorder, context, output):
        context.storage_state.side_effect = RuntimeError("no state")
        await recorder.start(output)
        assert recorder.recording.context.options["storage_state"] is None

    async def test_existing_file_rejected(self, recorder, browser, tmp_path):
        existing = tmp_path / "taken.webm"
        existing.write_bytes(b"")
        with pytest.raises(FileExistsError):
            await recorder.start(existing)
        browser.new_context.assert_not_awaited()
        assert not recorder.is_recording

    async def test_wrong_extension_rejected(self, recorder, browser, tmp_path):
        with pytest.raises(ValueError, match="WebM"):
            await recorder.start(tmp_path / "demo.mp4")
        browser.new_context.assert_not_awaited()

    async def test_double_start_rejected(self, recorder, output, tmp_path):
        await recorder.start(output)
        current = recorder.recording
        with pytest.raises(SessionStateError, match="already in progress"):
            await recorder.start(tmp_path / "other.webm")
        assert recorder.recording is current

    async def test_requires_launched_browser(self, sessions_dir, settings, output):
        session = BrowserSession("idle", settings)
        with pytest.raises(SessionStateError, match="not launched"):
            await session.recorder.start(output)

    async def test_context_failure_cleans_temp_dir(self, recorder, browser, temp_root, output):
        browser.new_context.side_effect = RuntimeError("cannot record")
        with pytest.raises(RuntimeError):
            await recorder.start(output)
        assert not recorder.is_recording
        assert list(temp_root.glob("agent-browser-recording-*")) == []


# ---------------------------------------------------------------------------
# stop
# ---------------------------------------------------------------------------


class TestStop:
    async def test_idle_returns_error_payload(self, recorder):
        result = await recorder.stop()
        assert result == RecordingResult(path="", error="No recording in progress")

    async def test_start_then_stop(self, browser_session, recorder, page, output):
        await recorder.start(output, "https://example.com/start")
        recording = recorder.recording
        video = attach_video(recorder)

        result = await recorder.stop()

        assert result.path == str(output)
        assert result.error is None
        assert result.to_dict() == {"path": str(output), "frames": 0}
        video.save_as.assert_awaited_once_with(str(output))
        recording.page.close.assert_awaited_once()
        recording.context.close.assert_awaited_once()
        assert not recording.temp_dir.exists()
        assert not recorder.is_recording
        registry = browser_session.registry
        assert registry.pages == [page]
        assert recording.context not in registry.contexts
        assert registry.active_page_index == 0

    async def test_save_failure_reported_in_result(self, recorder, output):
        await recorder.start(output)
        recording = recorder.recording
        attach_video(recorder, fail=RuntimeError("disk full"))

        result = await recorder.stop()

        assert result.error == "disk full"
        assert result.to_dict()["error"] == "disk full"
        assert not recording.temp_dir.exists()
        assert not recorder.is_recording
        recording.context.close.assert_awaited()

    async def test_stop_invalidates_channel(self, browser_session, recorder, output):
        await recorder.start(output)
        attach_video(recorder)
        cdp = await browser_session.channel.get()
        await recorder.stop()
        cdp.detach.assert_awaited_once()
        assert not browser_session.channel.is_open


# ---------------------------------------------------------------------------
# restart
# ---------------------------------------------------------------------------


class TestRestart:
    async def test_restart_when_idle(self, recorder, output):
        result = await recorder.restart(output)
        assert result == {"previous_path": None, "stopped": False}
        assert recorder.is_recording

    async def test_restart_when_active(self, recorder, output, tmp_path):
        await recorder.start(output)
        attach_video(recorder)
        second = tmp_path / "second.webm"

        result = await recorder.restart(second)

        assert result == {"previous_path": str(output), "stopped": True}
        assert recorder.recording.output_path == second
