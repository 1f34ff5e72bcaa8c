"""Tests for browserd.daemon module."""

from __future__ import annotations

import json
import logging

import pytest

from browserd import daemon
from browserd.commands import CommandHandler


@pytest.fixture(autouse=True)
def detach_log_handler():
    yield
    if daemon._file_handler is not None:
        logging.getLogger().removeHandler(daemon._file_handler)
        daemon._file_handler.close()
        daemon._file_handler = None


class TestSetupLogging:
    def test_writes_to_session_log(self, sessions_dir):
        log_path = daemon.setup_logging("logs", "INFO")
        assert log_path == sessions_dir / "logs" / "daemon.log"
        logging.getLogger("browserd.test").info("hello from test")
        daemon._file_handler.flush()
        content = log_path.read_text(encoding="utf-8")
        assert "[INFO] browserd.test: hello from test" in content

    def test_repeat_call_replaces_handler(self, sessions_dir):
        daemon.setup_logging("one")
        first = daemon._file_handler
        daemon.setup_logging("two")
        assert daemon._file_handler is not first
        assert first not in logging.getLogger().handlers


class TestCreateHandler:
    def test_defaults(self, sessions_dir, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        handler = daemon.create_handler()
        assert isinstance(handler, CommandHandler)
        assert handler.session.session_name == "default"
        assert (sessions_dir / "default" / "daemon.log").exists()

    def test_env_session_name(self, sessions_dir, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("AGENT_BROWSER_SESSION", "from-env")
        assert daemon.create_handler().session.session_name == "from-env"

    def test_explicit_name_and_config(self, sessions_dir, tmp_path):
        config = tmp_path / "config.json"
        config.write_text(json.dumps({"provider": "browseruse"}), encoding="utf-8")
        handler = daemon.create_handler("work", str(config))
        assert handler.session.session_name == "work"
        assert handler.session.settings.provider == "browseruse"
        assert handler.session.is_launched is False
