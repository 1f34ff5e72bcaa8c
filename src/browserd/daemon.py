"""Daemon wiring: logging plus construction of a ready command handler."""

from __future__ import annotations

import logging
from pathlib import Path

import httpx

from browserd.browser import BrowserSession
from browserd.commands import CommandHandler, FrameSink
from browserd.config import load_config
from browserd.session import get_log_path, resolve_session_name

logger = logging.getLogger("browserd.daemon")

_file_handler: logging.Handler | None = None


def setup_logging(session_name: str, level: str = "DEBUG") -> Path:
    """Configure logging for the daemon process.

    Appends to ``~/.agent-browser/sessions/<name>/daemon.log``.  Calling this
    again replaces the handler installed by the previous call.
    """
    global _file_handler

    log_path = get_log_path(session_name)
    handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root = logging.getLogger()
    if _file_handler is not None:
        root.removeHandler(_file_handler)
        _file_handler.close()
    root.setLevel(level)
    root.addHandler(handler)
    _file_handler = handler
    return log_path


def create_handler(
    session_name: str | None = None,
    config_path: str | None = None,
    frame_sink: FrameSink | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> CommandHandler:
    """Build the command handler for one daemon session."""
    settings = load_config(config_path)
    name = resolve_session_name(session_name)
    log_path = setup_logging(name, settings.log_level)
    logger.info(
        f"Session '{name}' starting (provider={settings.provider or 'auto'}, log={log_path})"
    )
    session = BrowserSession(name, settings, transport=transport)
    return CommandHandler(session, frame_sink=frame_sink)
