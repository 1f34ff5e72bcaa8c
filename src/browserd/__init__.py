"""Browser session daemon core: connections, tabs, screencast and recording."""

from browserd.browser import BrowserSession
from browserd.commands import CommandHandler
from browserd.config import DaemonSettings, LaunchConfig, load_config
from browserd.daemon import create_handler

__all__ = [
    "BrowserSession",
    "CommandHandler",
    "DaemonSettings",
    "LaunchConfig",
    "create_handler",
    "load_config",
]
