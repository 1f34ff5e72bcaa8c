"""Session directory layout for browserd.

Per-user, persists across daemon restarts:

    ~/.agent-browser/
      sessions/
        default/
          daemon.log        # Daemon log
        my-session/
          daemon.log

Scratch directories live under the system temp dir:

    $TMPDIR/agent-browser-ext-<session>/                  # extension profile
    $TMPDIR/agent-browser-recording-<session>-<millis>/   # video capture
"""

from __future__ import annotations

import os
import tempfile
import time
from pathlib import Path

# ---------------------------------------------------------------------------
# Session directory helpers
# ---------------------------------------------------------------------------

_BASE_DIR_NAME = ".agent-browser"
_SESSIONS_SUBDIR = "sessions"
_LOG_FILENAME = "daemon.log"
_ENV_SESSION_VAR = "AGENT_BROWSER_SESSION"
_DEFAULT_SESSION = "default"
_TEMP_PREFIX = "agent-browser"


def get_sessions_dir() -> Path:
    """Return ``~/.agent-browser/sessions/``, creating it if it does not exist."""
    sessions_dir = Path.home() / _BASE_DIR_NAME / _SESSIONS_SUBDIR
    sessions_dir.mkdir(parents=True, exist_ok=True)
    return sessions_dir


def get_session_dir(name: str) -> Path:
    """Return the directory for the given session *name*, creating it if needed."""
    session_dir = get_sessions_dir() / name
    session_dir.mkdir(parents=True, exist_ok=True)
    return session_dir


def get_log_path(name: str) -> Path:
    """Return the log file path for the given session."""
    return get_session_dir(name) / _LOG_FILENAME


# ---------------------------------------------------------------------------
# Session name resolution
# ---------------------------------------------------------------------------


def resolve_session_name(cli_arg: str | None) -> str:
    """Determine which session name to use.

    Priority (highest to lowest):

    1. Explicit *cli_arg* (if not ``None`` and not empty).
    2. The ``AGENT_BROWSER_SESSION`` environment variable.
    3. ``"default"``.
    """
    if cli_arg:
        return cli_arg
    env_value = os.environ.get(_ENV_SESSION_VAR, "").strip()
    if env_value:
        return env_value
    return _DEFAULT_SESSION


# ---------------------------------------------------------------------------
# Scratch directories
# ---------------------------------------------------------------------------


def get_extension_profile_dir(name: str) -> Path:
    """Return the persistent profile directory used for extension launches.

    The directory is not created here; the browser creates it on first launch.
    """
    return Path(tempfile.gettempdir()) / f"{_TEMP_PREFIX}-ext-{name}"


def create_recording_temp_dir(name: str, timestamp_ms: int | None = None) -> Path:
    """Create and return a fresh capture directory keyed by session and time."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    path = Path(tempfile.gettempdir()) / f"{_TEMP_PREFIX}-recording-{name}-{timestamp_ms}"
    path.mkdir(parents=True, exist_ok=True)
    return path
