"""Error taxonomy for browserd.

Every failure surfaced to the command layer falls into one of three
families.  Cleanup failures are never raised: they go through
:func:`best_effort`, which logs and moves on.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import Any

logger = logging.getLogger("browserd.errors")


class BrowserdError(Exception):
    """Base class for errors reported verbatim to the caller."""


class ConfigurationError(BrowserdError):
    """Missing credential or incompatible option combination."""


class ProviderConnectionError(BrowserdError):
    """Attaching to, launching, or provisioning a browser failed."""


class SessionStateError(BrowserdError):
    """The session is not in a state that allows the requested operation."""


async def best_effort(awaitable: Awaitable[Any], action: str) -> None:
    """Await *awaitable*, logging (never raising) any failure.

    *action* is a short human description used in the log line, e.g.
    ``"detach control channel"``.
    """
    try:
        await awaitable
    except Exception as exc:
        logger.warning(f"Failed to {action}: {exc}")
