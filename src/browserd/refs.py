"""Element reference resolution.

A snapshot assigns short tokens (``e1``, ``e2`` ...) to elements and hands
back a table mapping each token to a role-based locator description.
Commands may then target ``e3``, ``@e3`` or ``ref=e3`` interchangeably.

Tokens are only meaningful against the table of the snapshot that produced
them.  Nothing here checks whether the page changed since; callers
re-snapshot after structural changes.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

_BARE_REF_RE = re.compile(r"^e\d+$")


def parse_ref(token: str) -> str | None:
    """Normalise *token* to a table key, or return ``None`` if it is not a ref."""
    if token.startswith("@"):
        return token[1:]
    if token.startswith("ref="):
        return token[4:]
    if _BARE_REF_RE.match(token):
        return token
    return None


@dataclass(frozen=True)
class LocatorDescriptor:
    role: str
    name: str | None = None
    nth: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role}
        if self.name is not None:
            data["name"] = self.name
        if self.nth is not None:
            data["nth"] = self.nth
        return data


class RefTable:
    """Immutable token -> descriptor mapping produced by one snapshot."""

    def __init__(self, entries: dict[str, LocatorDescriptor] | None = None) -> None:
        self._entries: dict[str, LocatorDescriptor] = dict(entries or {})

    def resolve(self, token: str) -> LocatorDescriptor | None:
        key = parse_ref(token)
        if key is None:
            return None
        return self._entries.get(key)

    def __contains__(self, token: object) -> bool:
        return isinstance(token, str) and self.resolve(token) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {key: desc.to_dict() for key, desc in self._entries.items()}


def build_locator(page: Any, descriptor: LocatorDescriptor) -> Any:
    """Return a role locator for *descriptor*.

    Names must match exactly; a substring match could target the wrong
    element when several share a prefix.
    """
    if descriptor.name:
        locator = page.get_by_role(descriptor.role, name=descriptor.name, exact=True)
    else:
        locator = page.get_by_role(descriptor.role)
    if descriptor.nth is not None:
        locator = locator.nth(descriptor.nth)
    return locator
