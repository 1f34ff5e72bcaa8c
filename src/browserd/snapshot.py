"""Accessibility snapshot adapter for browserd.

Uses Patchright's built-in ``snapshotForAI`` to produce the accessibility
tree text, then derives the reference table from it: every line carrying a
``[ref=eN]`` marker becomes a role/name locator descriptor.

When two or more elements share the same role and name, each of them also
gets a disambiguation index (its position among the duplicates, in document
order) so the role locator can pick the right match.  Unique role/name pairs
carry no index.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from typing import Any

from browserd.refs import LocatorDescriptor, RefTable

# Matches [ref=e2], [ref=e10], etc.
_REF_RE = re.compile(r"\[ref=([\w]+)\]")

# Role and optional quoted name at the beginning of a snapshot line.
_ROLE_NAME_RE = re.compile(r"^\s*- (\w+)(?:\s+\"([^\"]*)\")?\s*")

_SNAPSHOT_TIMEOUT_MS = 30000


@dataclass
class Snapshot:
    tree: str
    refs: RefTable


def parse_refs(snapshot_text: str) -> RefTable:
    """Build a :class:`RefTable` from ``snapshotForAI`` output."""
    parsed: list[tuple[str, str, str | None]] = []  # (ref_id, role, name)
    for line in snapshot_text.split("\n"):
        ref_match = _REF_RE.search(line)
        if not ref_match:
            continue
        role_match = _ROLE_NAME_RE.match(line)
        if not role_match:
            continue
        parsed.append((ref_match.group(1), role_match.group(1), role_match.group(2)))

    totals = Counter((role, name) for _, role, name in parsed)
    seen: Counter[tuple[str, str | None]] = Counter()
    entries: dict[str, LocatorDescriptor] = {}
    for ref_id, role, name in parsed:
        key = (role, name)
        nth = seen[key] if totals[key] > 1 else None
        seen[key] += 1
        entries[ref_id] = LocatorDescriptor(role=role, name=name, nth=nth)
    return RefTable(entries)


async def take_snapshot(page: Any) -> Snapshot:
    """Take an accessibility snapshot of *page* via ``snapshotForAI``."""
    impl = page._impl_obj
    result = await impl._channel.send_return_as_dict(
        "snapshotForAI",
        lambda kw: _SNAPSHOT_TIMEOUT_MS,
        {"timeout": _SNAPSHOT_TIMEOUT_MS},
        is_internal=True,
    )
    snapshot_text = result["full"]
    return Snapshot(tree=snapshot_text, refs=parse_refs(snapshot_text))
