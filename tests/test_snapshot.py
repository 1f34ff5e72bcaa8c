"""Tests for browserd.snapshot module."""

from __future__ import annotations

import pytest

from browserd.browser import BrowserSession
from browserd.errors import SessionStateError
from browserd.refs import LocatorDescriptor
from browserd.snapshot import parse_refs, take_snapshot

SAMPLE_TREE = """\
- document
  - heading "Welcome" [level=1] [ref=e1]
  - button "Submit" [ref=e2]
  - button "Submit" [ref=e3]
  - link "Home" [ref=e4]
  - textbox [ref=e5]
  - text: plain text without a ref
  - button "Submit" [ref=e6]
"""


class TestParseRefs:
    def test_unique_pairs_have_no_index(self):
        table = parse_refs(SAMPLE_TREE)
        assert table.resolve("e1") == LocatorDescriptor(role="heading", name="Welcome")
        assert table.resolve("e4") == LocatorDescriptor(role="link", name="Home")

    def test_duplicates_indexed_in_document_order(self):
        table = parse_refs(SAMPLE_TREE)
        assert table.resolve("e2").nth == 0
        assert table.resolve("e3").nth == 1
        assert table.resolve("e6").nth == 2

    def test_unnamed_element(self):
        table = parse_refs(SAMPLE_TREE)
        assert table.resolve("e5") == LocatorDescriptor(role="textbox")

    def test_lines_without_ref_skipped(self):
        assert len(parse_refs(SAMPLE_TREE)) == 6

    def test_empty_tree(self):
        assert len(parse_refs("- document\n")) == 0


class TestTakeSnapshot:
    async def test_calls_snapshot_for_ai(self, page):
        send = page._impl_obj._channel.send_return_as_dict
        send.return_value = {"full": SAMPLE_TREE}
        snap = await take_snapshot(page)
        assert snap.tree == SAMPLE_TREE
        assert "e3" in snap.refs
        assert send.await_args.args[0] == "snapshotForAI"
        assert send.await_args.kwargs == {"is_internal": True}

    async def test_session_snapshot_replaces_table(self, browser_session, page):
        send = page._impl_obj._channel.send_return_as_dict
        send.return_value = {"full": SAMPLE_TREE}
        await browser_session.snapshot()
        assert "e6" in browser_session.refs

        send.return_value = {"full": '- document\n  - button "Only" [ref=e1]\n'}
        snap = await browser_session.snapshot()
        assert browser_session.refs is snap.refs
        assert browser_session.refs.resolve("e6") is None
        assert browser_session.last_snapshot.endswith('[ref=e1]\n')

    async def test_snapshot_requires_page(self, sessions_dir, settings):
        session = BrowserSession("empty", settings)
        with pytest.raises(SessionStateError, match="not launched"):
            await session.snapshot()
