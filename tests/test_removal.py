"""Tests for the removal path: stripping a node from its ancestors before delete."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from arbor_core.hierarchy import EventKind
from arbor_core.interfaces import Node


@pytest.fixture
def tree(make_node):
    """root -> a -> b, root -> x"""
    root = make_node("root")
    a = make_node("a", parent=root)
    b = make_node("b", parent=a)
    x = make_node("x", parent=root)
    return root, a, b, x


class TestRemove:
    def test_leaf_removal_updates_every_ancestor(self, tree, maintainer, store, record_of):
        root, a, b, x = tree
        assert maintainer.remove(store.get(b)) is True

        assert b not in store
        assert record_of(a).children == {}
        assert record_of(a).children_ids == {}
        assert record_of(root).children_ids == {a: True, x: True}
        assert record_of(root).children[a].children == {}

    def test_removal_emits_node_removed(self, tree, maintainer, store, recorder):
        root, a, b, x = tree
        recorder.clear()
        maintainer.remove(store.get(b))
        [event] = recorder.of(EventKind.node_removed)
        assert event.node_id == b
        assert event.related_id == a
        assert maintainer.last_report.updated == [a, root]

    def test_top_level_node_removal(self, make_node, maintainer, store, recorder):
        lone = make_node("lone")
        recorder.clear()
        assert maintainer.remove(store.get(lone)) is True
        assert lone not in store
        assert recorder.kinds() == [EventKind.root_reached, EventKind.node_removed]

    def test_removing_inner_node_drops_its_subtree_from_ancestors(self, tree, maintainer, store, record_of):
        """Orphaned descendants stay stored but leave the ancestors' index."""
        root, a, b, x = tree
        maintainer.remove(store.get(a))
        assert b in store
        assert record_of(root).children_ids == {x: True}

    def test_missing_parent_does_not_block_removal(self, make_node, maintainer, store, recorder):
        orphan = make_node("orphan", parent=999)
        recorder.clear()
        assert maintainer.remove(store.get(orphan)) is True
        assert recorder.of(EventKind.ancestor_missing)[0].related_id == 999

    def test_delete_runs_when_cleanup_raises(self, tree, maintainer, store, caplog):
        root, a, b, x = tree
        with patch.object(maintainer, "on_node_removing", side_effect=RuntimeError("boom")):
            assert maintainer.remove(store.get(b)) is True
        assert b not in store
        assert "Cache cleanup failed" in caplog.text

    def test_unknown_node_returns_false(self, maintainer, recorder):
        assert maintainer.remove(Node(id=42, short_name="ghost")) is False
        assert recorder.of(EventKind.node_removed) == []


class TestOnNodeRemoving:
    def test_does_not_delete(self, tree, maintainer, store, record_of):
        root, a, b, x = tree
        maintainer.on_node_removing(store.get(b))
        assert b in store
        assert record_of(a).children_ids == {}

    def test_pending_move_cleans_both_parents(self, tree, maintainer, store, record_of):
        """An edited but unsaved parent still leaves the recorded one clean."""
        root, a, b, x = tree
        node = store.get(b)
        node.parent = x
        report = maintainer.on_node_removing(node)

        assert record_of(a).children_ids == {}
        assert record_of(x).children_ids == {}
        assert record_of(root).children_ids == {a: True, x: True}
        assert a in report.updated
        assert x in report.updated

    def test_unsaved_node_is_ignored(self, maintainer, recorder):
        report = maintainer.on_node_removing(Node(parent=3, short_name="draft"))
        assert report.updated == []
        assert recorder.events == []

    def test_no_surviving_id_is_lost(self, make_node, maintainer, store, record_of):
        root = make_node("root")
        kids = [make_node(f"k{i}", parent=root) for i in range(4)]
        maintainer.remove(store.get(kids[1]))
        assert record_of(root).children_ids == {k: True for k in kids if k != kids[1]}
