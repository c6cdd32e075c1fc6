"""Tests for HierarchyCacheMaintainer: save path, ripple, moves, and failure handling."""

from __future__ import annotations

import logging

import pytest

from arbor_core.config.models import CacheConfig
from arbor_core.hierarchy import (
    EventKind,
    EventRecorder,
    HierarchyCacheMaintainer,
    LoggingSink,
    PropagationEvent,
    read_record,
    write_record,
)
from arbor_core.interfaces import Node, NodeNotFoundError
from arbor_lite.store import InMemoryNodeStore


class FlakyStore(InMemoryNodeStore):
    """Rejects the next ``failures[node_id]`` saves of the given nodes."""

    def __init__(self) -> None:
        super().__init__()
        self.failures: dict[int, int] = {}

    def save(self, node: Node) -> bool:
        remaining = self.failures.get(node.id, 0) if node.id is not None else 0
        if remaining:
            self.failures[node.id] = remaining - 1
            return False
        return super().save(node)


@pytest.fixture
def tree(make_node):
    """root -> a -> b"""
    root = make_node("root")
    a = make_node("a", parent=root)
    b = make_node("b", parent=a)
    return root, a, b


# ── Save path ────────────────────────────────────────────────────────


class TestSave:
    def test_new_node_gets_id_and_record(self, maintainer, store, record_of):
        node = Node(short_name="root", display_name="Root")
        assert maintainer.save(node) is True
        assert node.id is not None
        record = record_of(node.id)
        assert record.fingerprint is not None
        assert record.previous_parent == 0
        assert record.children == {}

    def test_root_save_reports_root_reached(self, maintainer, recorder):
        maintainer.save(Node(short_name="root"))
        assert recorder.kinds() == [EventKind.fingerprint_mismatch, EventKind.root_reached]

    def test_chain_populates_ancestors(self, tree, record_of):
        root, a, b = tree
        assert record_of(root).children_ids == {a: True, b: True}
        assert set(record_of(root).children) == {a}
        assert set(record_of(root).children[a].children) == {b}
        assert record_of(a).children_ids == {b: True}
        assert record_of(b).children_ids == {}

    def test_snapshot_carries_child_fields(self, make_node, store, maintainer):
        root = make_node("root")
        child = make_node("dogs", parent=root, display_name="Dogs!", ordering=3, published=False)
        entry = maintainer.get_descendant_snapshot(store.get(root))[child]
        assert entry.short_name == "dogs"
        assert entry.display_name == "Dogs!"
        assert entry.ordering == 3
        assert entry.published is False

    def test_new_child_propagates_once(self, tree, make_node, maintainer, store):
        root, a, b = tree
        c = make_node("c", parent=b)
        assert maintainer.last_report.updated == [b, a, root]
        assert c in maintainer.get_descendant_ids(store.get(root))

    def test_unchanged_save_touches_no_ancestor(self, tree, maintainer, store, recorder):
        root, a, b = tree
        root_version = store.get(root).version
        recorder.clear()

        assert maintainer.save(store.get(b)) is True
        assert maintainer.last_report.updated == []
        assert recorder.kinds() == [EventKind.fingerprint_match]
        assert store.get(root).version == root_version

    def test_field_edit_ripples_to_root(self, tree, maintainer, store):
        root, a, b = tree
        node = store.get(b)
        node.display_name = "Renamed"
        assert maintainer.save(node)
        assert maintainer.last_report.updated == [a, root]
        root_snapshot = maintainer.get_descendant_snapshot(store.get(root))
        assert root_snapshot[a].children[b].display_name == "Renamed"

    def test_foreign_property_edit_does_not_ripple(self, tree, maintainer, store):
        root, a, b = tree
        node = store.get(b)
        node.properties["seo"] = {"title": "B"}
        assert maintainer.save(node)
        assert maintainer.last_report.updated == []
        assert store.get(b).properties["seo"] == {"title": "B"}

    def test_ripple_stops_at_unchanged_ancestor(self, tree, maintainer, store, recorder):
        """A forced re-attach that changes nothing stops at the first ancestor."""
        root, a, b = tree
        recorder.clear()
        report = maintainer.propagate_upward(b)
        assert report.updated == [a]
        assert recorder.of(EventKind.fingerprint_match)[0].node_id == a

    def test_on_node_saved_delegates(self, tree, maintainer, store):
        root, a, b = tree
        node = store.get(a)
        node.ordering = 9
        assert maintainer.on_node_saved(node) is True
        assert maintainer.get_descendant_snapshot(store.get(root))[a].ordering == 9

    def test_origin_id_set_for_new_node(self, maintainer):
        node = Node(short_name="x")
        maintainer.save(node)
        assert maintainer.last_report.origin_id == node.id


# ── Own-save failure ─────────────────────────────────────────────────


class TestOwnSaveFailure:
    def test_stale_copy_is_rejected(self, tree, maintainer, store):
        root, a, b = tree
        first, second = store.get(a), store.get(a)
        first.display_name = "First"
        assert maintainer.save(first) is True

        second.display_name = "Second"
        assert maintainer.save(second) is False
        assert store.get(a).display_name == "First"

    def test_failed_save_restores_properties(self, tree, maintainer, store):
        root, a, b = tree
        node = store.get(a)
        stale = store.get(a)
        maintainer.save(node.model_copy(update={"display_name": "Bumped"}))

        before = stale.properties
        stale.display_name = "Never"
        assert maintainer.save(stale) is False
        assert stale.properties is before

    def test_failed_save_does_not_ripple(self, tree, maintainer, store):
        root, a, b = tree
        stale = store.get(b)
        maintainer.save(store.get(b).model_copy(update={"ordering": 1}))
        root_version = store.get(root).version

        stale.display_name = "Never"
        maintainer.save(stale)
        assert maintainer.last_report.updated == []
        assert maintainer.last_report.events == []
        assert store.get(root).version == root_version


# ── Moves ────────────────────────────────────────────────────────────


class TestMove:
    @pytest.fixture
    def forest(self, make_node):
        """root -> a, root -> b -> c"""
        root = make_node("root")
        a = make_node("a", parent=root)
        b = make_node("b", parent=root)
        c = make_node("c", parent=b)
        return root, a, b, c

    def test_move_between_siblings(self, forest, maintainer, record_of, store):
        root, a, b, c = forest
        node = store.get(c)
        node.parent = a
        assert maintainer.save(node)

        assert record_of(b).children == {}
        assert record_of(b).children_ids == {}
        assert set(record_of(a).children) == {c}
        assert record_of(a).children_ids == {c: True}
        assert record_of(root).children_ids == {a: True, b: True, c: True}
        assert set(record_of(root).children[a].children) == {c}
        assert record_of(root).children[b].children == {}
        assert record_of(c).previous_parent == a

    def test_detach_runs_before_attach(self, forest, maintainer, store):
        root, a, b, c = forest
        node = store.get(c)
        node.parent = a
        maintainer.save(node)
        assert maintainer.last_report.updated == [b, root, a, root]

    def test_move_emits_move_detected(self, forest, maintainer, store, recorder):
        root, a, b, c = forest
        recorder.clear()
        node = store.get(c)
        node.parent = a
        maintainer.save(node)
        [event] = recorder.of(EventKind.move_detected)
        assert event.node_id == c
        assert event.related_id == b

    def test_move_to_top_level(self, forest, maintainer, store, record_of):
        root, a, b, c = forest
        node = store.get(c)
        node.parent = 0
        maintainer.save(node)
        assert record_of(b).children_ids == {}
        assert record_of(root).children_ids == {a: True, b: True}

    def test_move_from_top_level(self, forest, make_node, maintainer, store, record_of):
        root, a, b, c = forest
        loose = make_node("loose")
        node = store.get(loose)
        node.parent = a
        maintainer.save(node)
        assert record_of(a).children_ids == {loose: True}
        assert loose in record_of(root).children_ids

    def test_move_subtree_carries_descendants(self, forest, make_node, maintainer, store, record_of):
        root, a, b, c = forest
        d = make_node("d", parent=c)
        node = store.get(b)
        node.parent = a
        maintainer.save(node)
        assert record_of(a).children_ids == {b: True, c: True, d: True}
        assert record_of(root).children_ids == {a: True, b: True, c: True, d: True}
        assert set(record_of(root).children) == {a}

    def test_move_across_trees(self, make_node, maintainer, store, record_of):
        left = make_node("left")
        right = make_node("right")
        leaf = make_node("leaf", parent=left)
        node = store.get(leaf)
        node.parent = right
        maintainer.save(node)
        assert record_of(left).children_ids == {}
        assert record_of(right).children_ids == {leaf: True}

    def test_previous_parent_untracked_defaults_to_current(self, make_node, maintainer, store, record_of):
        """A node stored before the engine ran has no recorded previous parent."""
        root = make_node("root")
        raw = Node(parent=root, short_name="legacy")
        store.save(raw)
        assert maintainer.save(store.get(raw.id))
        assert maintainer.last_report.updated == [root]
        assert EventKind.move_detected not in [e.kind for e in maintainer.last_report.events]
        assert record_of(root).children_ids == {raw.id: True}


# ── Ancestor failures ────────────────────────────────────────────────


class TestAncestorFailures:
    def test_missing_parent_is_reported(self, make_node, maintainer, recorder):
        orphan = make_node("orphan", parent=999)
        [event] = recorder.of(EventKind.ancestor_missing)
        assert event.node_id == orphan
        assert event.related_id == 999
        assert maintainer.last_report.updated == []

    def test_conflict_is_retried(self):
        store = FlakyStore()
        recorder = EventRecorder()
        maintainer = HierarchyCacheMaintainer(store, CacheConfig(), sinks=[recorder])
        root = Node(short_name="root")
        maintainer.save(root)

        store.failures[root.id] = 1
        child = Node(parent=root.id, short_name="child")
        assert maintainer.save(child) is True
        assert len(recorder.of(EventKind.save_conflict)) == 1
        assert maintainer.last_report.updated == [root.id]
        assert not maintainer.last_report.failed
        assert child.id in read_record(store.get(root.id).properties).children_ids

    def test_exhausted_retries_report_failure(self):
        store = FlakyStore()
        recorder = EventRecorder()
        maintainer = HierarchyCacheMaintainer(store, CacheConfig(max_conflict_retries=2), sinks=[recorder])
        root = Node(short_name="root")
        maintainer.save(root)

        store.failures[root.id] = 10
        child = Node(parent=root.id, short_name="child")
        assert maintainer.save(child) is True
        assert len(recorder.of(EventKind.save_conflict)) == 2
        [failed] = recorder.of(EventKind.ancestor_save_failed)
        assert failed.node_id == child.id
        assert failed.related_id == root.id
        assert maintainer.last_report.failed
        assert read_record(store.get(root.id).properties).children_ids == {}

    def test_no_retries_when_disabled(self):
        store = FlakyStore()
        recorder = EventRecorder()
        maintainer = HierarchyCacheMaintainer(store, CacheConfig(max_conflict_retries=0), sinks=[recorder])
        root = Node(short_name="root")
        maintainer.save(root)

        store.failures[root.id] = 1
        maintainer.save(Node(parent=root.id, short_name="child"))
        assert recorder.of(EventKind.save_conflict) == []
        assert len(recorder.of(EventKind.ancestor_save_failed)) == 1

    def test_failed_hop_leaves_chain_repairable(self):
        store = FlakyStore()
        maintainer = HierarchyCacheMaintainer(store, CacheConfig(max_conflict_retries=0), sinks=[])
        root = Node(short_name="root")
        maintainer.save(root)
        store.failures[root.id] = 1
        child = Node(parent=root.id, short_name="child")
        maintainer.save(child)

        report = maintainer.propagate_upward(child.id)
        assert report.updated == [root.id]
        assert read_record(store.get(root.id).properties).children_ids == {child.id: True}


# ── Guards ───────────────────────────────────────────────────────────


class TestGuards:
    def test_cycle_is_detected(self, tree, maintainer, store, recorder):
        root, a, b = tree
        node = store.get(root)
        node.parent = b
        assert maintainer.save(node) is True
        assert EventKind.cycle_detected in recorder.kinds()
        assert maintainer.last_report.failed

    def test_cycle_terminates_with_two_nodes(self, make_node, maintainer, store, recorder):
        x = make_node("x")
        y = make_node("y", parent=x)
        node = store.get(x)
        node.parent = y
        maintainer.save(node)
        [event] = recorder.of(EventKind.cycle_detected)
        assert event.related_id == x

    def test_depth_limit_stops_chain(self, tree, store, recorder):
        root, a, b = tree
        shallow = HierarchyCacheMaintainer(store, CacheConfig(max_depth=1), sinks=[recorder])
        recorder.clear()
        node = store.get(b)
        node.display_name = "Deep"
        shallow.save(node)

        assert shallow.last_report.updated == [a]
        [event] = recorder.of(EventKind.depth_limit)
        assert event.node_id == a
        assert event.related_id == root
        assert shallow.last_report.failed


# ── propagate_upward ─────────────────────────────────────────────────


class TestPropagateUpward:
    def test_unknown_node_raises(self, maintainer):
        with pytest.raises(NodeNotFoundError) as exc_info:
            maintainer.propagate_upward(404)
        assert exc_info.value.node_id == 404

    def test_repairs_wiped_ancestor(self, tree, maintainer, store, record_of):
        root, a, b = tree
        node = store.get(root)
        node.properties = {}
        store.save(node)

        maintainer.propagate_upward(a)
        assert record_of(root).children_ids == {a: True, b: True}

    def test_sets_last_report(self, tree, maintainer):
        root, a, b = tree
        report = maintainer.propagate_upward(b)
        assert maintainer.last_report is report
        assert report.origin_id == b


# ── Read accessors ───────────────────────────────────────────────────


class TestAccessors:
    def test_get_descendant_ids(self, tree, maintainer, store):
        root, a, b = tree
        assert maintainer.get_descendant_ids(store.get(root)) == {a, b}
        assert maintainer.get_descendant_ids(store.get(b)) == set()

    def test_has_descendant(self, tree, maintainer, store):
        root, a, b = tree
        assert maintainer.has_descendant(store.get(root), b)
        assert not maintainer.has_descendant(store.get(b), root)

    def test_accessors_tolerate_missing_record(self, maintainer):
        node = Node(id=3, properties={"theme": "dark"})
        assert maintainer.get_descendant_ids(node) == set()
        assert maintainer.get_descendant_snapshot(node) == {}

    def test_custom_namespace(self, store):
        maintainer = HierarchyCacheMaintainer(store, CacheConfig(namespace="tree"), sinks=[])
        root = Node(short_name="root")
        maintainer.save(root)
        child = Node(parent=root.id, short_name="child")
        maintainer.save(child)
        stored = store.get(root.id)
        assert "hierarchy" not in stored.properties
        assert maintainer.get_descendant_ids(stored) == {child.id}


# ── Event sinks ──────────────────────────────────────────────────────


class TestSinks:
    def test_default_sink_logs(self, store, caplog):
        maintainer = HierarchyCacheMaintainer(store)
        with caplog.at_level(logging.WARNING, logger="arbor_core.hierarchy.events"):
            maintainer.save(Node(parent=77, short_name="orphan"))
        assert "ancestor_missing" in caplog.text

    def test_logging_sink_uses_debug_for_routine_events(self, caplog):
        sink = LoggingSink(logging.getLogger("arbor_test_sink"))
        with caplog.at_level(logging.DEBUG, logger="arbor_test_sink"):
            sink(PropagationEvent(kind=EventKind.root_reached, node_id=1))
        [rec] = caplog.records
        assert rec.levelno == logging.DEBUG

    def test_every_sink_receives_events(self, store):
        first, second = EventRecorder(), EventRecorder()
        maintainer = HierarchyCacheMaintainer(store, sinks=[first, second])
        maintainer.save(Node(short_name="root"))
        assert first.kinds() == second.kinds() != []

    def test_report_mirrors_sink(self, tree, maintainer, recorder, store):
        root, a, b = tree
        recorder.clear()
        node = store.get(b)
        node.ordering = 5
        maintainer.save(node)
        assert maintainer.last_report.events == recorder.events
