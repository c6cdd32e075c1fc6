"""Save-time maintenance of the cached descendant snapshots.

Saving a node compares its previous fingerprint with a fresh one. When they
differ, the node is detached from its previous parent (if it moved) and
attached to its current parent, and each ancestor written that way goes
through the same comparison. The ripple stops at the first ancestor whose
fingerprint does not change, or at a root.

The walk is an explicit LIFO worklist of hops rather than nested saves, so a
detach chain finishes before the pending attach for the same node runs, and
every chain carries the ids it has visited for cycle and depth checks.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from arbor_core.config.models import CacheConfig
from arbor_core.hierarchy.events import EventSink, LoggingSink
from arbor_core.hierarchy.fingerprint import compute_fingerprint
from arbor_core.hierarchy.models import (
    CacheRecord,
    EventKind,
    PropagationEvent,
    PropagationReport,
    SnapshotEntry,
)
from arbor_core.hierarchy.snapshot import (
    attach_child,
    detach_child,
    entry_for,
    read_record,
    write_record,
)
from arbor_core.interfaces.store import Node, NodeNotFoundError, NodeStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Hop:
    """A pending read-modify-write of one ancestor on behalf of one child.

    ``entry is None`` means detach the child; otherwise attach/replace it.
    """

    target_id: int
    child_id: int
    path: tuple[int, ...]
    entry: SnapshotEntry | None = None
    child_index: dict[int, bool] = field(default_factory=dict)


@dataclass(frozen=True)
class _Saved:
    changed: bool
    previous_parent: int
    record: CacheRecord


class HierarchyCacheMaintainer:
    """Keeps every ancestor's cache record in step with single-node writes."""

    def __init__(
        self,
        store: NodeStore,
        config: CacheConfig | None = None,
        sinks: Iterable[EventSink] | None = None,
    ) -> None:
        self._store = store
        self._config = config or CacheConfig()
        self._sinks: list[EventSink] = list(sinks) if sinks is not None else [LoggingSink()]
        self.last_report: PropagationReport | None = None

    @property
    def store(self) -> NodeStore:
        return self._store

    @property
    def config(self) -> CacheConfig:
        return self._config

    # ------------------------------------------------------------------
    # Save path
    # ------------------------------------------------------------------

    def save(self, node: Node) -> bool:
        """Persist *node* and ripple the change into its ancestors.

        Returns the store's verdict on the node's own write. Anything that
        goes wrong further up is reported through events, never raised.
        """
        report = PropagationReport(origin_id=node.id)
        self.last_report = report
        saved = self._persist(node, report)
        if saved is None:
            return False
        report.origin_id = node.id
        if saved.changed:
            self._drain(self._plan(node, saved.previous_parent, saved.record, (node.id,), report), report)
        return True

    def on_node_saved(self, node: Node) -> bool:
        """Hook for an event layer that already ran the store's native save.

        The node is written once more so its cache record reflects the save.
        """
        return self.save(node)

    def propagate_upward(self, node_id: int) -> PropagationReport:
        """Ripple a stored node into its parent chain, whatever its fingerprint says.

        Useful to repair one path after an earlier hop failed.
        """
        node = self._store.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        record = read_record(node.properties, self._config.namespace)
        previous_parent = record.previous_parent if record.previous_parent is not None else node.parent
        report = PropagationReport(origin_id=node_id)
        self.last_report = report
        self._drain(self._plan(node, previous_parent, record, (node_id,), report), report)
        return report

    # ------------------------------------------------------------------
    # Removal path
    # ------------------------------------------------------------------

    def on_node_removing(self, node: Node) -> PropagationReport:
        """Strip *node* from its parent's cache before the node is deleted.

        If an unsaved move is pending, the recorded previous parent is
        cleaned as well.
        """
        report = PropagationReport(origin_id=node.id)
        self.last_report = report
        if node.id is None:
            return report

        record = read_record(node.properties, self._config.namespace)
        hops: list[_Hop] = []
        if node.parent:
            hops.append(_Hop(target_id=node.parent, child_id=node.id, path=(node.id,)))
        else:
            self._emit(report, EventKind.root_reached, node.id)
        if record.previous_parent and record.previous_parent != node.parent:
            hops.append(_Hop(target_id=record.previous_parent, child_id=node.id, path=(node.id,)))
        self._drain(hops, report)
        return report

    def remove(self, node: Node) -> bool:
        """Clean the ancestors' caches, then delete *node* through the store.

        The delete runs even if the cleanup fails; a stale cache can be
        rebuilt, a node that refuses to die cannot.
        """
        self.last_report = PropagationReport(origin_id=node.id)
        try:
            self.on_node_removing(node)
        except Exception:
            logger.exception("Cache cleanup failed before removing node %s", node.id)
        removed = self._store.remove(node)
        if removed:
            self._emit(self.last_report, EventKind.node_removed, node.id, node.parent)
        return removed

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    def get_descendant_ids(self, node: Node) -> set[int]:
        """All descendant ids cached on *node*, without touching the store."""
        return set(read_record(node.properties, self._config.namespace).children_ids)

    def get_descendant_snapshot(self, node: Node) -> dict[int, SnapshotEntry]:
        """The nested descendant snapshot cached on *node*."""
        return dict(read_record(node.properties, self._config.namespace).children)

    def has_descendant(self, node: Node, candidate_id: int) -> bool:
        return candidate_id in read_record(node.properties, self._config.namespace).children_ids

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _persist(self, node: Node, report: PropagationReport) -> _Saved | None:
        """Refresh the node's fingerprint and previous parent, then write it.

        On a failed write the in-memory properties are put back, so the
        next attempt still compares against the last saved fingerprint.
        """
        namespace = self._config.namespace
        before = read_record(node.properties, namespace)
        previous_parent = before.previous_parent if before.previous_parent is not None else node.parent
        fingerprint = compute_fingerprint(node, before.children, self._config.algorithm)
        after = before.model_copy(update={"fingerprint": fingerprint, "previous_parent": node.parent})

        original = node.properties
        node.properties = write_record(original, after, namespace)
        if not self._store.save(node):
            node.properties = original
            return None

        changed = fingerprint != before.fingerprint
        kind = EventKind.fingerprint_mismatch if changed else EventKind.fingerprint_match
        self._emit(report, kind, node.id, detail=fingerprint[:12])
        return _Saved(changed=changed, previous_parent=previous_parent, record=after)

    def _plan(
        self,
        node: Node,
        previous_parent: int,
        record: CacheRecord,
        path: tuple[int, ...],
        report: PropagationReport,
    ) -> list[_Hop]:
        """Hops a changed node needs, attach first so the detach is popped first."""
        hops: list[_Hop] = []
        if node.parent:
            hops.append(
                _Hop(
                    target_id=node.parent,
                    child_id=node.id,
                    path=path,
                    entry=entry_for(node, record),
                    child_index=dict(record.children_ids),
                )
            )
        else:
            self._emit(report, EventKind.root_reached, node.id)

        if previous_parent != node.parent:
            self._emit(
                report,
                EventKind.move_detected,
                node.id,
                previous_parent,
                detail=f"{previous_parent} -> {node.parent}",
            )
            if previous_parent:
                hops.append(_Hop(target_id=previous_parent, child_id=node.id, path=path))
        return hops

    def _drain(self, stack: list[_Hop], report: PropagationReport) -> None:
        """Run hops until the worklist is empty."""
        while stack:
            hop = stack.pop()
            if hop.target_id in hop.path:
                self._emit(
                    report,
                    EventKind.cycle_detected,
                    hop.child_id,
                    hop.target_id,
                    detail=" -> ".join(str(i) for i in (*hop.path, hop.target_id)),
                )
                continue
            if len(hop.path) > self._config.max_depth:
                self._emit(report, EventKind.depth_limit, hop.child_id, hop.target_id)
                continue

            applied = self._apply(hop, report)
            if applied is None:
                continue
            ancestor, saved = applied
            report.updated.append(ancestor.id)
            if saved.changed:
                stack.extend(
                    self._plan(ancestor, saved.previous_parent, saved.record, (*hop.path, ancestor.id), report)
                )

    def _apply(self, hop: _Hop, report: PropagationReport) -> tuple[Node, _Saved] | None:
        """Load the hop's ancestor, edit its snapshot and save it.

        A rejected write is retried against a fresh copy, since another
        writer may have bumped the ancestor's version in between.
        """
        namespace = self._config.namespace
        attempts = self._config.max_conflict_retries + 1
        for attempt in range(1, attempts + 1):
            ancestor = self._store.get(hop.target_id)
            if ancestor is None:
                self._emit(report, EventKind.ancestor_missing, hop.child_id, hop.target_id)
                return None

            record = read_record(ancestor.properties, namespace)
            if hop.entry is None:
                record = detach_child(record, hop.child_id)
            else:
                record = attach_child(record, hop.child_id, hop.entry, hop.child_index)
            ancestor.properties = write_record(ancestor.properties, record, namespace)

            saved = self._persist(ancestor, report)
            if saved is not None:
                return ancestor, saved
            if attempt < attempts:
                self._emit(report, EventKind.save_conflict, hop.target_id, hop.child_id, detail=f"attempt {attempt}")

        self._emit(report, EventKind.ancestor_save_failed, hop.child_id, hop.target_id)
        return None

    def _emit(
        self,
        report: PropagationReport | None,
        kind: EventKind,
        node_id: int | None = None,
        related_id: int | None = None,
        detail: str = "",
    ) -> None:
        event = PropagationEvent(kind=kind, node_id=node_id, related_id=related_id, detail=detail)
        if report is not None:
            report.events.append(event)
        for sink in self._sinks:
            sink(event)
