"""Full rebuild and consistency check of the hierarchy cache.

Incremental maintenance is best-effort: a failed ancestor write or a node
moved before the engine was installed leaves stale entries behind. These
helpers recompute the truth from parent links alone.
"""

from __future__ import annotations

import logging
from collections import defaultdict

from pydantic import BaseModel, Field

from arbor_core.config.models import CacheConfig
from arbor_core.hierarchy.fingerprint import compute_fingerprint
from arbor_core.hierarchy.models import CacheRecord, SnapshotEntry
from arbor_core.hierarchy.snapshot import flatten, read_record, write_record
from arbor_core.interfaces.store import Node, NodeCatalog, NodeStore

logger = logging.getLogger(__name__)


class RebuildReport(BaseModel):
    """Outcome of rebuilding every cache record in a store."""

    rebuilt: list[int] = Field(default_factory=list)
    failed: list[int] = Field(default_factory=list)
    skipped: list[int] = Field(default_factory=list)


class StaleEntry(BaseModel):
    """A node whose cache record disagrees with the true tree."""

    node_id: int
    missing: list[int] = Field(default_factory=list)
    extra: list[int] = Field(default_factory=list)
    outdated: list[int] = Field(default_factory=list)
    diverged: bool = False


class ConsistencyReport(BaseModel):
    stale: list[StaleEntry] = Field(default_factory=list)
    cyclic: list[int] = Field(default_factory=list)
    total_nodes: int = 0

    @property
    def ok(self) -> bool:
        return not self.stale and not self.cyclic


def _children_map(nodes: dict[int, Node]) -> dict[int, list[int]]:
    children: dict[int, list[int]] = defaultdict(list)
    for node_id in sorted(nodes):
        children[nodes[node_id].parent].append(node_id)
    return children


def _reachable_post_order(nodes: dict[int, Node], children: dict[int, list[int]]) -> list[int]:
    """Ids reachable from a root, each listed after all of its descendants.

    A root is a node whose parent is 0 or absent from the store. Nodes on a
    parent cycle (and everything below them) are never reached.
    """
    roots = [i for i in sorted(nodes) if nodes[i].parent not in nodes]
    order: list[int] = []
    stack: list[tuple[int, bool]] = [(r, False) for r in reversed(roots)]
    while stack:
        node_id, expanded = stack.pop()
        if expanded:
            order.append(node_id)
            continue
        stack.append((node_id, True))
        for child_id in reversed(children.get(node_id, [])):
            stack.append((child_id, False))
    return order


def _snapshots(nodes: dict[int, Node], children: dict[int, list[int]], order: list[int]) -> dict[int, dict[int, SnapshotEntry]]:
    snapshots: dict[int, dict[int, SnapshotEntry]] = {}
    for node_id in order:
        snapshots[node_id] = {
            child_id: SnapshotEntry(
                short_name=nodes[child_id].short_name,
                display_name=nodes[child_id].display_name,
                published=nodes[child_id].published,
                ordering=nodes[child_id].ordering,
                children=snapshots[child_id],
            )
            for child_id in children.get(node_id, [])
        }
    return snapshots


def rebuild_caches(store: NodeStore, config: CacheConfig | None = None) -> RebuildReport:
    """Recompute every node's cache record bottom-up and write it back.

    *store* must also be a NodeCatalog. The written records are exact: the
    index holds precisely the snapshot's ids and ``previous_parent`` equals
    the current parent.
    """
    if not isinstance(store, NodeCatalog):
        raise TypeError(f"{type(store).__name__} cannot list its nodes")
    config = config or CacheConfig()
    nodes = {n.id: n for n in store.list_nodes() if n.id is not None}
    children = _children_map(nodes)
    order = _reachable_post_order(nodes, children)
    snapshots = _snapshots(nodes, children, order)

    report = RebuildReport()
    report.skipped = sorted(set(nodes) - set(order))
    for node_id in report.skipped:
        logger.warning("Skipping node %s: its parent chain loops", node_id)

    for node_id in order:
        node = nodes[node_id]
        snapshot = snapshots[node_id]
        record = CacheRecord(
            fingerprint=compute_fingerprint(node, snapshot, config.algorithm),
            previous_parent=node.parent,
            children=snapshot,
            children_ids=flatten(snapshot),
        )
        node.properties = write_record(node.properties, record, config.namespace)
        if store.save(node):
            report.rebuilt.append(node_id)
        else:
            logger.warning("Failed to write rebuilt cache for node %s", node_id)
            report.failed.append(node_id)
    return report


def check_consistency(catalog: NodeCatalog, config: CacheConfig | None = None) -> ConsistencyReport:
    """Compare every cached record with the tree implied by parent links.

    1. ``missing``: true descendants absent from the index.
    2. ``extra``: indexed ids that are not descendants (stale leftovers).
    3. ``outdated``: direct children whose cached entry lags their fields.
    4. ``diverged``: the index is not a superset of the snapshot's ids.
    """
    config = config or CacheConfig()
    nodes = {n.id: n for n in catalog.list_nodes() if n.id is not None}
    children = _children_map(nodes)
    order = _reachable_post_order(nodes, children)

    descendants: dict[int, set[int]] = {}
    for node_id in order:
        found: set[int] = set()
        for child_id in children.get(node_id, []):
            found.add(child_id)
            found |= descendants[child_id]
        descendants[node_id] = found

    report = ConsistencyReport(total_nodes=len(nodes), cyclic=sorted(set(nodes) - set(order)))
    for node_id in order:
        node = nodes[node_id]
        record = read_record(node.properties, config.namespace)
        indexed = set(record.children_ids)
        outdated = []
        for child_id in children.get(node_id, []):
            child = nodes[child_id]
            entry = record.children.get(child_id)
            if entry is None or (
                entry.short_name,
                entry.display_name,
                entry.published,
                entry.ordering,
            ) != (child.short_name, child.display_name, child.published, child.ordering):
                outdated.append(child_id)

        stale = StaleEntry(
            node_id=node_id,
            missing=sorted(descendants[node_id] - indexed),
            extra=sorted(indexed - descendants[node_id]),
            outdated=outdated,
            diverged=not set(flatten(record.children)) <= indexed,
        )
        if stale.missing or stale.extra or stale.outdated or stale.diverged:
            report.stale.append(stale)
    return report
