"""Descendant snapshot handling: the blob boundary, flattening, and child edits."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from arbor_core.hierarchy.models import CacheRecord, SnapshotEntry
from arbor_core.interfaces.store import Node

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "hierarchy"


# ------------------------------------------------------------------
# Blob boundary
# ------------------------------------------------------------------


def read_record(properties: Mapping[str, Any], namespace: str = DEFAULT_NAMESPACE) -> CacheRecord:
    """Parse the cache record out of a properties blob.

    A missing or unreadable section yields an empty record; the next save
    then rewrites it from scratch.
    """
    raw = properties.get(namespace)
    if not raw:
        return CacheRecord()
    try:
        return CacheRecord.model_validate(raw)
    except ValidationError as e:
        logger.warning("Discarding unreadable cache record under %r: %s", namespace, e)
        return CacheRecord()


def write_record(
    properties: Mapping[str, Any],
    record: CacheRecord,
    namespace: str = DEFAULT_NAMESPACE,
) -> dict[str, Any]:
    """Return a copy of *properties* with *record* stored under *namespace*.

    Every other key is carried over unchanged.
    """
    updated = dict(properties)
    updated[namespace] = record.model_dump(mode="json")
    return updated


# ------------------------------------------------------------------
# Flattening
# ------------------------------------------------------------------


def flatten(
    snapshot: Mapping[int, SnapshotEntry],
    existing: Mapping[int, bool] | None = None,
) -> dict[int, bool]:
    """Collect every id at any depth of *snapshot* into an ``{id: True}`` index.

    Merges into a copy of *existing* and never drops entries from it.
    """
    index = dict(existing or {})
    stack = [snapshot]
    while stack:
        level = stack.pop()
        for node_id, entry in level.items():
            index[node_id] = True
            if entry.children:
                stack.append(entry.children)
    return index


# ------------------------------------------------------------------
# Child edits
# ------------------------------------------------------------------


def entry_for(node: Node, record: CacheRecord) -> SnapshotEntry:
    """The entry a node contributes to its parent's snapshot."""
    return SnapshotEntry(
        short_name=node.short_name,
        display_name=node.display_name,
        published=node.published,
        ordering=node.ordering,
        children=record.children,
    )


def attach_child(
    record: CacheRecord,
    child_id: int,
    entry: SnapshotEntry,
    child_index: Mapping[int, bool],
) -> CacheRecord:
    """Insert or replace a child's entry and re-derive the index around it.

    The child's own index is merged in so ids it still tracks keep
    rippling upward.
    """
    children = dict(record.children)
    children[child_id] = entry
    return record.model_copy(
        update={"children": children, "children_ids": flatten(children, child_index)}
    )


def detach_child(record: CacheRecord, child_id: int) -> CacheRecord:
    """Drop a child from the snapshot and rebuild the index from what remains."""
    children = {k: v for k, v in record.children.items() if k != child_id}
    return record.model_copy(update={"children": children, "children_ids": flatten(children)})
