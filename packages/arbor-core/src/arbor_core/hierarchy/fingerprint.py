"""Fingerprints over a node's structurally relevant state."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping

from arbor_core.hierarchy.models import SnapshotEntry
from arbor_core.interfaces.store import Node


def compute_hash(content: bytes, algorithm: str = "sha256") -> str:
    """Hex digest of *content* with the named hashlib algorithm."""
    return hashlib.new(algorithm, content).hexdigest()


def canonical_snapshot(children: Mapping[int, SnapshotEntry]) -> str:
    """Serialize a descendant snapshot so equal trees give equal strings.

    Keys are stringified before sorting, so a snapshot read back from JSON
    storage (string keys) serializes exactly like one built in memory.
    """
    data = {str(k): v.model_dump(mode="json") for k, v in children.items()}
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


def compute_fingerprint(
    node: Node,
    children: Mapping[int, SnapshotEntry],
    algorithm: str = "sha256",
) -> str:
    """Fingerprint a node from its parent, names, ordering, publication flag and snapshot.

    The parent must be part of it: a move is what makes an unchanged child
    ripple into its new (and old) ancestors.
    """
    payload = json.dumps(
        [
            node.parent,
            node.short_name,
            node.display_name,
            node.ordering,
            node.published,
        ],
        separators=(",", ":"),
    )
    return compute_hash(f"{payload}|{canonical_snapshot(children)}".encode(), algorithm)
