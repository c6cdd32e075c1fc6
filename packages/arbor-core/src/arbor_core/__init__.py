"""Arbor Core - cached descendant snapshots kept consistent by save-time ripples."""

from arbor_core.config import ArborConfig, load_config
from arbor_core.hierarchy import (
    CacheRecord,
    HierarchyCacheMaintainer,
    SnapshotEntry,
    check_consistency,
    compute_fingerprint,
    flatten,
    rebuild_caches,
)
from arbor_core.interfaces import Node, NodeCatalog, NodeNotFoundError, NodeStore

__version__ = "0.1.0"

__all__ = [
    "ArborConfig",
    "CacheRecord",
    "HierarchyCacheMaintainer",
    "Node",
    "NodeCatalog",
    "NodeNotFoundError",
    "NodeStore",
    "SnapshotEntry",
    "check_consistency",
    "compute_fingerprint",
    "flatten",
    "load_config",
    "rebuild_caches",
]
