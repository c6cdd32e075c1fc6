"""Hierarchy cache: fingerprints, descendant snapshots, and ripple maintenance."""

from arbor_core.hierarchy.events import EventRecorder, EventSink, LoggingSink
from arbor_core.hierarchy.fingerprint import canonical_snapshot, compute_fingerprint, compute_hash
from arbor_core.hierarchy.maintainer import HierarchyCacheMaintainer
from arbor_core.hierarchy.models import (
    CacheRecord,
    EventKind,
    PropagationEvent,
    PropagationReport,
    SnapshotEntry,
)
from arbor_core.hierarchy.rebuild import (
    ConsistencyReport,
    RebuildReport,
    StaleEntry,
    check_consistency,
    rebuild_caches,
)
from arbor_core.hierarchy.snapshot import (
    attach_child,
    detach_child,
    entry_for,
    flatten,
    read_record,
    write_record,
)

__all__ = [
    "CacheRecord",
    "ConsistencyReport",
    "EventKind",
    "EventRecorder",
    "EventSink",
    "HierarchyCacheMaintainer",
    "LoggingSink",
    "PropagationEvent",
    "PropagationReport",
    "RebuildReport",
    "SnapshotEntry",
    "StaleEntry",
    "attach_child",
    "canonical_snapshot",
    "check_consistency",
    "compute_fingerprint",
    "compute_hash",
    "detach_child",
    "entry_for",
    "flatten",
    "read_record",
    "rebuild_caches",
    "write_record",
]
