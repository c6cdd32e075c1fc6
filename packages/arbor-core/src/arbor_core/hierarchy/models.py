"""Data models for the hierarchy cache."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SnapshotEntry(BaseModel):
    """One descendant as cached on an ancestor, with its own subtree nested inside."""

    model_config = ConfigDict(frozen=True)

    short_name: str = ""
    display_name: str = ""
    published: bool = False
    ordering: int = 0
    children: dict[int, SnapshotEntry] = Field(default_factory=dict)


SnapshotEntry.model_rebuild()


class CacheRecord(BaseModel):
    """The engine's reserved section of a node's properties blob.

    ``children`` is the descendant snapshot (every descendant, nested) and
    ``children_ids`` the flattened index over it. ``fingerprint`` and
    ``previous_parent`` describe the node as of its last successful save.
    """

    model_config = ConfigDict(frozen=True)

    fingerprint: str | None = None
    previous_parent: int | None = None
    children: dict[int, SnapshotEntry] = Field(default_factory=dict)
    children_ids: dict[int, bool] = Field(default_factory=dict)


class EventKind(str, Enum):
    """Decision points of the propagation algorithm."""

    fingerprint_match = "fingerprint_match"
    fingerprint_mismatch = "fingerprint_mismatch"
    move_detected = "move_detected"
    ancestor_missing = "ancestor_missing"
    ancestor_save_failed = "ancestor_save_failed"
    save_conflict = "save_conflict"
    root_reached = "root_reached"
    cycle_detected = "cycle_detected"
    depth_limit = "depth_limit"
    node_removed = "node_removed"


class PropagationEvent(BaseModel):
    """A single structured observation emitted while maintaining the cache."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    node_id: int | None = None
    related_id: int | None = None
    detail: str = ""


class PropagationReport(BaseModel):
    """What one ripple did: ancestors written, in order, and the events seen."""

    origin_id: int | None = None
    updated: list[int] = Field(default_factory=list)
    events: list[PropagationEvent] = Field(default_factory=list)

    @property
    def failed(self) -> bool:
        return any(
            e.kind in (EventKind.ancestor_save_failed, EventKind.cycle_detected, EventKind.depth_limit)
            for e in self.events
        )
