"""Sinks for propagation events."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from arbor_core.hierarchy.models import EventKind, PropagationEvent

logger = logging.getLogger(__name__)

# Kinds that mean the cache may now lag the true tree shape
_WARNING_KINDS = {
    EventKind.ancestor_missing,
    EventKind.ancestor_save_failed,
    EventKind.cycle_detected,
    EventKind.depth_limit,
}


@runtime_checkable
class EventSink(Protocol):
    """Receives every event the maintainer emits."""

    def __call__(self, event: PropagationEvent) -> None: ...


class LoggingSink:
    """Writes events through stdlib logging; problems at WARNING, the rest at DEBUG."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def __call__(self, event: PropagationEvent) -> None:
        level = logging.WARNING if event.kind in _WARNING_KINDS else logging.DEBUG
        self._log.log(
            level,
            "%s node=%s related=%s %s",
            event.kind.value,
            event.node_id,
            event.related_id,
            event.detail,
        )


class EventRecorder:
    """Keeps events in memory, mostly for tests and CLI summaries."""

    def __init__(self) -> None:
        self.events: list[PropagationEvent] = []

    def __call__(self, event: PropagationEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[EventKind]:
        return [e.kind for e in self.events]

    def of(self, kind: EventKind) -> list[PropagationEvent]:
        return [e for e in self.events if e.kind == kind]

    def clear(self) -> None:
        self.events.clear()
