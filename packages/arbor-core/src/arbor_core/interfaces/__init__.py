"""Plugin interfaces for Arbor node stores."""

from arbor_core.interfaces.store import Node, NodeCatalog, NodeNotFoundError, NodeStore

__all__ = [
    "Node",
    "NodeCatalog",
    "NodeNotFoundError",
    "NodeStore",
]
