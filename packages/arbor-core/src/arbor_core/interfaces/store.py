"""Node store interface and the node model it persists."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field


class NodeNotFoundError(LookupError):
    """Raised when a node id does not resolve in the store."""

    def __init__(self, node_id: int) -> None:
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class Node(BaseModel):
    """A tree node as held by a NodeStore.

    Mutable: fields are edited in place and written back with ``save``.
    ``parent == 0`` means the node sits at the top of its tree. ``version``
    is managed by the store and used to reject stale writes.
    """

    id: int | None = Field(default=None, gt=0)
    parent: int = Field(default=0, ge=0)
    short_name: str = ""
    display_name: str = ""
    ordering: int = 0
    published: bool = False
    properties: dict[str, Any] = Field(default_factory=dict)
    version: int = Field(default=0, ge=0)


@runtime_checkable
class NodeStore(Protocol):
    """Single-node persistence: the only operations the cache engine relies on."""

    def get(self, node_id: int) -> Node | None: ...

    def save(self, node: Node) -> bool: ...

    def remove(self, node: Node) -> bool: ...


@runtime_checkable
class NodeCatalog(Protocol):
    """Full enumeration of stored nodes, used by repair tooling."""

    def list_nodes(self) -> list[Node]: ...
