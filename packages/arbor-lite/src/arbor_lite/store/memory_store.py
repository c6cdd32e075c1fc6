"""NodeStore implementation held entirely in process memory."""

from __future__ import annotations

from arbor_core.config.models import StoreConfig
from arbor_core.interfaces.store import Node


class InMemoryNodeStore:
    """Dict-backed store with autoincrement ids and version checks.

    Nodes are deep-copied on the way in and out, so a caller's object never
    aliases stored state and a stale copy cannot overwrite a newer one.
    """

    def __init__(self) -> None:
        self._nodes: dict[int, Node] = {}
        self._next_id = 1

    @classmethod
    def from_config(cls, config: StoreConfig) -> InMemoryNodeStore:
        return cls()

    # -- NodeStore protocol ----------------------------------------------------

    def get(self, node_id: int) -> Node | None:
        node = self._nodes.get(node_id)
        return node.model_copy(deep=True) if node is not None else None

    def save(self, node: Node) -> bool:
        """Insert or update *node*; False if its version is stale."""
        if node.id is None:
            node.id = self._next_id
        elif node.id in self._nodes and self._nodes[node.id].version != node.version:
            return False

        node.version += 1
        self._nodes[node.id] = node.model_copy(deep=True)
        self._next_id = max(self._next_id, node.id + 1)
        return True

    def remove(self, node: Node) -> bool:
        if node.id is None:
            return False
        return self._nodes.pop(node.id, None) is not None

    # -- NodeCatalog protocol --------------------------------------------------

    def list_nodes(self) -> list[Node]:
        return [self._nodes[i].model_copy(deep=True) for i in sorted(self._nodes)]

    # -- extras ----------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes
