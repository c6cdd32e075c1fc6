"""NodeStore implementation backed by a local SQLite database."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path

from arbor_core.config.models import StoreConfig
from arbor_core.interfaces.store import Node

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS nodes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    parent INTEGER NOT NULL DEFAULT 0,
    short_name TEXT NOT NULL DEFAULT '',
    display_name TEXT NOT NULL DEFAULT '',
    ordering INTEGER NOT NULL DEFAULT 0,
    published INTEGER NOT NULL DEFAULT 0,
    properties_json TEXT NOT NULL DEFAULT '{}',
    version INTEGER NOT NULL DEFAULT 1
);
CREATE INDEX IF NOT EXISTS idx_nodes_parent ON nodes(parent);
"""

_COLUMNS = "id, parent, short_name, display_name, ordering, published, properties_json, version"


class SQLiteNodeStore:
    """NodeStore implementation using SQLite with WAL mode.

    Every update is a compare-and-swap on the ``version`` column, so two
    writers that loaded the same row cannot silently overwrite each other:
    the second one gets ``False`` back and must re-read.
    """

    def __init__(self, db_path: str = ".arbor/nodes.db") -> None:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        self.db_path = str(path)
        # isolation_level=None => autocommit mode; each statement is its own
        # transaction, which is all single-row writes need.
        self._conn = sqlite3.connect(self.db_path, isolation_level=None, timeout=5)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    @classmethod
    def from_config(cls, config: StoreConfig) -> SQLiteNodeStore:
        return cls(db_path=config.db_path)

    # -- helpers ---------------------------------------------------------------

    def _row_to_node(self, row: tuple) -> Node:
        id_, parent, short_name, display_name, ordering, published, properties_json, version = row
        return Node(
            id=id_,
            parent=parent,
            short_name=short_name,
            display_name=display_name,
            ordering=ordering,
            published=bool(published),
            properties=json.loads(properties_json),
            version=version,
        )

    def _values(self, node: Node) -> tuple:
        return (
            node.parent,
            node.short_name,
            node.display_name,
            node.ordering,
            int(node.published),
            json.dumps(node.properties),
        )

    # -- NodeStore protocol ----------------------------------------------------

    def get(self, node_id: int) -> Node | None:
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM nodes WHERE id = ?", (node_id,)
        ).fetchone()
        return self._row_to_node(row) if row is not None else None

    def save(self, node: Node) -> bool:
        """Insert or update *node*; False if its version is stale.

        New rows get their id from SQLite unless the caller supplied one.
        """
        if node.id is None:
            cursor = self._conn.execute(
                "INSERT INTO nodes (parent, short_name, display_name, ordering, published, "
                "properties_json, version) VALUES (?, ?, ?, ?, ?, ?, 1)",
                self._values(node),
            )
            node.id = cursor.lastrowid
            node.version = 1
            return True

        cursor = self._conn.execute(
            "UPDATE nodes SET parent = ?, short_name = ?, display_name = ?, ordering = ?, "
            "published = ?, properties_json = ?, version = version + 1 "
            "WHERE id = ? AND version = ?",
            (*self._values(node), node.id, node.version),
        )
        if cursor.rowcount == 1:
            node.version += 1
            return True

        exists = self._conn.execute("SELECT 1 FROM nodes WHERE id = ?", (node.id,)).fetchone()
        if exists is not None:
            return False

        self._conn.execute(
            "INSERT INTO nodes (id, parent, short_name, display_name, ordering, published, "
            "properties_json, version) VALUES (?, ?, ?, ?, ?, ?, ?, 1)",
            (node.id, *self._values(node)),
        )
        node.version = 1
        return True

    def remove(self, node: Node) -> bool:
        if node.id is None:
            return False
        cursor = self._conn.execute("DELETE FROM nodes WHERE id = ?", (node.id,))
        return cursor.rowcount == 1

    # -- NodeCatalog protocol --------------------------------------------------

    def list_nodes(self) -> list[Node]:
        rows = self._conn.execute(f"SELECT {_COLUMNS} FROM nodes ORDER BY id ASC").fetchall()
        return [self._row_to_node(r) for r in rows]

    # -- extras ----------------------------------------------------------------

    def stats(self) -> dict[str, int]:
        """Count nodes overall, at the top level, and published."""
        total, roots, published = self._conn.execute(
            "SELECT COUNT(*), "
            "COALESCE(SUM(CASE WHEN parent = 0 THEN 1 ELSE 0 END), 0), "
            "COALESCE(SUM(published), 0) FROM nodes"
        ).fetchone()
        return {"total": total, "roots": roots, "published": published}

    def close(self) -> None:
        self._conn.close()
