"""SQLite-backed Graph Store.

Nodes and edges live in two tables with foreign keys that cascade on node
delete. Upserts use ``INSERT ... ON CONFLICT DO UPDATE`` so re-ingesting
the same entity updates it in place. Traversal is a single recursive CTE
that walks edges in both directions and keeps the first level each node
is reached at.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable

from memory_graph.errors import (
    NodeTypeConflictError,
    ReferentialIntegrityError,
    StorageError,
)
from memory_graph.graph.store import (
    Direction,
    Edge,
    GraphStore,
    Node,
    Subgraph,
    dump_json,
    format_timestamp,
    load_json,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS memory_nodes (
  id TEXT PRIMARY KEY,
  type TEXT NOT NULL,
  properties TEXT NOT NULL DEFAULT '{}',
  source_info TEXT NOT NULL DEFAULT '{}',
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS memory_edges (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  type TEXT NOT NULL,
  from_node TEXT NOT NULL REFERENCES memory_nodes(id) ON DELETE CASCADE,
  to_node TEXT NOT NULL REFERENCES memory_nodes(id) ON DELETE CASCADE,
  properties TEXT NOT NULL DEFAULT '{}',
  source_info TEXT NOT NULL DEFAULT '{}',
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  UNIQUE(type, from_node, to_node)
);

CREATE INDEX IF NOT EXISTS idx_memory_nodes_type ON memory_nodes(type);
CREATE INDEX IF NOT EXISTS idx_memory_edges_type ON memory_edges(type);
CREATE INDEX IF NOT EXISTS idx_memory_edges_from ON memory_edges(from_node);
CREATE INDEX IF NOT EXISTS idx_memory_edges_to ON memory_edges(to_node);
"""

# updated_at never moves backwards, even if the wall clock does.
_UPSERT_NODE = """
INSERT INTO memory_nodes (id, type, properties, source_info, created_at, updated_at)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
  type = excluded.type,
  properties = excluded.properties,
  source_info = excluded.source_info,
  updated_at = MAX(memory_nodes.updated_at, excluded.updated_at)
"""

_UPSERT_EDGE = """
INSERT INTO memory_edges (type, from_node, to_node, properties, source_info, created_at, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(type, from_node, to_node) DO UPDATE SET
  properties = excluded.properties,
  source_info = excluded.source_info,
  updated_at = MAX(memory_edges.updated_at, excluded.updated_at)
"""


def _reach_cte(seed_count: int, filter_type: bool) -> str:
    """Recursive CTE producing ``first_reached(node_id, edge_type, level)``."""
    placeholders = ", ".join("?" for _ in range(seed_count))
    type_filter = " AND e.type = ?" if filter_type else ""
    return f"""
    WITH RECURSIVE reach(node_id, edge_type, level) AS (
      SELECT id, '', 0 FROM memory_nodes WHERE id IN ({placeholders})
      UNION
      SELECT
        CASE WHEN e.from_node = r.node_id THEN e.to_node ELSE e.from_node END,
        e.type,
        r.level + 1
      FROM reach r
      JOIN memory_edges e ON (e.from_node = r.node_id OR e.to_node = r.node_id)
      WHERE r.level < ?{type_filter}
    ),
    first_reached AS (
      SELECT node_id, edge_type, level
      FROM (
        SELECT node_id, edge_type, level,
               ROW_NUMBER() OVER (PARTITION BY node_id ORDER BY level, edge_type) AS rn
        FROM reach
      )
      WHERE rn = 1
    )
    """


def _row_to_node(row: sqlite3.Row) -> Node:
    keys = row.keys()
    node = Node(
        id=row["id"],
        type=row["type"],
        properties=load_json(row["properties"]),
        source_info=load_json(row["source_info"]),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )
    if "level" in keys:
        node.level = row["level"]
        node.edge_type = row["edge_type"] or None
    return node


def _row_to_edge(row: sqlite3.Row) -> Edge:
    return Edge(
        id=row["id"],
        type=row["type"],
        from_node=row["from_node"],
        to_node=row["to_node"],
        properties=load_json(row["properties"]),
        source_info=load_json(row["source_info"]),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


class SqliteGraphStore(GraphStore):
    """Graph Store on a single SQLite database file (or ``":memory:"``).

    One connection is held for the lifetime of the store so that in-memory
    databases survive between calls.
    """

    def __init__(self, path: str | Path, strict_node_types: bool = False):
        super().__init__(strict_node_types=strict_node_types)
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._con = sqlite3.connect(self.path, check_same_thread=False)
        self._con.row_factory = sqlite3.Row
        self._con.execute("PRAGMA foreign_keys=ON")
        self.init_schema()

    def init_schema(self) -> None:
        with self._errors("init_schema"):
            self._con.executescript(SCHEMA)
            self._con.commit()

    def close(self) -> None:
        self._con.close()

    @contextmanager
    def _errors(self, operation: str):
        """Translate sqlite3 exceptions into StorageError subclasses."""
        try:
            yield
        except sqlite3.IntegrityError as e:
            if "FOREIGN KEY" in str(e).upper():
                raise ReferentialIntegrityError(f"{operation}: {e}") from e
            logger.error(f"SQLite {operation} failed: {e}")
            raise StorageError(str(e)) from e
        except sqlite3.Error as e:
            logger.error(f"SQLite {operation} failed: {e}")
            raise StorageError(str(e)) from e

    # ------------------------------------------------------------------ #
    #  Nodes                                                              #
    # ------------------------------------------------------------------ #

    def upsert_node(
        self,
        node_id: str,
        node_type: str,
        properties: dict | None = None,
        source_info: dict | None = None,
    ) -> Node:
        now = format_timestamp(utcnow())
        with self._errors("upsert_node"), self._con:
            existing = self._con.execute(
                "SELECT type FROM memory_nodes WHERE id = ?", (node_id,)
            ).fetchone()
            if existing is not None and existing["type"] != node_type:
                if self.strict_node_types:
                    raise NodeTypeConflictError(node_id, existing["type"], node_type)
                logger.warning(
                    f"Overwriting type of node {node_id!r}: "
                    f"{existing['type']} -> {node_type}"
                )
            self._con.execute(
                _UPSERT_NODE,
                (
                    node_id,
                    node_type,
                    dump_json(properties),
                    dump_json(source_info),
                    now,
                    now,
                ),
            )
            row = self._con.execute(
                "SELECT * FROM memory_nodes WHERE id = ?", (node_id,)
            ).fetchone()
        return _row_to_node(row)

    def get_node(self, node_id: str) -> Node | None:
        with self._errors("get_node"):
            row = self._con.execute(
                "SELECT * FROM memory_nodes WHERE id = ?", (node_id,)
            ).fetchone()
        return _row_to_node(row) if row else None

    def get_nodes_by_type(self, node_type: str, limit: int = 100) -> list[Node]:
        with self._errors("get_nodes_by_type"):
            rows = self._con.execute(
                "SELECT * FROM memory_nodes WHERE type = ? ORDER BY id LIMIT ?",
                (node_type, limit),
            ).fetchall()
        return [_row_to_node(r) for r in rows]

    def delete_node(self, node_id: str) -> bool:
        with self._errors("delete_node"), self._con:
            cur = self._con.execute("DELETE FROM memory_nodes WHERE id = ?", (node_id,))
        return cur.rowcount > 0

    # ------------------------------------------------------------------ #
    #  Edges                                                              #
    # ------------------------------------------------------------------ #

    def upsert_edge(
        self,
        edge_type: str,
        from_node: str,
        to_node: str,
        properties: dict | None = None,
        source_info: dict | None = None,
    ) -> Edge:
        now = format_timestamp(utcnow())
        with self._errors(f"upsert_edge {edge_type} {from_node} -> {to_node}"), self._con:
            self._con.execute(
                _UPSERT_EDGE,
                (
                    edge_type,
                    from_node,
                    to_node,
                    dump_json(properties),
                    dump_json(source_info),
                    now,
                    now,
                ),
            )
            row = self._con.execute(
                "SELECT * FROM memory_edges WHERE type = ? AND from_node = ? AND to_node = ?",
                (edge_type, from_node, to_node),
            ).fetchone()
        return _row_to_edge(row)

    def get_edges_by_node(
        self, node_id: str, direction: Direction | str = Direction.BOTH
    ) -> list[Edge]:
        direction = Direction(direction)
        if direction is Direction.OUTGOING:
            query, params = "SELECT * FROM memory_edges WHERE from_node = ?", (node_id,)
        elif direction is Direction.INCOMING:
            query, params = "SELECT * FROM memory_edges WHERE to_node = ?", (node_id,)
        else:
            query = "SELECT * FROM memory_edges WHERE from_node = ? OR to_node = ?"
            params = (node_id, node_id)

        with self._errors("get_edges_by_node"):
            rows = self._con.execute(query + " ORDER BY id", params).fetchall()
        return [_row_to_edge(r) for r in rows]

    def get_edges_by_type(self, edge_type: str, limit: int = 100) -> list[Edge]:
        with self._errors("get_edges_by_type"):
            rows = self._con.execute(
                "SELECT * FROM memory_edges WHERE type = ? ORDER BY id LIMIT ?",
                (edge_type, limit),
            ).fetchall()
        return [_row_to_edge(r) for r in rows]

    # ------------------------------------------------------------------ #
    #  Traversal                                                          #
    # ------------------------------------------------------------------ #

    def get_neighbors(
        self, node_id: str, edge_type: str | None = None, hops: int = 1
    ) -> list[Node]:
        query = _reach_cte(1, edge_type is not None) + """
        SELECT n.*, f.level AS level, f.edge_type AS edge_type
        FROM first_reached f
        JOIN memory_nodes n ON n.id = f.node_id
        WHERE f.level > 0
        ORDER BY f.level, n.id
        """
        params: list = [node_id, hops]
        if edge_type is not None:
            params.append(edge_type)

        with self._errors("get_neighbors"):
            rows = self._con.execute(query, params).fetchall()
        return [_row_to_node(r) for r in rows]

    def get_subgraph(self, node_ids: Iterable[str], max_hops: int = 2) -> Subgraph:
        seeds = list(dict.fromkeys(node_ids))
        if not seeds:
            return Subgraph()

        cte = _reach_cte(len(seeds), False)
        params = [*seeds, max_hops]
        node_query = cte + """
        SELECT n.* FROM first_reached f
        JOIN memory_nodes n ON n.id = f.node_id
        ORDER BY n.id
        """
        edge_query = cte + """
        SELECT e.* FROM memory_edges e
        WHERE e.from_node IN (SELECT node_id FROM first_reached)
          AND e.to_node IN (SELECT node_id FROM first_reached)
        ORDER BY e.id
        """

        with self._errors("get_subgraph"):
            node_rows = self._con.execute(node_query, params).fetchall()
            edge_rows = self._con.execute(edge_query, params).fetchall()
        return Subgraph(
            nodes=[_row_to_node(r) for r in node_rows],
            edges=[_row_to_edge(r) for r in edge_rows],
        )

    # ------------------------------------------------------------------ #
    #  Stats                                                              #
    # ------------------------------------------------------------------ #

    def count_nodes(self) -> dict[str, int]:
        with self._errors("count_nodes"):
            rows = self._con.execute(
                "SELECT type, COUNT(*) AS n FROM memory_nodes GROUP BY type ORDER BY type"
            ).fetchall()
        return {r["type"]: r["n"] for r in rows}

    def count_edges(self) -> dict[str, int]:
        with self._errors("count_edges"):
            rows = self._con.execute(
                "SELECT type, COUNT(*) AS n FROM memory_edges GROUP BY type ORDER BY type"
            ).fetchall()
        return {r["type"]: r["n"] for r in rows}
