"""Neo4j-backed Graph Store using idempotent MERGE writes.

Nodes are ``(:MemoryNode {id, type, ...})``; each edge is a relationship
whose Neo4j type is the edge type. Nested property maps are stored as JSON
strings because Neo4j properties cannot hold maps. All writes use MERGE
(never CREATE), so replaying an ingestion produces the same graph state.
"""

import logging
import re
from contextlib import contextmanager
from typing import Iterable

from neo4j import GraphDatabase
from neo4j.exceptions import DriverError, Neo4jError

from memory_graph.config import Config
from memory_graph.errors import (
    NodeTypeConflictError,
    ReferentialIntegrityError,
    StorageError,
)
from memory_graph.graph.schema import NODE_LABEL, create_schema
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
from memory_graph.graph.traversal import expand_levels

logger = logging.getLogger(__name__)

# Relationship types cannot be query parameters, so they are interpolated
# and must look like an identifier.
_EDGE_TYPE_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")

_EDGE_RETURN = (
    "RETURN elementId(r) AS id, type(r) AS type, a.id AS from_node, "
    "b.id AS to_node, r.properties_json AS properties_json, "
    "r.source_info_json AS source_info_json, "
    "r.created_at AS created_at, r.updated_at AS updated_at"
)


def _check_edge_type(edge_type: str) -> str:
    if not _EDGE_TYPE_RE.match(edge_type or ""):
        raise ValueError(f"Invalid edge type for Neo4j: {edge_type!r}")
    return edge_type


def _record_to_node(data) -> Node:
    data = dict(data)
    return Node(
        id=data["id"],
        type=data["type"],
        properties=load_json(data.get("properties_json")),
        source_info=load_json(data.get("source_info_json")),
        created_at=parse_timestamp(data.get("created_at")),
        updated_at=parse_timestamp(data.get("updated_at")),
    )


def _record_to_edge(record) -> Edge:
    return Edge(
        id=record["id"],
        type=record["type"],
        from_node=record["from_node"],
        to_node=record["to_node"],
        properties=load_json(record["properties_json"]),
        source_info=load_json(record["source_info_json"]),
        created_at=parse_timestamp(record["created_at"]),
        updated_at=parse_timestamp(record["updated_at"]),
    )


class Neo4jGraphStore(GraphStore):
    """Graph Store on a Neo4j database."""

    def __init__(
        self,
        driver,
        database: str | None = None,
        strict_node_types: bool = False,
    ):
        super().__init__(strict_node_types=strict_node_types)
        self.driver = driver
        self.database = database

    @classmethod
    def from_config(cls, config: Config) -> "Neo4jGraphStore":
        driver = GraphDatabase.driver(
            config.neo4j_uri,
            auth=(config.neo4j_user, config.neo4j_password),
        )
        return cls(
            driver,
            database=config.neo4j_database,
            strict_node_types=config.strict_node_types,
        )

    def init_schema(self) -> None:
        with self._errors("init_schema"):
            create_schema(self.driver, self.database)

    def close(self) -> None:
        """Close the Neo4j driver connection."""
        self.driver.close()

    @contextmanager
    def _errors(self, operation: str):
        try:
            yield
        except (Neo4jError, DriverError) as e:
            logger.error(f"Neo4j {operation} failed: {e}")
            raise StorageError(str(e)) from e

    def _write(self, fn, *args):
        with self._errors(fn.__name__), self.driver.session(database=self.database) as session:
            return session.execute_write(fn, *args)

    def _read(self, fn, *args):
        with self._errors(fn.__name__), self.driver.session(database=self.database) as session:
            return session.execute_read(fn, *args)

    # ------------------------------------------------------------------ #
    #  Transaction functions (used with session.execute_write/read)       #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _merge_node(tx, node_id, node_type, props, source_info, now, strict):
        existing = tx.run(
            f"MATCH (n:{NODE_LABEL} {{id: $id}}) RETURN n.type AS type",
            id=node_id,
        ).single()
        if existing is not None and existing["type"] != node_type:
            if strict:
                raise NodeTypeConflictError(node_id, existing["type"], node_type)
            logger.warning(
                f"Overwriting type of node {node_id!r}: {existing['type']} -> {node_type}"
            )

        record = tx.run(
            f"MERGE (n:{NODE_LABEL} {{id: $id}}) "
            "ON CREATE SET n.created_at = $now "
            "SET n.type = $type, "
            "    n.properties_json = $props, "
            "    n.source_info_json = $source_info, "
            "    n.updated_at = CASE WHEN n.updated_at IS NULL OR n.updated_at < $now "
            "                        THEN $now ELSE n.updated_at END "
            "RETURN n",
            id=node_id,
            type=node_type,
            props=props,
            source_info=source_info,
            now=now,
        ).single()
        return dict(record["n"])

    @staticmethod
    def _merge_edge(tx, edge_type, from_node, to_node, props, source_info, now):
        record = tx.run(
            f"MATCH (a:{NODE_LABEL} {{id: $from_node}}) "
            f"MATCH (b:{NODE_LABEL} {{id: $to_node}}) "
            f"MERGE (a)-[r:{edge_type}]->(b) "
            "ON CREATE SET r.created_at = $now "
            "SET r.properties_json = $props, "
            "    r.source_info_json = $source_info, "
            "    r.updated_at = CASE WHEN r.updated_at IS NULL OR r.updated_at < $now "
            "                        THEN $now ELSE r.updated_at END "
            + _EDGE_RETURN,
            from_node=from_node,
            to_node=to_node,
            props=props,
            source_info=source_info,
            now=now,
        ).single()
        return None if record is None else dict(record)

    @staticmethod
    def _fetch_nodes(tx, ids: list[str]):
        result = tx.run(
            f"MATCH (n:{NODE_LABEL}) WHERE n.id IN $ids RETURN n ORDER BY n.id",
            ids=ids,
        )
        return [dict(r["n"]) for r in result]

    @staticmethod
    def _fetch_nodes_by_type(tx, node_type: str, limit: int):
        result = tx.run(
            f"MATCH (n:{NODE_LABEL} {{type: $type}}) RETURN n ORDER BY n.id LIMIT $limit",
            type=node_type,
            limit=limit,
        )
        return [dict(r["n"]) for r in result]

    @staticmethod
    def _detach_delete(tx, node_id: str):
        record = tx.run(
            f"MATCH (n:{NODE_LABEL} {{id: $id}}) DETACH DELETE n RETURN count(*) AS deleted",
            id=node_id,
        ).single()
        return record["deleted"] if record else 0

    @staticmethod
    def _fetch_edges(tx, query: str, params: dict):
        return [dict(r) for r in tx.run(query, **params)]

    @staticmethod
    def _expand(tx, frontier: list[str], edge_type: str | None):
        result = tx.run(
            f"MATCH (n:{NODE_LABEL})-[r]-(m:{NODE_LABEL}) "
            "WHERE n.id IN $frontier AND ($edge_type IS NULL OR type(r) = $edge_type) "
            "RETURN DISTINCT m.id AS id, type(r) AS edge_type",
            frontier=frontier,
            edge_type=edge_type,
        )
        return [(r["id"], r["edge_type"]) for r in result]

    @staticmethod
    def _count(tx, query: str):
        return {r["type"]: r["n"] for r in tx.run(query)}

    # ------------------------------------------------------------------ #
    #  Public API                                                         #
    # ------------------------------------------------------------------ #

    def upsert_node(
        self,
        node_id: str,
        node_type: str,
        properties: dict | None = None,
        source_info: dict | None = None,
    ) -> Node:
        data = self._write(
            self._merge_node,
            node_id,
            node_type,
            dump_json(properties),
            dump_json(source_info),
            format_timestamp(utcnow()),
            self.strict_node_types,
        )
        return _record_to_node(data)

    def get_node(self, node_id: str) -> Node | None:
        rows = self._read(self._fetch_nodes, [node_id])
        return _record_to_node(rows[0]) if rows else None

    def get_nodes_by_type(self, node_type: str, limit: int = 100) -> list[Node]:
        rows = self._read(self._fetch_nodes_by_type, node_type, limit)
        return [_record_to_node(r) for r in rows]

    def delete_node(self, node_id: str) -> bool:
        return self._write(self._detach_delete, node_id) > 0

    def upsert_edge(
        self,
        edge_type: str,
        from_node: str,
        to_node: str,
        properties: dict | None = None,
        source_info: dict | None = None,
    ) -> Edge:
        _check_edge_type(edge_type)
        data = self._write(
            self._merge_edge,
            edge_type,
            from_node,
            to_node,
            dump_json(properties),
            dump_json(source_info),
            format_timestamp(utcnow()),
        )
        if data is None:
            raise ReferentialIntegrityError(
                f"upsert_edge {edge_type} {from_node} -> {to_node}: "
                "endpoint node does not exist"
            )
        return _record_to_edge(data)

    def get_edges_by_node(
        self, node_id: str, direction: Direction | str = Direction.BOTH
    ) -> list[Edge]:
        direction = Direction(direction)
        if direction is Direction.OUTGOING:
            where = "a.id = $id"
        elif direction is Direction.INCOMING:
            where = "b.id = $id"
        else:
            where = "a.id = $id OR b.id = $id"
        query = (
            f"MATCH (a:{NODE_LABEL})-[r]->(b:{NODE_LABEL}) WHERE {where} "
            + _EDGE_RETURN
            + " ORDER BY created_at, id"
        )
        rows = self._read(self._fetch_edges, query, {"id": node_id})
        return [_record_to_edge(r) for r in rows]

    def get_edges_by_type(self, edge_type: str, limit: int = 100) -> list[Edge]:
        _check_edge_type(edge_type)
        query = (
            f"MATCH (a:{NODE_LABEL})-[r:{edge_type}]->(b:{NODE_LABEL}) "
            + _EDGE_RETURN
            + " ORDER BY created_at, id LIMIT $limit"
        )
        rows = self._read(self._fetch_edges, query, {"limit": limit})
        return [_record_to_edge(r) for r in rows]

    def _reach(self, seeds: list[str], edge_type: str | None, hops: int):
        # Only seeds that exist count as level 0.
        existing = [n["id"] for n in self._read(self._fetch_nodes, seeds)]
        return expand_levels(
            existing, hops, lambda frontier: self._read(self._expand, frontier, edge_type)
        )

    def get_neighbors(
        self, node_id: str, edge_type: str | None = None, hops: int = 1
    ) -> list[Node]:
        reached = self._reach([node_id], edge_type, hops)
        ids = [nid for nid, (level, _) in reached.items() if level > 0]
        if not ids:
            return []

        nodes = []
        for data in self._read(self._fetch_nodes, ids):
            node = _record_to_node(data)
            node.level, node.edge_type = reached[node.id]
            nodes.append(node)
        nodes.sort(key=lambda n: (n.level, n.id))
        return nodes

    def get_subgraph(self, node_ids: Iterable[str], max_hops: int = 2) -> Subgraph:
        seeds = list(dict.fromkeys(node_ids))
        if not seeds:
            return Subgraph()

        reached = self._reach(seeds, None, max_hops)
        ids = sorted(reached)
        if not ids:
            return Subgraph()

        nodes = [_record_to_node(d) for d in self._read(self._fetch_nodes, ids)]
        query = (
            f"MATCH (a:{NODE_LABEL})-[r]->(b:{NODE_LABEL}) "
            "WHERE a.id IN $ids AND b.id IN $ids "
            + _EDGE_RETURN
            + " ORDER BY created_at, id"
        )
        edges = [_record_to_edge(r) for r in self._read(self._fetch_edges, query, {"ids": ids})]
        return Subgraph(nodes=nodes, edges=edges)

    def count_nodes(self) -> dict[str, int]:
        return self._read(
            self._count,
            f"MATCH (n:{NODE_LABEL}) RETURN n.type AS type, count(*) AS n ORDER BY type",
        )

    def count_edges(self) -> dict[str, int]:
        return self._read(
            self._count,
            f"MATCH (:{NODE_LABEL})-[r]->(:{NODE_LABEL}) "
            "RETURN type(r) AS type, count(*) AS n ORDER BY type",
        )
