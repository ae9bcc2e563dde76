"""Graph Store interface and the records it returns.

The store is the only component that touches persistence. Backends
implement upsert-by-key for nodes and edges, cascade delete, and a
level-synchronous breadth-first traversal that treats edges as undirected
for reachability while keeping edge type and direction on the results.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

from memory_graph.config import Config

logger = logging.getLogger(__name__)


class Direction(str, Enum):
    """Which side of an edge a node must be on."""

    OUTGOING = "outgoing"
    INCOMING = "incoming"
    BOTH = "both"


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp used for created_at/updated_at."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: Any) -> datetime | None:
    """Accept datetimes, neo4j DateTime objects and ISO strings."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if hasattr(value, "to_native"):
        return parse_timestamp(value.to_native())
    parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def dump_json(value: dict | None) -> str:
    return json.dumps(value or {}, sort_keys=True, default=str)


def load_json(value: str | dict | None) -> dict:
    if not value:
        return {}
    if isinstance(value, dict):
        return value
    return json.loads(value)


@dataclass
class Node:
    """A typed graph entity.

    ``level`` and ``edge_type`` are only set on traversal results: the hop
    distance from the origin and the type of the edge it was reached by.
    """

    id: str
    type: str
    properties: dict = field(default_factory=dict)
    source_info: dict = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    level: int | None = None
    edge_type: str | None = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "type": self.type,
            "properties": self.properties,
            "source_info": self.source_info,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if self.level is not None:
            data["level"] = self.level
            data["edge_type"] = self.edge_type
        return data


@dataclass
class Edge:
    """A typed directed relationship. Unique on (type, from_node, to_node)."""

    id: int | str
    type: str
    from_node: str
    to_node: str
    properties: dict = field(default_factory=dict)
    source_info: dict = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "from_node": self.from_node,
            "to_node": self.to_node,
            "properties": self.properties,
            "source_info": self.source_info,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class Subgraph:
    """Nodes reached from a seed set plus every edge between reached nodes."""

    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }


class GraphStore(ABC):
    """Durable storage and traversal of the node/edge graph.

    Backend failures surface as ``StorageError`` with the driver exception
    chained. No retries happen at this layer.
    """

    def __init__(self, strict_node_types: bool = False):
        self.strict_node_types = strict_node_types

    @abstractmethod
    def init_schema(self) -> None:
        """Create tables/constraints. Idempotent."""

    @abstractmethod
    def close(self) -> None:
        """Release connections."""

    # Nodes

    @abstractmethod
    def upsert_node(
        self,
        node_id: str,
        node_type: str,
        properties: dict | None = None,
        source_info: dict | None = None,
    ) -> Node:
        """Insert or update a node by id, refreshing ``updated_at``."""

    @abstractmethod
    def get_node(self, node_id: str) -> Node | None: ...

    @abstractmethod
    def get_nodes_by_type(self, node_type: str, limit: int = 100) -> list[Node]: ...

    @abstractmethod
    def delete_node(self, node_id: str) -> bool:
        """Delete a node and, by cascade, every edge touching it."""

    # Edges

    @abstractmethod
    def upsert_edge(
        self,
        edge_type: str,
        from_node: str,
        to_node: str,
        properties: dict | None = None,
        source_info: dict | None = None,
    ) -> Edge:
        """Insert or update the edge keyed by (type, from, to).

        Raises:
            ReferentialIntegrityError: If either endpoint does not exist.
        """

    @abstractmethod
    def get_edges_by_node(
        self, node_id: str, direction: Direction | str = Direction.BOTH
    ) -> list[Edge]: ...

    @abstractmethod
    def get_edges_by_type(self, edge_type: str, limit: int = 100) -> list[Edge]: ...

    # Traversal

    @abstractmethod
    def get_neighbors(
        self, node_id: str, edge_type: str | None = None, hops: int = 1
    ) -> list[Node]:
        """Nodes within ``hops`` undirected steps, origin excluded.

        Each node carries ``level`` (first level reached) and ``edge_type``.
        Ordered by (level, id).
        """

    @abstractmethod
    def get_subgraph(self, node_ids: Iterable[str], max_hops: int = 2) -> Subgraph:
        """Union of ``max_hops`` expansions from every seed, with all edges
        whose endpoints both lie in the reached set."""

    # Stats

    @abstractmethod
    def count_nodes(self) -> dict[str, int]:
        """Node counts keyed by type."""

    @abstractmethod
    def count_edges(self) -> dict[str, int]:
        """Edge counts keyed by type."""

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def open_store(config: Config) -> GraphStore:
    """Build the backend selected by ``config.backend``."""
    backend = config.backend.lower()
    if backend == "sqlite":
        from memory_graph.graph.sqlite_store import SqliteGraphStore

        store = SqliteGraphStore(
            config.sqlite_path, strict_node_types=config.strict_node_types
        )
    elif backend == "neo4j":
        from memory_graph.graph.neo4j_store import Neo4jGraphStore

        store = Neo4jGraphStore.from_config(config)
    else:
        raise ValueError(f"Unknown graph backend: {config.backend!r}")

    logger.debug(f"Opened {backend} graph store")
    return store
