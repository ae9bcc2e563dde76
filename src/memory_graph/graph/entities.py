"""Typed entity layer over the Graph Store.

Encodes the two fixed vocabularies (node kinds and edge kinds) and the
node id convention. Every component that needs a node id goes through
generate_node_id so ids stay consistent with the store's upsert key.
"""

import logging
from enum import Enum
from typing import Any, Iterable

from memory_graph.graph.store import Edge, GraphStore, Node, Subgraph

logger = logging.getLogger(__name__)


class NodeType(str, Enum):
    SERVICE = "Service"
    ENVVAR = "EnvVar"
    INCIDENT = "Incident"


class EdgeType(str, Enum):
    SERVICE_REQUIRES_ENVVAR = "SERVICE_REQUIRES_ENVVAR"
    INCIDENT_IMPACTS_SERVICE = "INCIDENT_IMPACTS_SERVICE"


# Property that carries the identifier on each node kind.
IDENTIFIER_PROPERTY: dict[NodeType, str] = {
    NodeType.SERVICE: "name",
    NodeType.ENVVAR: "key",
    NodeType.INCIDENT: "incidentId",
}


def generate_node_id(node_type: NodeType | str, identifier: str) -> str:
    """Deterministic node id: ``lower(type) + ":" + identifier``.

    >>> generate_node_id(NodeType.SERVICE, "crm7")
    'service:crm7'
    """
    type_name = node_type.value if isinstance(node_type, NodeType) else str(node_type)
    return f"{type_name.lower()}:{identifier}"


def _present_key(item: Any) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        return item.get("key", "")
    return getattr(item, "key", str(item))


class GraphEntities:
    """Services, env vars and incidents on top of an injected GraphStore."""

    def __init__(self, store: GraphStore):
        self.store = store

    # ------------------------------------------------------------------ #
    #  Nodes                                                              #
    # ------------------------------------------------------------------ #

    def _create(
        self,
        node_type: NodeType,
        identifier: str,
        properties: dict | None,
        source_info: dict | None,
    ) -> Node:
        props = {IDENTIFIER_PROPERTY[node_type]: identifier, **(properties or {})}
        return self.store.upsert_node(
            generate_node_id(node_type, identifier),
            node_type.value,
            props,
            source_info or {},
        )

    def create_service(
        self, name: str, properties: dict | None = None, source_info: dict | None = None
    ) -> Node:
        return self._create(NodeType.SERVICE, name, properties, source_info)

    def get_service(self, name: str) -> Node | None:
        return self.store.get_node(generate_node_id(NodeType.SERVICE, name))

    def create_env_var(
        self, key: str, properties: dict | None = None, source_info: dict | None = None
    ) -> Node:
        return self._create(NodeType.ENVVAR, key, properties, source_info)

    def get_env_var(self, key: str) -> Node | None:
        return self.store.get_node(generate_node_id(NodeType.ENVVAR, key))

    def create_incident(
        self,
        incident_id: str,
        properties: dict | None = None,
        source_info: dict | None = None,
    ) -> Node:
        return self._create(NodeType.INCIDENT, incident_id, properties, source_info)

    def get_incident(self, incident_id: str) -> Node | None:
        return self.store.get_node(generate_node_id(NodeType.INCIDENT, incident_id))

    # ------------------------------------------------------------------ #
    #  Relationships                                                      #
    # ------------------------------------------------------------------ #

    def link_service_requires_env_var(
        self,
        service_name: str,
        env_var_key: str,
        properties: dict | None = None,
        source_info: dict | None = None,
    ) -> Edge:
        return self.store.upsert_edge(
            EdgeType.SERVICE_REQUIRES_ENVVAR.value,
            generate_node_id(NodeType.SERVICE, service_name),
            generate_node_id(NodeType.ENVVAR, env_var_key),
            properties or {},
            source_info or {},
        )

    def link_incident_impacts_service(
        self,
        incident_id: str,
        service_name: str,
        properties: dict | None = None,
        source_info: dict | None = None,
    ) -> Edge:
        return self.store.upsert_edge(
            EdgeType.INCIDENT_IMPACTS_SERVICE.value,
            generate_node_id(NodeType.INCIDENT, incident_id),
            generate_node_id(NodeType.SERVICE, service_name),
            properties or {},
            source_info or {},
        )

    # ------------------------------------------------------------------ #
    #  Read-only traversal passthroughs                                   #
    # ------------------------------------------------------------------ #

    def get_node(self, node_id: str) -> Node | None:
        return self.store.get_node(node_id)

    def get_neighbors(
        self, node_id: str, edge_type: EdgeType | str | None = None, hops: int = 1
    ) -> list[Node]:
        if isinstance(edge_type, EdgeType):
            edge_type = edge_type.value
        return self.store.get_neighbors(node_id, edge_type, hops)

    def get_subgraph(self, node_ids: Iterable[str], max_hops: int = 2) -> Subgraph:
        return self.store.get_subgraph(node_ids, max_hops)

    # ------------------------------------------------------------------ #
    #  Composite queries                                                  #
    # ------------------------------------------------------------------ #

    def _one_hop(
        self, node_id: str, edge_type: EdgeType, wanted: NodeType
    ) -> list[Node]:
        neighbors = self.store.get_neighbors(node_id, edge_type.value, 1)
        return [n for n in neighbors if n.type == wanted.value]

    def get_required_env_vars_for_service(self, service_name: str) -> list[Node]:
        return self._one_hop(
            generate_node_id(NodeType.SERVICE, service_name),
            EdgeType.SERVICE_REQUIRES_ENVVAR,
            NodeType.ENVVAR,
        )

    def get_services_impacted_by_incident(self, incident_id: str) -> list[Node]:
        return self._one_hop(
            generate_node_id(NodeType.INCIDENT, incident_id),
            EdgeType.INCIDENT_IMPACTS_SERVICE,
            NodeType.SERVICE,
        )

    def get_incidents_for_service(self, service_name: str) -> list[Node]:
        return self._one_hop(
            generate_node_id(NodeType.SERVICE, service_name),
            EdgeType.INCIDENT_IMPACTS_SERVICE,
            NodeType.INCIDENT,
        )

    def get_incidents_related_to_rollout_risks(
        self, service_name: str, max_hops: int = 2
    ) -> dict:
        """Partition the service's 2-hop subgraph for rollout risk analysis.

        Risk factors are every requires/impacts edge inside the subgraph,
        not only the ones touching the service itself.

        Returns:
            Dict with ``incidents``, ``required_env_vars`` (Node lists) and
            ``risks`` (Edge list).
        """
        subgraph = self.store.get_subgraph(
            [generate_node_id(NodeType.SERVICE, service_name)], max_hops
        )
        risk_types = {e.value for e in EdgeType}
        return {
            "incidents": [n for n in subgraph.nodes if n.type == NodeType.INCIDENT.value],
            "required_env_vars": [
                n for n in subgraph.nodes if n.type == NodeType.ENVVAR.value
            ],
            "risks": [e for e in subgraph.edges if e.type in risk_types],
        }

    def find_missing_env_vars_for_rollout(
        self, service_name: str, present_env_vars: Iterable[Any] = ()
    ) -> dict:
        """Compare the service's required env vars with a caller-supplied set.

        Args:
            service_name: Service to check.
            present_env_vars: Keys that are set, as strings or ``{"key": ...}``.

        Returns:
            Dict with ``required`` (Nodes), ``present`` (keys), ``missing``
            (keys, in required order) and ``missing_nodes``.
        """
        required = self.get_required_env_vars_for_service(service_name)
        present = [_present_key(item) for item in present_env_vars or ()]
        present_set = set(present)

        missing_nodes = [
            n for n in required if n.properties.get("key") not in present_set
        ]
        return {
            "required": required,
            "present": present,
            "missing": [n.properties.get("key") for n in missing_nodes],
            "missing_nodes": missing_nodes,
        }
