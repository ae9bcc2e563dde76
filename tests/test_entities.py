"""Tests for the typed entity layer."""

import pytest

from memory_graph.errors import ReferentialIntegrityError
from memory_graph.graph.entities import EdgeType, NodeType, generate_node_id


class TestGenerateNodeId:
    def test_lowercases_type(self):
        assert generate_node_id(NodeType.SERVICE, "crm7") == "service:crm7"
        assert generate_node_id("Incident", "INC-101") == "incident:INC-101"

    def test_identifier_case_preserved(self):
        assert generate_node_id(NodeType.ENVVAR, "SUPABASE_URL") == "envvar:SUPABASE_URL"

    def test_deterministic(self):
        assert generate_node_id("EnvVar", "A") == generate_node_id(NodeType.ENVVAR, "A")


class TestCreate:
    def test_identifier_property_set(self, entities):
        service = entities.create_service("crm7", {"platform": "vercel"})
        env = entities.create_env_var("SUPABASE_URL")
        incident = entities.create_incident("INC-101", {"cause": "timeout"})

        assert service.properties == {"name": "crm7", "platform": "vercel"}
        assert env.properties == {"key": "SUPABASE_URL"}
        assert incident.properties == {"incidentId": "INC-101", "cause": "timeout"}
        assert incident.type == NodeType.INCIDENT.value

    def test_getters(self, crm7_graph):
        assert crm7_graph.get_service("crm7").id == "service:crm7"
        assert crm7_graph.get_env_var("SUPABASE_URL").type == "EnvVar"
        assert crm7_graph.get_incident("INC-101").properties["cause"] == "missing env var"
        assert crm7_graph.get_service("ghost") is None

    def test_link_to_missing_node(self, entities):
        entities.create_service("crm7")
        with pytest.raises(ReferentialIntegrityError):
            entities.link_service_requires_env_var("crm7", "NOT_CREATED")

    def test_link_direction(self, crm7_graph):
        edges = crm7_graph.store.get_edges_by_type(EdgeType.INCIDENT_IMPACTS_SERVICE.value)
        assert [(e.from_node, e.to_node) for e in edges] == [
            ("incident:INC-101", "service:crm7")
        ]


class TestCompositeQueries:
    def test_required_env_vars(self, crm7_graph):
        env_vars = crm7_graph.get_required_env_vars_for_service("crm7")
        assert [e.properties["key"] for e in env_vars] == [
            "SUPABASE_ANON_KEY",
            "SUPABASE_URL",
        ]

    def test_services_impacted_by_incident(self, crm7_graph):
        services = crm7_graph.get_services_impacted_by_incident("INC-101")
        assert [s.id for s in services] == ["service:crm7"]

    def test_incidents_for_service(self, crm7_graph):
        incidents = crm7_graph.get_incidents_for_service("crm7")
        assert [i.id for i in incidents] == ["incident:INC-101"]
        assert crm7_graph.get_incidents_for_service("ghost") == []

    def test_rollout_risks_use_two_hop_subgraph(self, crm7_graph):
        crm7_graph.create_service("billing")
        crm7_graph.create_env_var("STRIPE_KEY")
        crm7_graph.link_incident_impacts_service("INC-101", "billing")
        crm7_graph.link_service_requires_env_var("billing", "STRIPE_KEY")

        risks = crm7_graph.get_incidents_related_to_rollout_risks("crm7")

        assert [i.id for i in risks["incidents"]] == ["incident:INC-101"]
        # STRIPE_KEY is three hops away.
        assert {e.id for e in risks["required_env_vars"]} == {
            "envvar:SUPABASE_ANON_KEY",
            "envvar:SUPABASE_URL",
        }
        assert len(risks["risks"]) == 4

    def test_missing_env_vars(self, crm7_graph):
        result = crm7_graph.find_missing_env_vars_for_rollout("crm7", ["SUPABASE_URL"])
        assert result["present"] == ["SUPABASE_URL"]
        assert result["missing"] == ["SUPABASE_ANON_KEY"]
        assert [n.id for n in result["missing_nodes"]] == ["envvar:SUPABASE_ANON_KEY"]

    def test_missing_env_vars_round_trip(self, crm7_graph):
        nothing_set = crm7_graph.find_missing_env_vars_for_rollout("crm7", [])
        assert nothing_set["missing"] == ["SUPABASE_ANON_KEY", "SUPABASE_URL"]
        assert nothing_set["present"] == []

        one_set = crm7_graph.find_missing_env_vars_for_rollout("crm7", ["SUPABASE_URL"])
        assert one_set["missing"] == ["SUPABASE_ANON_KEY"]

    def test_missing_env_vars_accepts_mappings(self, crm7_graph):
        result = crm7_graph.find_missing_env_vars_for_rollout(
            "crm7", [{"key": "SUPABASE_URL"}, {"key": "SUPABASE_ANON_KEY"}]
        )
        assert result["missing"] == []
        assert len(result["required"]) == 2
