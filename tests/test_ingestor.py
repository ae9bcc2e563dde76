"""Tests for the ingestor agent.

Tests cover:
- Utility functions (_clean_identifier, _safe_props)
- End-to-end ingestion with a fake extraction function
- Per-item failure isolation without rollback
- Extraction failures returned as values, storage failures raised
- Alias resolution, replay idempotency and line-by-line ingestion
"""

import json
from unittest.mock import MagicMock

import pytest

from memory_graph.agents.ingestor import IngestorAgent, _clean_identifier, _safe_props
from memory_graph.errors import ItemError, StorageError
from memory_graph.graph.dedup import AliasResolver
from memory_graph.graph.entities import GraphEntities


def extraction_payload(entities=(), relationships=()) -> str:
    """JSON text shaped like an extraction function response."""
    return json.dumps({"entities": list(entities), "relationships": list(relationships)})


CRM7_TEXT = "crm7 deploys on vercel and needs SUPABASE_URL and SUPABASE_ANON_KEY"

CRM7_EXTRACTION = extraction_payload(
    entities=[
        {"type": "Service", "identifier": "crm7", "properties": {"platform": "vercel"}},
        {"type": "EnvVar", "identifier": "SUPABASE_URL", "properties": {}},
        {"type": "EnvVar", "identifier": "SUPABASE_ANON_KEY", "properties": {}},
    ],
    relationships=[
        {"type": "SERVICE_REQUIRES_ENVVAR", "from": "crm7", "to": "SUPABASE_URL"},
        {"type": "SERVICE_REQUIRES_ENVVAR", "from": "crm7", "to": "SUPABASE_ANON_KEY"},
    ],
)


def fixed(response: str) -> MagicMock:
    """Extraction function that always returns ``response``."""
    return MagicMock(return_value=response)


# ------------------------------------------------------------------ #
#  Unit tests for utility functions                                   #
# ------------------------------------------------------------------ #


class TestCleanIdentifier:
    def test_strips_whitespace(self):
        assert _clean_identifier("  crm7 ", "identifier") == "crm7"

    def test_numbers_become_strings(self):
        assert _clean_identifier(101, "identifier") == "101"

    @pytest.mark.parametrize(
        "value", ["", "   ", None, "unique_name_or_key", "Unknown", "n/a", ["crm7"]]
    )
    def test_rejects_missing_and_placeholder(self, value):
        with pytest.raises(ItemError):
            _clean_identifier(value, "identifier")


class TestSafeProps:
    def test_strips_and_drops_empty(self):
        props = {"platform": " vercel ", "description": "", "owner": None, "replicas": 0}
        assert _safe_props(props) == {"platform": "vercel", "replicas": 0}

    def test_none_is_empty(self):
        assert _safe_props(None) == {}

    def test_rejects_non_mapping(self):
        with pytest.raises(ItemError):
            _safe_props(["platform"])


# ------------------------------------------------------------------ #
#  Ingestion                                                          #
# ------------------------------------------------------------------ #


class TestIngest:
    def test_crm7_deployment_text(self, entities, store):
        extract_fn = fixed(CRM7_EXTRACTION)
        agent = IngestorAgent(entities, extract_fn)

        result = agent.ingest(CRM7_TEXT)

        assert result.success
        assert result.errors == []
        assert [n.id for n in result.nodes] == [
            "service:crm7",
            "envvar:SUPABASE_URL",
            "envvar:SUPABASE_ANON_KEY",
        ]
        assert len(result.edges) == 2
        assert CRM7_TEXT in extract_fn.call_args.args[0]
        assert store.count_nodes() == {"EnvVar": 2, "Service": 1}
        assert store.get_node("service:crm7").properties == {
            "name": "crm7",
            "platform": "vercel",
        }

    def test_source_info_recorded(self, entities, store):
        agent = IngestorAgent(entities, fixed(CRM7_EXTRACTION))
        result = agent.ingest(CRM7_TEXT, source_file="README.md", line_number=12)

        info = store.get_node("envvar:SUPABASE_URL").source_info
        assert info["run_id"].startswith("ingest-")
        assert info["run_id"] == result.source_info["run_id"]
        assert info["source_file"] == "README.md"
        assert info["line_number"] == 12
        assert info["original_text"] == CRM7_TEXT
        assert "extracted_at" in info

        edge = store.get_edges_by_type("SERVICE_REQUIRES_ENVVAR")[0]
        assert edge.source_info["run_id"] == info["run_id"]

    def test_replay_is_idempotent(self, entities, store):
        agent = IngestorAgent(entities, fixed(CRM7_EXTRACTION))
        agent.ingest(CRM7_TEXT, run_id="run-1")
        agent.ingest(CRM7_TEXT, run_id="run-2")

        assert store.count_nodes() == {"EnvVar": 2, "Service": 1}
        assert store.count_edges() == {"SERVICE_REQUIRES_ENVVAR": 2}
        assert store.get_node("service:crm7").source_info["run_id"] == "run-2"

    def test_item_failures_are_isolated(self, entities, store):
        response = extraction_payload(
            entities=[
                {"type": "Service", "identifier": "crm7"},
                {"type": "Database", "identifier": "postgres"},
                {"type": "EnvVar", "identifier": "unique_name_or_key"},
                {"type": "EnvVar", "identifier": "SUPABASE_URL"},
            ],
            relationships=[
                {"type": "SERVICE_REQUIRES_ENVVAR", "from": "crm7", "to": "NEVER_CREATED"},
                {"type": "DEPENDS_ON", "from": "crm7", "to": "SUPABASE_URL"},
                {"type": "SERVICE_REQUIRES_ENVVAR", "from": "crm7", "to": "SUPABASE_URL"},
            ],
        )
        result = IngestorAgent(entities, fixed(response)).ingest("mixed quality text")

        assert result.success
        assert [n.id for n in result.nodes] == ["service:crm7", "envvar:SUPABASE_URL"]
        assert [(e.from_node, e.to_node) for e in result.edges] == [
            ("service:crm7", "envvar:SUPABASE_URL")
        ]
        assert [e["type"] for e in result.errors] == [
            "entity",
            "entity",
            "relationship",
            "relationship",
        ]
        assert result.errors[0] == {
            "type": "entity",
            "entity": {"type": "Database", "identifier": "postgres"},
            "error": "Unknown entity type: Database",
        }
        assert result.errors[3]["error"] == "Unknown relationship type: DEPENDS_ON"
        assert result.errors[2]["relationship"]["to"] == "NEVER_CREATED"
        assert store.get_node("envvar:NEVER_CREATED") is None

    def test_unparseable_extraction(self, entities, store):
        result = IngestorAgent(entities, fixed("I could not find anything")).ingest("text")

        assert not result.success
        assert result.error.startswith("Extraction failed:")
        assert result.to_dict() == {"success": False, "error": result.error}
        assert store.count_nodes() == {}

    def test_missing_keys(self, entities):
        result = IngestorAgent(entities, fixed('{"entities": []}')).ingest("text")
        assert not result.success
        assert "Invalid extraction format" in result.error

    def test_extraction_function_raises(self, entities):
        extract_fn = MagicMock(side_effect=ConnectionError("provider down"))
        result = IngestorAgent(entities, extract_fn).ingest("text")

        assert not result.success
        assert "extraction function unavailable: provider down" in result.error

    def test_storage_errors_propagate(self):
        entities = MagicMock(spec=GraphEntities)
        entities.create_service.side_effect = StorageError("disk I/O error")
        agent = IngestorAgent(entities, fixed(CRM7_EXTRACTION))

        with pytest.raises(StorageError):
            agent.ingest(CRM7_TEXT)

    def test_aliases_resolved_before_id_generation(self, entities, store):
        resolver = AliasResolver()
        resolver.add_alias("Service", "CRM 7", "crm7")
        response = extraction_payload(
            entities=[
                {"type": "Service", "identifier": "CRM 7"},
                {"type": "EnvVar", "identifier": "SUPABASE_URL"},
            ],
            relationships=[
                {"type": "SERVICE_REQUIRES_ENVVAR", "from": "CRM 7", "to": "SUPABASE_URL"}
            ],
        )
        result = IngestorAgent(entities, fixed(response), resolver).ingest("text")

        assert result.errors == []
        assert store.get_node("service:crm7") is not None
        assert result.edges[0].from_node == "service:crm7"

    def test_to_dict(self, entities):
        result = IngestorAgent(entities, fixed(CRM7_EXTRACTION)).ingest(CRM7_TEXT)
        data = result.to_dict()
        assert data["success"] is True
        assert data["nodes"][0]["id"] == "service:crm7"
        assert data["edges"][0]["type"] == "SERVICE_REQUIRES_ENVVAR"


class TestConvenienceWrappers:
    def test_deployment_info(self, entities, store):
        agent = IngestorAgent(entities, fixed(CRM7_EXTRACTION))
        result = agent.ingest_deployment_info(CRM7_TEXT, "crm7")

        assert result.source_info["run_id"].startswith("deploy-crm7-")
        assert result.source_info["source_file"] == "deployment-log"

    def test_deployment_info_without_service(self, entities):
        agent = IngestorAgent(entities, fixed(CRM7_EXTRACTION))
        result = agent.ingest_deployment_info(CRM7_TEXT)
        assert result.source_info["run_id"].startswith("deploy-unknown-")

    def test_incident_info(self, entities, store):
        entities.create_service("crm7")
        response = extraction_payload(
            entities=[{"type": "Incident", "identifier": "INC-101", "properties": {"cause": "timeout"}}],
            relationships=[{"type": "INCIDENT_IMPACTS_SERVICE", "from": "INC-101", "to": "crm7"}],
        )
        result = IngestorAgent(entities, fixed(response)).ingest_incident_info(
            "INC-101 took crm7 down", "INC-101"
        )

        assert result.source_info["run_id"].startswith("incident-INC-101-")
        assert result.source_info["source_file"] == "incident-report"
        assert [e.to_node for e in result.edges] == ["service:crm7"]


class TestIngestLines:
    def test_line_numbers_and_summary(self, entities, store):
        def extract_fn(prompt):
            if "%%FAIL%%" in prompt:
                return "not json"
            return CRM7_EXTRACTION

        agent = IngestorAgent(entities, extract_fn)
        summary = agent.ingest_lines(
            [CRM7_TEXT, "", "   ", "%%FAIL%%"], source_file="notes.txt", run_id="run-lines"
        )

        assert summary["run_id"] == "run-lines"
        assert summary["total"] == 2
        assert summary["succeeded"] == 1
        assert summary["failed"] == 1
        assert summary["nodes"] == 3
        assert summary["edges"] == 2
        assert summary["errors"][0]["line_number"] == 4

        info = store.get_node("service:crm7").source_info
        assert info["line_number"] == 1
        assert info["source_file"] == "notes.txt"
