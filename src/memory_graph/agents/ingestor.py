"""Ingestor agent: free text -> extraction -> validated structure -> graph.

Extraction failures are fatal to the call; a bad entity or relationship
inside an otherwise valid extraction is recorded and skipped while its
siblings are still applied. Nothing is rolled back: entities upserted
before a failure stay committed.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

from tqdm import tqdm

from memory_graph.errors import (
    ExtractionError,
    ItemError,
    NodeTypeConflictError,
    ReferentialIntegrityError,
)
from memory_graph.extract.parser import parse_extraction_response
from memory_graph.extract.prompts import ENTITY_EXTRACTION_PROMPT
from memory_graph.graph.dedup import AliasResolver
from memory_graph.graph.entities import EdgeType, GraphEntities, NodeType
from memory_graph.graph.store import Edge, Node

logger = logging.getLogger(__name__)

# Identifiers the model echoes back from the prompt template instead of
# extracting real data.
PLACEHOLDER_IDENTIFIERS: set[str] = {
    "unique_name_or_key",
    "from_entity_identifier",
    "to_entity_identifier",
    "service|envvar|incident",
    "unknown",
    "n/a",
    "none",
    "null",
}

# Failures that only invalidate the current item.
_ITEM_FAILURES = (ItemError, ReferentialIntegrityError, NodeTypeConflictError)


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


def _clean_identifier(value, field_name: str) -> str:
    """Strip an identifier and reject empty or placeholder values."""
    if not isinstance(value, (str, int)):
        raise ItemError(f"Missing or invalid {field_name}: {value!r}")
    identifier = str(value).strip()
    if not identifier or identifier.lower() in PLACEHOLDER_IDENTIFIERS:
        raise ItemError(f"Missing or invalid {field_name}: {value!r}")
    return identifier


def _safe_props(props) -> dict:
    """Clean a property dict: strip strings, drop empty values.

    Returns a new dict; ``None`` is treated as no properties.
    """
    if props is None:
        return {}
    if not isinstance(props, dict):
        raise ItemError(f"properties must be an object, got {type(props).__name__}")
    cleaned = {}
    for k, v in props.items():
        if isinstance(v, str):
            v = v.strip()
            if not v:
                continue
        elif v is None:
            continue
        cleaned[k] = v
    return cleaned


@dataclass
class IngestResult:
    """Outcome of one ingest call.

    ``success`` only reports whether extraction worked; per-item failures
    are listed in ``errors`` alongside the nodes and edges that were applied.
    """

    success: bool
    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)
    source_info: dict = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict:
        if not self.success:
            return {"success": False, "error": self.error}
        return {
            "success": True,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "errors": self.errors,
            "source_info": self.source_info,
        }


class IngestorAgent:
    """Turns unstructured text into graph mutations.

    Args:
        entities: Typed entity layer over the shared store.
        extract_fn: Text-extraction function, prompt in / text out.
        alias_resolver: Optional identifier canonicalization before id generation.
    """

    def __init__(
        self,
        entities: GraphEntities,
        extract_fn: Callable[[str], str],
        alias_resolver: AliasResolver | None = None,
    ):
        self.entities = entities
        self.extract_fn = extract_fn
        self.alias_resolver = alias_resolver

        self.entity_creators: dict[NodeType, Callable[..., Node]] = {
            NodeType.SERVICE: entities.create_service,
            NodeType.ENVVAR: entities.create_env_var,
            NodeType.INCIDENT: entities.create_incident,
        }
        # edge type -> (linker, from node type, to node type)
        self.relationship_linkers: dict[
            EdgeType, tuple[Callable[..., Edge], NodeType, NodeType]
        ] = {
            EdgeType.SERVICE_REQUIRES_ENVVAR: (
                entities.link_service_requires_env_var,
                NodeType.SERVICE,
                NodeType.ENVVAR,
            ),
            EdgeType.INCIDENT_IMPACTS_SERVICE: (
                entities.link_incident_impacts_service,
                NodeType.INCIDENT,
                NodeType.SERVICE,
            ),
        }

    # ------------------------------------------------------------------ #
    #  Public API                                                         #
    # ------------------------------------------------------------------ #

    def ingest(
        self,
        text: str,
        run_id: str | None = None,
        source_file: str | None = None,
        line_number: int | None = None,
    ) -> IngestResult:
        """Extract entities/relationships from text and upsert them.

        Raises:
            StorageError: Infrastructure failures other than dangling edge
                endpoints or node type conflicts.
        """
        try:
            extracted = self.extract_entities_and_relations(text)
        except ExtractionError as e:
            logger.error(f"Ingest failed during extraction: {e}")
            return IngestResult(success=False, error=f"Extraction failed: {e}")

        source_info = {
            "run_id": run_id or f"ingest-{_timestamp_ms()}",
            "source_file": source_file,
            "line_number": line_number,
            "original_text": text,
            "extracted_at": datetime.now(timezone.utc).isoformat(),
        }

        result = self.upsert_graph(extracted, source_info)
        logger.info(
            f"Ingested run {source_info['run_id']}: {len(result.nodes)} nodes, "
            f"{len(result.edges)} edges, {len(result.errors)} errors"
        )
        return result

    def extract_entities_and_relations(self, text: str) -> dict:
        """Run the extraction function and validate its output shape.

        Raises:
            ExtractionError: If the function fails or its output is unusable.
        """
        prompt = ENTITY_EXTRACTION_PROMPT.format(text=text)
        try:
            raw = self.extract_fn(prompt)
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"extraction function unavailable: {e}") from e
        return parse_extraction_response(raw)

    def upsert_graph(self, extracted: dict, source_info: dict) -> IngestResult:
        """Apply extracted entities then relationships, isolating item failures."""
        result = IngestResult(success=True, source_info=source_info)

        for entity in extracted.get("entities") or []:
            try:
                result.nodes.append(self._apply_entity(entity, source_info))
            except _ITEM_FAILURES as e:
                logger.warning(f"Skipping entity {entity!r}: {e}")
                result.errors.append({"type": "entity", "entity": entity, "error": str(e)})

        for relationship in extracted.get("relationships") or []:
            try:
                result.edges.append(self._apply_relationship(relationship, source_info))
            except _ITEM_FAILURES as e:
                logger.warning(f"Skipping relationship {relationship!r}: {e}")
                result.errors.append(
                    {"type": "relationship", "relationship": relationship, "error": str(e)}
                )

        return result

    def ingest_deployment_info(
        self, text: str, service_name: str | None = None
    ) -> IngestResult:
        """Ingest a deployment log or README snippet."""
        return self.ingest(
            text,
            run_id=f"deploy-{service_name or 'unknown'}-{_timestamp_ms()}",
            source_file="deployment-log",
        )

    def ingest_incident_info(
        self, text: str, incident_id: str | None = None
    ) -> IngestResult:
        """Ingest an incident report."""
        return self.ingest(
            text,
            run_id=f"incident-{incident_id or 'unknown'}-{_timestamp_ms()}",
            source_file="incident-report",
        )

    def ingest_lines(
        self,
        lines: Iterable[str],
        source_file: str,
        run_id: str | None = None,
        show_progress: bool = False,
    ) -> dict:
        """Ingest a text source line by line, stamping each line number.

        Blank lines are skipped. All lines share one run id.

        Returns:
            Summary dict with total, succeeded, failed, node/edge counts,
            item error count and the per-line extraction errors.
        """
        run_id = run_id or f"ingest-{_timestamp_ms()}"
        numbered = [(n, line.strip()) for n, line in enumerate(lines, start=1)]
        numbered = [(n, line) for n, line in numbered if line]

        summary = {
            "run_id": run_id,
            "total": len(numbered),
            "succeeded": 0,
            "failed": 0,
            "nodes": 0,
            "edges": 0,
            "item_errors": 0,
            "errors": [],
        }

        for line_number, line in tqdm(
            numbered, desc="Ingesting lines", disable=not show_progress
        ):
            result = self.ingest(
                line, run_id=run_id, source_file=source_file, line_number=line_number
            )
            if not result.success:
                summary["failed"] += 1
                summary["errors"].append({"line_number": line_number, "error": result.error})
                continue
            summary["succeeded"] += 1
            summary["nodes"] += len(result.nodes)
            summary["edges"] += len(result.edges)
            summary["item_errors"] += len(result.errors)

        logger.info(
            f"Run {run_id}: {summary['succeeded']}/{summary['total']} lines ingested, "
            f"{summary['failed']} failed, {summary['nodes']} nodes, {summary['edges']} edges"
        )
        return summary

    # ------------------------------------------------------------------ #
    #  Per-item helpers                                                   #
    # ------------------------------------------------------------------ #

    def _resolve(self, node_type: NodeType, identifier: str) -> str:
        if self.alias_resolver is None:
            return identifier
        return self.alias_resolver.resolve(node_type.value, identifier)

    def _apply_entity(self, entity, source_info: dict) -> Node:
        if not isinstance(entity, dict):
            raise ItemError(f"Entity must be an object, got {type(entity).__name__}")
        try:
            node_type = NodeType(entity.get("type"))
        except ValueError:
            raise ItemError(f"Unknown entity type: {entity.get('type')}") from None

        identifier = self._resolve(
            node_type, _clean_identifier(entity.get("identifier"), "identifier")
        )
        creator = self.entity_creators[node_type]
        return creator(identifier, _safe_props(entity.get("properties")), source_info)

    def _apply_relationship(self, relationship, source_info: dict) -> Edge:
        if not isinstance(relationship, dict):
            raise ItemError(
                f"Relationship must be an object, got {type(relationship).__name__}"
            )
        try:
            edge_type = EdgeType(relationship.get("type"))
        except ValueError:
            raise ItemError(
                f"Unknown relationship type: {relationship.get('type')}"
            ) from None

        linker, from_type, to_type = self.relationship_linkers[edge_type]
        from_id = self._resolve(from_type, _clean_identifier(relationship.get("from"), "from"))
        to_id = self._resolve(to_type, _clean_identifier(relationship.get("to"), "to"))
        return linker(from_id, to_id, _safe_props(relationship.get("properties")), source_info)
