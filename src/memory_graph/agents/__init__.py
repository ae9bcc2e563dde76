"""The two agents sharing the memory graph: ingestor (write) and planner (read)."""

from memory_graph.agents.ingestor import IngestorAgent, IngestResult
from memory_graph.agents.planner import PlannerAgent

__all__ = ["IngestorAgent", "IngestResult", "PlannerAgent"]
