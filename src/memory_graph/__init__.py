"""Memory graph for service rollouts.

Property graph of services, environment variables and incidents, with an
LLM-backed ingestor that turns free text into graph mutations and a
graph-only planner that answers rollout questions.
"""

__version__ = "0.1.0"
