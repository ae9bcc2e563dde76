"""Shared fixtures: an in-memory SQLite store and the entity layer over it."""

import pytest

from memory_graph.graph.entities import GraphEntities
from memory_graph.graph.sqlite_store import SqliteGraphStore


@pytest.fixture
def store():
    """Fresh in-memory SQLite graph store."""
    s = SqliteGraphStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def entities(store):
    return GraphEntities(store)


@pytest.fixture
def crm7_graph(entities):
    """crm7 requires two Supabase env vars and was hit by INC-101."""
    entities.create_service("crm7", {"platform": "vercel"})
    entities.create_env_var("SUPABASE_URL")
    entities.create_env_var("SUPABASE_ANON_KEY")
    entities.create_incident("INC-101", {"cause": "missing env var"})
    entities.link_service_requires_env_var("crm7", "SUPABASE_URL")
    entities.link_service_requires_env_var("crm7", "SUPABASE_ANON_KEY")
    entities.link_incident_impacts_service("INC-101", "crm7")
    return entities
