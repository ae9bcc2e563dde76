"""Tests for Neo4j schema creation and verification.

Tests cover:
- Schema constants are consistent
- create_schema is idempotent (safe to run multiple times)
- verify_schema reports missing constraints and indexes
"""

from unittest.mock import MagicMock

import pytest

from memory_graph.config import Config
from memory_graph.graph.schema import (
    NODE_LABEL,
    RANGE_INDEXES,
    UNIQUE_CONSTRAINTS,
    create_schema,
    verify_schema,
)

# ------------------------------------------------------------------ #
#  Unit tests (no Neo4j required)                                     #
# ------------------------------------------------------------------ #


def test_node_id_is_unique():
    """The upsert key is backed by a uniqueness constraint."""
    assert ("memory_node_id", NODE_LABEL, "id") in UNIQUE_CONSTRAINTS


def test_type_is_indexed():
    """get_nodes_by_type filters on an indexed property."""
    assert any(prop == "type" for _, _, prop in RANGE_INDEXES)


def test_schema_names_unique():
    names = [name for name, _, _ in UNIQUE_CONSTRAINTS + RANGE_INDEXES]
    assert len(names) == len(set(names))


def _driver(constraints=(), indexes=()):
    """Mock driver whose SHOW queries report the given names."""
    driver = MagicMock()

    def execute_query(query, **kwargs):
        if query == "SHOW CONSTRAINTS":
            return [{"name": n} for n in constraints], None, None
        if query == "SHOW INDEXES":
            return [{"name": n} for n in indexes], None, None
        return [], None, None

    driver.execute_query.side_effect = execute_query
    return driver


def test_create_schema_on_empty_database():
    driver = _driver()
    stats = create_schema(driver, "neo4j")

    assert stats["constraints_created"] == len(UNIQUE_CONSTRAINTS)
    assert stats["indexes_created"] == len(RANGE_INDEXES)
    # Two SHOW queries plus one CREATE per constraint and index.
    assert driver.execute_query.call_count == 2 + len(UNIQUE_CONSTRAINTS) + len(RANGE_INDEXES)
    assert all(
        c.kwargs["database_"] == "neo4j" for c in driver.execute_query.call_args_list
    )


def test_create_schema_skips_existing():
    driver = _driver(
        constraints=[name for name, _, _ in UNIQUE_CONSTRAINTS],
        indexes=[name for name, _, _ in RANGE_INDEXES],
    )
    stats = create_schema(driver)

    assert stats["constraints_created"] == 0
    assert stats["indexes_created"] == 0
    assert stats["constraints_existing"] == len(UNIQUE_CONSTRAINTS)
    assert driver.execute_query.call_count == 2


def test_verify_schema_reports_missing():
    driver = _driver(constraints=["memory_node_id", "unrelated"], indexes=["memory_node_type"])
    result = verify_schema(driver)

    assert result["constraint_names"] == ["memory_node_id"]
    assert result["index_names"] == ["memory_node_type"]
    assert result["missing"] == ["memory_node_updated_at"]


# ------------------------------------------------------------------ #
#  Integration tests: require a running Neo4j instance                #
# ------------------------------------------------------------------ #


@pytest.fixture
def driver():
    """Live Neo4j driver, skip if Neo4j is unavailable."""
    from neo4j import GraphDatabase

    config = Config()
    drv = GraphDatabase.driver(
        config.neo4j_uri, auth=(config.neo4j_user, config.neo4j_password)
    )
    try:
        drv.verify_connectivity()
    except Exception:
        drv.close()
        pytest.skip("Neo4j not available")
    yield drv
    drv.close()


def test_create_schema_idempotent(driver):
    """Running create_schema twice produces no errors."""
    create_schema(driver)
    stats = create_schema(driver)

    assert stats["constraints_created"] == 0
    assert stats["indexes_created"] == 0
    assert verify_schema(driver)["missing"] == []
