"""Neo4j schema creation and validation.

Creates the MemoryNode id uniqueness constraint and the type index the
Neo4j backend relies on. All operations use IF NOT EXISTS, so running
create_schema() repeatedly is safe. The SQLite backend carries its own
DDL in sqlite_store.SCHEMA.
"""

import logging

from neo4j import Query

logger = logging.getLogger(__name__)

NODE_LABEL = "MemoryNode"

# Uniqueness constraints: (constraint_name, label, property)
UNIQUE_CONSTRAINTS: list[tuple[str, str, str]] = [
    ("memory_node_id", NODE_LABEL, "id"),
]

# Range indexes: (index_name, label, property)
RANGE_INDEXES: list[tuple[str, str, str]] = [
    ("memory_node_type", NODE_LABEL, "type"),
    ("memory_node_updated_at", NODE_LABEL, "updated_at"),
]


def _existing_names(driver, statement: str, database: str | None) -> set[str]:
    records, _, _ = driver.execute_query(statement, database_=database)
    return {r["name"] for r in records}


def create_schema(driver, database: str | None = None) -> dict:
    """Create all constraints and indexes in Neo4j.

    Args:
        driver: An open neo4j Driver.
        database: Target database name (driver default when None).

    Returns:
        Dictionary with counts of created/existing constraints and indexes.
    """
    stats = {
        "constraints_created": 0,
        "constraints_existing": 0,
        "indexes_created": 0,
        "indexes_existing": 0,
    }

    existing_constraints = _existing_names(driver, "SHOW CONSTRAINTS", database)
    existing_indexes = _existing_names(driver, "SHOW INDEXES", database)

    for name, label, prop in UNIQUE_CONSTRAINTS:
        if name in existing_constraints:
            stats["constraints_existing"] += 1
            logger.debug(f"Constraint already exists: {name}")
            continue
        driver.execute_query(
            Query(
                f"CREATE CONSTRAINT {name} IF NOT EXISTS "
                f"FOR (n:{label}) REQUIRE n.{prop} IS UNIQUE"
            ),
            database_=database,
        )
        stats["constraints_created"] += 1
        logger.debug(f"Created constraint: {name}")

    for name, label, prop in RANGE_INDEXES:
        if name in existing_indexes:
            stats["indexes_existing"] += 1
            logger.debug(f"Index already exists: {name}")
            continue
        driver.execute_query(
            Query(f"CREATE INDEX {name} IF NOT EXISTS FOR (n:{label}) ON (n.{prop})"),
            database_=database,
        )
        stats["indexes_created"] += 1
        logger.debug(f"Created index: {name}")

    logger.info(
        f"Schema: {stats['constraints_created']} constraints created, "
        f"{stats['indexes_created']} indexes created"
    )
    return stats


def verify_schema(driver, database: str | None = None) -> dict:
    """Report which of the expected constraints and indexes exist."""
    constraints = _existing_names(driver, "SHOW CONSTRAINTS", database)
    indexes = _existing_names(driver, "SHOW INDEXES", database)

    expected_constraints = {name for name, _, _ in UNIQUE_CONSTRAINTS}
    expected_indexes = {name for name, _, _ in RANGE_INDEXES}

    return {
        "constraint_names": sorted(constraints & expected_constraints),
        "index_names": sorted(indexes & expected_indexes),
        "missing": sorted(
            (expected_constraints - constraints) | (expected_indexes - indexes)
        ),
    }
