"""Identifier alias resolution.

Resolves identifier variants to canonical forms before node ids are
generated, so "CRM 7", "crm-7" and "crm7" can all land on service:crm7.
Aliases are kept per node type; an env var alias never rewrites a
service name.
"""

import json
import logging
from pathlib import Path

from memory_graph.config import Config

logger = logging.getLogger(__name__)


class AliasResolver:
    """Maps alternate identifiers to canonical ones, per node type.

    The table is a JSON object ``{node_type: {alias: canonical}}`` that
    grows as aliases are registered.
    """

    def __init__(self, config: Config | None = None, path: Path | None = None):
        self.path = path or (config.alias_table_path if config else None)
        self.alias_table: dict[str, dict[str, str]] = {}
        self._load_alias_table()

    def _load_alias_table(self) -> None:
        """Load the alias table from disk."""
        if self.path and self.path.exists():
            self.alias_table = json.loads(self.path.read_text())
            logger.info(f"Loaded {len(self)} aliases")

    def __len__(self) -> int:
        return sum(len(aliases) for aliases in self.alias_table.values())

    def save(self) -> None:
        """Persist the alias table to disk."""
        if self.path is None:
            raise ValueError("AliasResolver has no alias table path")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self.alias_table, indent=2, sort_keys=True))
        logger.info(f"Saved {len(self)} aliases")

    def resolve(self, node_type: str, identifier: str) -> str:
        """Resolve an identifier to its canonical form.

        Returns the stripped input when no alias is registered.
        """
        normalized = identifier.strip()
        return self.alias_table.get(node_type, {}).get(normalized, normalized)

    def add_alias(self, node_type: str, alias: str, canonical: str) -> None:
        self.alias_table.setdefault(node_type, {})[alias.strip()] = canonical.strip()
